"""Data models for Planner export documents and restoration records.

Export documents are validated with pydantic at ingestion so that malformed
input surfaces as a ``ValidationError`` before any remote call is made.
Graph field names (camelCase) are kept as aliases; unknown fields are
preserved so that pass-through data is not lost.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plannerbridge.exceptions import RestorationError


class EntityKind(StrEnum):
    """Kinds of work items tracked during a restoration run."""

    PLAN = "Plan"
    PLAN_DETAILS = "PlanDetails"
    BUCKET = "Bucket"
    TASK = "Task"
    TASK_DETAIL = "TaskDetail"


class _GraphModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class PlanItem(_GraphModel):
    """A Planner plan as exported from the source tenant."""

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    owner: str | None = None


class BucketItem(_GraphModel):
    """A bucket (column) within a plan."""

    id: str = Field(min_length=1)
    name: str
    plan_id: str | None = Field(default=None, alias="planId")
    order_hint: str | None = Field(default=None, alias="orderHint")


class TaskItem(_GraphModel):
    """A task. ``assignments`` is keyed by source-tenant user id."""

    id: str = Field(min_length=1)
    title: str
    plan_id: str | None = Field(default=None, alias="planId")
    bucket_id: str | None = Field(default=None, alias="bucketId")
    order_hint: str | None = Field(default=None, alias="orderHint")
    assignments: dict[str, Any] = Field(default_factory=dict)
    applied_categories: dict[str, bool] = Field(default_factory=dict, alias="appliedCategories")
    percent_complete: int | None = Field(default=None, ge=0, le=100, alias="percentComplete")
    priority: int | None = Field(default=None, ge=0, le=10)
    start_date_time: str | None = Field(default=None, alias="startDateTime")
    due_date_time: str | None = Field(default=None, alias="dueDateTime")

    @field_validator("assignments", "applied_categories", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class TaskDetailItem(_GraphModel):
    """Task details. The id is the id of the task the details belong to."""

    id: str = Field(min_length=1)
    description: str | None = None
    checklist: dict[str, dict[str, Any]] = Field(default_factory=dict)
    references: dict[str, dict[str, Any]] = Field(default_factory=dict)
    preview_type: str | None = Field(default=None, alias="previewType")

    @field_validator("checklist", "references", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    def has_content(self) -> bool:
        """True when there is at least one detail field worth sending."""
        return bool(self.description) or bool(self.checklist) or bool(self.references)


class UserHint(_GraphModel):
    """Identity hints for a source-tenant user."""

    user_principal_name: str | None = Field(default=None, alias="userPrincipalName")
    mail: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")


class PlanExport(BaseModel):
    """One exported plan: the input of a restoration run."""

    model_config = ConfigDict(populate_by_name=True)

    plan: PlanItem = Field(alias="Plan")
    buckets: list[BucketItem] = Field(default_factory=list, alias="Buckets")
    tasks: list[TaskItem] = Field(default_factory=list, alias="Tasks")
    task_details: list[TaskDetailItem] = Field(default_factory=list, alias="TaskDetails")
    categories: dict[str, str | None] = Field(default_factory=dict, alias="Categories")
    user_map: dict[str, UserHint] = Field(default_factory=dict, alias="UserMap")

    @field_validator("buckets", "tasks", "task_details", mode="before")
    @classmethod
    def _none_as_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("categories", mode="before")
    @classmethod
    def _unwrap_plan_details(cls, value: Any) -> Any:
        # Exports may carry the whole plan details object instead of the descriptions
        if value is None:
            return {}
        if isinstance(value, dict) and "categoryDescriptions" in value:
            return value["categoryDescriptions"] or {}
        return value

    @field_validator("user_map", mode="before")
    @classmethod
    def _none_as_empty_map(cls, value: Any) -> Any:
        return {} if value is None else value

    def details_by_task_id(self) -> dict[str, TaskDetailItem]:
        """Index task details by the id of their task."""
        return {detail.id: detail for detail in self.task_details}


class IdentifierMap:
    """Write-once translation table from source ids to newly created target ids.

    Examples:
        >>> bucket_map = IdentifierMap(EntityKind.BUCKET)
        >>> bucket_map.record("old-1", "new-1")
        >>> bucket_map.get("old-1")
        'new-1'
    """

    def __init__(self, kind: EntityKind):
        self.kind = kind
        self._entries: dict[str, str] = {}

    def record(self, source_id: str, target_id: str) -> None:
        """Record the target id of a created item.

        Raises:
            RestorationError: If the source id was already mapped
        """
        if source_id in self._entries:
            raise RestorationError(
                f"{self.kind} {source_id} already mapped to {self._entries[source_id]}"
            )
        self._entries[source_id] = target_id

    def get(self, source_id: str | None) -> str | None:
        if source_id is None:
            return None
        return self._entries.get(source_id)

    def as_dict(self) -> dict[str, str]:
        return dict(self._entries)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"IdentifierMap(kind={self.kind}, entries={len(self._entries)})"


@dataclass
class RestorationRecord:
    """Outcome of restoring one plan, persisted for audit and rollback tooling.

    Attributes:
        original_plan_id: Plan id in the source tenant
        new_plan_id: Plan id created in the target tenant
        group_id: Microsoft 365 group that owns the new plan
        bucket_map: Source bucket id -> target bucket id
        task_map: Source task id -> target task id
        import_date: When the restoration finished (UTC)
    """

    original_plan_id: str
    new_plan_id: str
    group_id: str
    bucket_map: dict[str, str] = field(default_factory=dict)
    task_map: dict[str, str] = field(default_factory=dict)
    import_date: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_document(self) -> dict[str, Any]:
        """Render the record with the field names external tooling expects."""
        return {
            "ImportDate": self.import_date.isoformat(),
            "OriginalPlanId": self.original_plan_id,
            "NewPlanId": self.new_plan_id,
            "GroupId": self.group_id,
            "BucketMap": dict(self.bucket_map),
            "TaskMap": dict(self.task_map),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "RestorationRecord":
        return cls(
            original_plan_id=document["OriginalPlanId"],
            new_plan_id=document["NewPlanId"],
            group_id=document["GroupId"],
            bucket_map=dict(document.get("BucketMap") or {}),
            task_map=dict(document.get("TaskMap") or {}),
            import_date=datetime.fromisoformat(document["ImportDate"]),
        )
