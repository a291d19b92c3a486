"""Restoration of exported Planner plans into a target tenant.

This module provides the RestorationCoordinator class that handles:
- Creating plans, buckets, tasks and task details in dependency order
- Maintaining source -> target identifier maps per run
- Re-assigning tasks through cross-tenant identity resolution
- Conditional (ETag) updates for task details and plan categories
- Recording every outcome in the run's ErrorTracker
- Dry runs that walk the same steps without touching the target tenant
"""

import logging
from enum import StrEnum
from typing import Any

from plannerbridge.exceptions import GraphRequestError, RestorationError, StorageError
from plannerbridge.identity.resolver import IdentityResolver
from plannerbridge.planner.models import (
    BucketItem,
    EntityKind,
    IdentifierMap,
    PlanExport,
    RestorationRecord,
    TaskDetailItem,
    TaskItem,
    UserHint,
)
from plannerbridge.restoration import payloads
from plannerbridge.restoration.concurrency import ConcurrencyGuard
from plannerbridge.restoration.context import RunContext
from plannerbridge.restoration.error_tracker import ErrorTracker
from plannerbridge.restoration.record_store import RestorationRecordStore
from plannerbridge.transport.executor import ApiOperation, RequestExecutor

logger = logging.getLogger(__name__)

# Failures that skip one item and let the run continue
ITEM_ERRORS = (GraphRequestError, RestorationError)


class RestorationState(StrEnum):
    """Steps of restoring one plan."""

    CREATING_PLAN = "CreatingPlan"
    APPLYING_CATEGORIES = "ApplyingCategories"
    CREATING_BUCKETS = "CreatingBuckets"
    CREATING_TASKS = "CreatingTasks"
    SETTING_TASK_DETAILS = "SettingTaskDetails"
    FINALIZING = "Finalizing"
    DONE = "Done"
    FAILED = "Failed"


def _bucket_sort_key(bucket: BucketItem) -> tuple[bool, str]:
    # Planner order hints compare ordinally; buckets without a hint go last
    return (bucket.order_hint is None, bucket.order_hint or "")


def _created_id(response: Any, what: str) -> str:
    if isinstance(response, dict) and response.get("id"):
        return str(response["id"])
    raise RestorationError(f"Create {what} returned no id")


class RestorationCoordinator:
    """Restores exported plans one at a time, strictly sequentially.

    Only the plan itself is fatal: if it cannot be created the plan is
    abandoned and the next export is processed. Bucket, task, detail and
    category failures are recorded and skipped. Tasks whose bucket failed
    are still created, without a bucket.

    Re-running against the same target group creates duplicates: there is
    no idempotency key and no resume of a partially completed run.

    Examples:
        >>> context = RunContext()
        >>> coordinator = RestorationCoordinator(
        ...     context,
        ...     executor=executor,
        ...     guard=ConcurrencyGuard(executor),
        ...     resolver=IdentityResolver(executor, context),
        ...     record_store=RestorationRecordStore(Path("restore-records")),
        ...     group_id="a1b2c3",
        ... )
        >>> records = coordinator.restore_all(exports)
        >>> report, exit_code = context.tracker.finalize()
    """

    def __init__(
        self,
        context: RunContext,
        executor: RequestExecutor | None = None,
        guard: ConcurrencyGuard | None = None,
        resolver: IdentityResolver | None = None,
        record_store: RestorationRecordStore | None = None,
        group_id: str | None = None,
        include_details: bool = True,
        include_categories: bool = True,
    ):
        """Initialize the coordinator.

        Args:
            context: Run state (tracker, identity cache, dry-run flag)
            executor: Request executor for the target tenant (unused in dry runs)
            guard: Concurrency guard for detail updates (defaults to one over ``executor``)
            resolver: Identity resolver (defaults to one over ``executor`` without explicit map)
            record_store: Where restoration records are persisted (None: not persisted)
            group_id: Microsoft 365 group that will own the restored plans
            include_details: Restore task descriptions, checklists and references
            include_categories: Restore plan category labels

        Raises:
            RestorationError: If a live run is missing its executor or group id
        """
        if not context.dry_run:
            if executor is None:
                raise RestorationError("An executor is required unless running in dry mode")
            if not group_id:
                raise RestorationError("A target group id is required unless running in dry mode")

        self.context = context
        self.executor = executor
        self.guard = guard or (ConcurrencyGuard(executor) if executor else None)
        self.resolver = resolver or (IdentityResolver(executor, context) if executor else None)
        self.record_store = record_store
        self.group_id = group_id or ""
        self.include_details = include_details
        self.include_categories = include_categories
        self.state = RestorationState.DONE

    @property
    def tracker(self) -> ErrorTracker:
        return self.context.tracker

    def _enter(self, state: RestorationState, plan_title: str) -> None:
        self.state = state
        logger.debug(f"[{plan_title}] {state}")

    def restore_all(self, exports: list[PlanExport]) -> list[RestorationRecord]:
        """Restore a batch of plans in order.

        Returns:
            Records of the plans that were created (empty in dry runs)
        """
        records: list[RestorationRecord] = []
        for index, export in enumerate(exports, start=1):
            logger.info(f"Restoring plan {index}/{len(exports)}: {export.plan.title!r}")
            record = self.restore_plan(export)
            if record is not None:
                records.append(record)
        return records

    def restore_plan(self, export: PlanExport) -> RestorationRecord | None:
        """Restore one plan with its buckets, tasks and details.

        Returns:
            The restoration record, or None if the plan could not be created
            or this is a dry run
        """
        if self.context.dry_run:
            self._describe(export)
            return None

        title = export.plan.title
        self._enter(RestorationState.CREATING_PLAN, title)
        new_plan_id = self._create_plan(export)
        if new_plan_id is None:
            self._enter(RestorationState.FAILED, title)
            return None

        if self.include_categories:
            self._enter(RestorationState.APPLYING_CATEGORIES, title)
            self._apply_categories(export, new_plan_id)

        self._enter(RestorationState.CREATING_BUCKETS, title)
        bucket_map = IdentifierMap(EntityKind.BUCKET)
        for bucket in sorted(export.buckets, key=_bucket_sort_key):
            self._create_bucket(bucket, new_plan_id, bucket_map)

        self._enter(RestorationState.CREATING_TASKS, title)
        task_map = IdentifierMap(EntityKind.TASK)
        details = export.details_by_task_id() if self.include_details else {}
        for task in export.tasks:
            new_task_id = self._create_task(
                task, new_plan_id, bucket_map, task_map, export.user_map
            )
            detail = details.get(task.id)
            if new_task_id is not None and detail is not None:
                self._enter(RestorationState.SETTING_TASK_DETAILS, title)
                self._set_task_details(task, new_task_id, detail)
                self.state = RestorationState.CREATING_TASKS

        self._enter(RestorationState.FINALIZING, title)
        record = RestorationRecord(
            original_plan_id=export.plan.id,
            new_plan_id=new_plan_id,
            group_id=self.group_id,
            bucket_map=bucket_map.as_dict(),
            task_map=task_map.as_dict(),
        )
        if self.record_store is not None:
            self._save_record(record, title)

        self._enter(RestorationState.DONE, title)
        logger.info(
            f"Restored plan {title!r} as {new_plan_id}: "
            f"{len(bucket_map)}/{len(export.buckets)} buckets, "
            f"{len(task_map)}/{len(export.tasks)} tasks"
        )
        return record

    def _save_record(self, record: RestorationRecord, title: str) -> None:
        try:
            self.record_store.save(record)
        except StorageError as e:
            # The plan exists in the target tenant; keep the mapping in the log
            self.tracker.record(EntityKind.PLAN, title, e, context="save restoration record")
            logger.error(f"Unsaved restoration record for {title!r}: {record.to_document()}")

    def _create_plan(self, export: PlanExport) -> str | None:
        plan = export.plan
        self.tracker.attempt(EntityKind.PLAN)
        try:
            response = self.executor.execute(
                ApiOperation(
                    "POST",
                    "/planner/plans",
                    payload=payloads.plan_payload(self.group_id, plan.title),
                )
            )
            new_plan_id = _created_id(response, f"plan {plan.title!r}")
        except ITEM_ERRORS as e:
            self.tracker.record(EntityKind.PLAN, plan.title, e, context="create plan")
            logger.error(f"Abandoning plan {plan.title!r}: the plan itself could not be created")
            return None

        self.tracker.succeed(EntityKind.PLAN)
        logger.info(f"Created plan {plan.title!r}: {plan.id} -> {new_plan_id}")
        return new_plan_id

    def _apply_categories(self, export: PlanExport, new_plan_id: str) -> None:
        body = payloads.category_payload(export.categories)
        if not body:
            return

        self.tracker.attempt(EntityKind.PLAN_DETAILS)
        try:
            self.guard.update_with_concurrency(
                f"/planner/plans/{new_plan_id}/details", lambda _current: body
            )
        except ITEM_ERRORS as e:
            self.tracker.record(
                EntityKind.PLAN_DETAILS,
                export.plan.title,
                e,
                context="apply category descriptions",
            )
            return
        self.tracker.succeed(EntityKind.PLAN_DETAILS)
        logger.info(f"Applied {len(body['categoryDescriptions'])} category label(s)")

    def _create_bucket(
        self, bucket: BucketItem, new_plan_id: str, bucket_map: IdentifierMap
    ) -> None:
        self.tracker.attempt(EntityKind.BUCKET)
        try:
            response = self.executor.execute(
                ApiOperation(
                    "POST", "/planner/buckets", payload=payloads.bucket_payload(new_plan_id, bucket)
                )
            )
            bucket_map.record(bucket.id, _created_id(response, f"bucket {bucket.name!r}"))
        except ITEM_ERRORS as e:
            self.tracker.record(EntityKind.BUCKET, bucket.name, e, context="create bucket")
            return
        self.tracker.succeed(EntityKind.BUCKET)
        logger.debug(f"Created bucket {bucket.name!r}: {bucket.id} -> {bucket_map.get(bucket.id)}")

    def _resolve_assignees(self, task: TaskItem, user_map: dict[str, UserHint]) -> list[str]:
        assignee_ids: list[str] = []
        for source_user_id in task.assignments:
            record = self.resolver.resolve(source_user_id, user_map.get(source_user_id))
            if not record.resolved:
                self.tracker.record_unresolved_identity(source_user_id, task.title, record.reason)
                continue
            if record.target_user_id not in assignee_ids:
                assignee_ids.append(record.target_user_id)
        return assignee_ids

    def _create_task(
        self,
        task: TaskItem,
        new_plan_id: str,
        bucket_map: IdentifierMap,
        task_map: IdentifierMap,
        user_map: dict[str, UserHint],
    ) -> str | None:
        self.tracker.attempt(EntityKind.TASK)

        bucket_id = bucket_map.get(task.bucket_id)
        if task.bucket_id and bucket_id is None:
            logger.warning(
                f"Bucket {task.bucket_id} of task {task.title!r} was not restored; "
                f"creating the task without a bucket"
            )

        assignee_ids = self._resolve_assignees(task, user_map)
        body = payloads.task_payload(new_plan_id, task, bucket_id, assignee_ids)
        try:
            response = self.executor.execute(ApiOperation("POST", "/planner/tasks", payload=body))
            new_task_id = _created_id(response, f"task {task.title!r}")
            task_map.record(task.id, new_task_id)
        except ITEM_ERRORS as e:
            self.tracker.record(EntityKind.TASK, task.title, e, context="create task")
            return None

        self.tracker.succeed(EntityKind.TASK)
        logger.debug(
            f"Created task {task.title!r}: {task.id} -> {new_task_id} "
            f"(bucket={bucket_id or 'none'}, assignees={len(assignee_ids)})"
        )
        return new_task_id

    def _set_task_details(self, task: TaskItem, new_task_id: str, detail: TaskDetailItem) -> None:
        body = payloads.task_detail_payload(detail)
        if not body:
            return

        self.tracker.attempt(EntityKind.TASK_DETAIL)
        try:
            self.guard.update_with_concurrency(
                f"/planner/tasks/{new_task_id}/details", lambda _current: body
            )
        except ITEM_ERRORS as e:
            self.tracker.record(
                EntityKind.TASK_DETAIL, task.title, e, context="update task details"
            )
            return
        self.tracker.succeed(EntityKind.TASK_DETAIL)

    def _describe(self, export: PlanExport) -> None:
        """Log what a live run would do, without any remote call."""
        title = export.plan.title
        self._enter(RestorationState.CREATING_PLAN, title)
        logger.info(f"[dry-run] Would create plan {title!r} in group {self.group_id or '<unset>'}")

        if self.include_categories:
            self._enter(RestorationState.APPLYING_CATEGORIES, title)
            body = payloads.category_payload(export.categories)
            if body:
                labels = ", ".join(body["categoryDescriptions"].values())
                logger.info(f"[dry-run] Would apply category labels: {labels}")

        self._enter(RestorationState.CREATING_BUCKETS, title)
        bucket_names = {bucket.id: bucket.name for bucket in export.buckets}
        for bucket in sorted(export.buckets, key=_bucket_sort_key):
            logger.info(f"[dry-run] Would create bucket {bucket.name!r}")

        self._enter(RestorationState.CREATING_TASKS, title)
        details = export.details_by_task_id() if self.include_details else {}
        for task in export.tasks:
            bucket_name = bucket_names.get(task.bucket_id or "", "<no bucket>")
            logger.info(
                f"[dry-run] Would create task {task.title!r} in {bucket_name} "
                f"with {len(task.assignments)} assignee(s) to resolve"
            )
            detail = details.get(task.id)
            if detail is not None and detail.has_content():
                logger.info(f"[dry-run] Would update details of task {task.title!r}")

        self._enter(RestorationState.FINALIZING, title)
        logger.info(f"[dry-run] No changes made for plan {title!r}")
        self._enter(RestorationState.DONE, title)
