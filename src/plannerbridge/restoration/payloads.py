"""Graph request bodies for restored Planner items.

Exported items carry read-only and tenant-specific fields (ids, timestamps,
``createdBy``, ``lastModifiedBy``); only writable fields are copied here.
"""

import uuid
from typing import Any
from urllib.parse import quote, unquote

from plannerbridge.constants import (
    CHECKLIST_TITLE_MAX,
    DEFAULT_ORDER_HINT,
    MAX_PLAN_CATEGORIES,
)
from plannerbridge.planner.models import BucketItem, TaskDetailItem, TaskItem

# Characters Graph refuses unescaped in externalReference keys
_REFERENCE_KEY_SAFE = "/-_~!$&'()*+,;=?"


def plan_payload(group_id: str, title: str) -> dict[str, Any]:
    return {"owner": group_id, "title": title}


def bucket_payload(plan_id: str, bucket: BucketItem) -> dict[str, Any]:
    payload: dict[str, Any] = {"planId": plan_id, "name": bucket.name}
    if bucket.order_hint:
        payload["orderHint"] = bucket.order_hint
    return payload


def task_payload(
    plan_id: str,
    task: TaskItem,
    bucket_id: str | None,
    assignee_ids: list[str],
) -> dict[str, Any]:
    """Body for ``POST /planner/tasks``.

    Args:
        plan_id: Target plan id
        task: Exported task
        bucket_id: Target bucket id, or None to leave the task unbucketed
        assignee_ids: Target-tenant user ids to assign
    """
    payload: dict[str, Any] = {"planId": plan_id, "title": task.title}
    if bucket_id:
        payload["bucketId"] = bucket_id
    if task.order_hint:
        payload["orderHint"] = task.order_hint
    if task.percent_complete is not None:
        payload["percentComplete"] = task.percent_complete
    if task.priority is not None:
        payload["priority"] = task.priority
    if task.start_date_time:
        payload["startDateTime"] = task.start_date_time
    if task.due_date_time:
        payload["dueDateTime"] = task.due_date_time

    categories = {name: True for name, applied in task.applied_categories.items() if applied}
    if categories:
        payload["appliedCategories"] = categories

    if assignee_ids:
        payload["assignments"] = {
            user_id: {
                "@odata.type": "#microsoft.graph.plannerAssignment",
                "orderHint": DEFAULT_ORDER_HINT,
            }
            for user_id in assignee_ids
        }
    return payload


def encode_reference_key(url: str) -> str:
    """Encode a URL for use as an externalReference key.

    Keys already in Graph form (no raw ``:`` or ``.``) are kept. Anything else
    is unquoted first so existing escapes such as ``%20`` are not doubled.
    """
    if ":" not in url and "." not in url:
        return url
    return quote(unquote(url), safe=_REFERENCE_KEY_SAFE).replace(".", "%2E")


def _checklist(items: dict[str, dict[str, Any]]) -> dict[str, Any]:
    checklist: dict[str, Any] = {}
    for item in items.values():
        title = (item.get("title") or "").strip()
        if not title:
            continue
        checklist[str(uuid.uuid4())] = {
            "@odata.type": "#microsoft.graph.plannerChecklistItem",
            "title": title[:CHECKLIST_TITLE_MAX],
            "isChecked": bool(item.get("isChecked", False)),
            "orderHint": item.get("orderHint") or DEFAULT_ORDER_HINT,
        }
    return checklist


def _references(references: dict[str, dict[str, Any]]) -> dict[str, Any]:
    encoded: dict[str, Any] = {}
    for key, reference in references.items():
        entry: dict[str, Any] = {"@odata.type": "#microsoft.graph.plannerExternalReference"}
        for field_name in ("alias", "type", "previewPriority"):
            if reference.get(field_name) is not None:
                entry[field_name] = reference[field_name]
        encoded[encode_reference_key(key)] = entry
    return encoded


def task_detail_payload(detail: TaskDetailItem) -> dict[str, Any]:
    """Body for ``PATCH /planner/tasks/{id}/details``. Empty when nothing is worth sending."""
    payload: dict[str, Any] = {}
    if detail.description:
        payload["description"] = detail.description
    checklist = _checklist(detail.checklist)
    if checklist:
        payload["checklist"] = checklist
    references = _references(detail.references)
    if references:
        payload["references"] = references
    if payload and detail.preview_type:
        payload["previewType"] = detail.preview_type
    return payload


def category_payload(categories: dict[str, str | None]) -> dict[str, Any]:
    """Body for ``PATCH /planner/plans/{id}/details`` setting category labels.

    Only ``category1`` .. ``category25`` are accepted by Planner.
    """
    allowed = {f"category{i}" for i in range(1, MAX_PLAN_CATEGORIES + 1)}
    descriptions = {
        name: label for name, label in categories.items() if name in allowed and label
    }
    if not descriptions:
        return {}
    return {"categoryDescriptions": descriptions}
