"""Planner data models and export document ingestion."""

from plannerbridge.planner.loader import load_export, load_exports, parse_export
from plannerbridge.planner.models import (
    BucketItem,
    EntityKind,
    IdentifierMap,
    PlanExport,
    PlanItem,
    RestorationRecord,
    TaskDetailItem,
    TaskItem,
    UserHint,
)

__all__ = [
    "BucketItem",
    "EntityKind",
    "IdentifierMap",
    "PlanExport",
    "PlanItem",
    "RestorationRecord",
    "TaskDetailItem",
    "TaskItem",
    "UserHint",
    "load_export",
    "load_exports",
    "parse_export",
]
