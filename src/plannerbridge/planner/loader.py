"""Loading and validating exported plan documents."""

import logging
from pathlib import Path

import msgspec
import pydantic

from plannerbridge.exceptions import ValidationError
from plannerbridge.planner.models import PlanExport

logger = logging.getLogger(__name__)


def parse_export(raw: bytes | str, source: str = "<memory>") -> PlanExport:
    """Decode and validate one export document.

    Args:
        raw: JSON document bytes or text
        source: Label used in error messages (usually the file name)

    Returns:
        Validated PlanExport

    Raises:
        ValidationError: If the document is not JSON or fails schema validation
    """
    try:
        data = msgspec.json.decode(raw)
    except msgspec.DecodeError as e:
        raise ValidationError(f"{source}: not a valid JSON document: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"{source}: expected a JSON object, got {type(data).__name__}")

    try:
        export = PlanExport.model_validate(data)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"{source}: invalid export document ({problems})") from e

    _check_references(export, source)
    return export


def _check_references(export: PlanExport, source: str) -> None:
    """Reject documents whose items contradict each other.

    Dangling bucket references are tolerated (the task is restored without a
    bucket); duplicate ids are not, because identifier maps are write-once.
    """
    for label, items in (("bucket", export.buckets), ("task", export.tasks)):
        seen: set[str] = set()
        for item in items:
            if item.id in seen:
                raise ValidationError(f"{source}: duplicate {label} id {item.id}")
            seen.add(item.id)

    task_ids = {task.id for task in export.tasks}
    orphans = [detail.id for detail in export.task_details if detail.id not in task_ids]
    if orphans:
        logger.warning(
            f"{source}: {len(orphans)} task detail record(s) reference unknown tasks "
            f"and will be ignored: {orphans[:5]}"
        )


def load_export(path: Path) -> PlanExport:
    """Load one export file.

    Raises:
        ValidationError: If the file cannot be read or is invalid
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ValidationError(f"Cannot read export file {path}: {e}") from e
    export = parse_export(raw, source=path.name)
    logger.debug(
        f"Loaded {path.name}: plan={export.plan.title!r}, buckets={len(export.buckets)}, "
        f"tasks={len(export.tasks)}, details={len(export.task_details)}"
    )
    return export


def load_exports(paths: list[Path]) -> list[PlanExport]:
    """Load export files, expanding directories to their ``*.json`` files (sorted).

    Raises:
        ValidationError: If a path does not exist, or any document is invalid
    """
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(sorted(path.glob("*.json")))
        elif path.exists():
            files.append(path)
        else:
            raise ValidationError(f"Export path not found: {path}")

    if not files:
        raise ValidationError(f"No export documents found in: {', '.join(map(str, paths))}")

    return [load_export(file) for file in files]
