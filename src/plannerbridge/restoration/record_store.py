"""Persistence of restoration records and error reports as JSON documents."""

import logging
from pathlib import Path
from typing import Any

import msgspec

from plannerbridge.exceptions import StorageError
from plannerbridge.planner.models import RestorationRecord

logger = logging.getLogger(__name__)


def _safe_name(value: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in value)[:80]


def write_json(path: Path, document: dict[str, Any]) -> Path:
    """Write a document as indented JSON, creating parent directories.

    Raises:
        StorageError: If encoding or writing fails
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(msgspec.json.format(msgspec.json.encode(document), indent=2))
    except (OSError, msgspec.EncodeError) as e:
        raise StorageError(f"Failed to write {path}: {e}") from e
    return path


class RestorationRecordStore:
    """Writes one ``restore-<plan>-<timestamp>.json`` file per restored plan.

    Re-running a restoration creates new items in the target tenant and a new
    record file; earlier records are never overwritten.

    Examples:
        >>> store = RestorationRecordStore(Path("restore-records"))
        >>> path = store.save(record)
        >>> store.load(path).new_plan_id
    """

    def __init__(self, directory: Path):
        self.directory = directory

    def path_for(self, record: RestorationRecord) -> Path:
        stamp = record.import_date.strftime("%Y%m%dT%H%M%S%f")
        return self.directory / f"restore-{_safe_name(record.original_plan_id)}-{stamp}.json"

    def save(self, record: RestorationRecord) -> Path:
        """Persist a record and return its path.

        Raises:
            StorageError: If the record cannot be written
        """
        path = write_json(self.path_for(record), record.to_document())
        logger.info(
            f"Saved restoration record for plan {record.original_plan_id} -> "
            f"{record.new_plan_id} to {path} "
            f"(buckets={len(record.bucket_map)}, tasks={len(record.task_map)})"
        )
        return path

    def load(self, path: Path) -> RestorationRecord:
        """Load a record written by ``save``.

        Raises:
            StorageError: If the file is missing or malformed
        """
        try:
            document = msgspec.json.decode(path.read_bytes())
            return RestorationRecord.from_document(document)
        except (OSError, msgspec.DecodeError, KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to load restoration record {path}: {e}") from e

    def list(self) -> list[Path]:
        if not self.directory.exists():
            return []
        return sorted(self.directory.glob("restore-*.json"))
