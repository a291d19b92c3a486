"""Loading the operator-supplied source -> target user mapping table."""

import csv
import logging
from pathlib import Path

import msgspec

from plannerbridge.exceptions import ConfigError

logger = logging.getLogger(__name__)

SOURCE_COLUMN = "SourceUserId"
TARGET_COLUMN = "TargetUserId"


def load_user_map(path: Path) -> dict[str, str]:
    """Load an explicit user mapping from CSV or JSON.

    CSV files need ``SourceUserId`` and ``TargetUserId`` columns. JSON files
    hold a single object ``{"<source id>": "<target id>"}``.

    Args:
        path: Mapping file

    Returns:
        Source user id -> target user id

    Raises:
        ConfigError: If the file is missing or malformed
    """
    if not path.exists():
        raise ConfigError(f"User map not found: {path}")

    if path.suffix.lower() == ".json":
        mapping = _load_json(path)
    else:
        mapping = _load_csv(path)

    logger.info(f"Loaded {len(mapping)} explicit user mapping(s) from {path}")
    return mapping


def _load_json(path: Path) -> dict[str, str]:
    try:
        data = msgspec.json.decode(path.read_bytes(), type=dict[str, str])
    except (OSError, msgspec.DecodeError, msgspec.ValidationError) as e:
        raise ConfigError(f"Invalid user map {path}: {e}") from e
    return {source.strip(): target.strip() for source, target in data.items() if target.strip()}


def _load_csv(path: Path) -> dict[str, str]:
    mapping: dict[str, str] = {}
    try:
        with path.open(encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            missing = {SOURCE_COLUMN, TARGET_COLUMN} - set(reader.fieldnames or [])
            if missing:
                raise ConfigError(f"User map {path} is missing column(s): {sorted(missing)}")
            for row in reader:
                source = (row.get(SOURCE_COLUMN) or "").strip()
                target = (row.get(TARGET_COLUMN) or "").strip()
                if not source or not target:
                    logger.warning(f"{path}:{reader.line_num}: skipping incomplete row")
                    continue
                if source in mapping and mapping[source] != target:
                    raise ConfigError(
                        f"User map {path} maps {source} to both {mapping[source]} and {target}"
                    )
                mapping[source] = target
    except OSError as e:
        raise ConfigError(f"Cannot read user map {path}: {e}") from e
    return mapping
