"""Metadata tracking for pipeline stages.

This module handles idempotence by tracking which stages have been completed
for which ranges. A range is identified by a short label, for example
``2020-09-01_2021-08-31`` for a date range or ``fy2021`` for a fiscal year.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from netsales_core.utils import write_text_atomic

logger = logging.getLogger(__name__)


@dataclass
class StageMetadata:
    """Metadata for a completed stage.

    Attributes:
        range_key: Label of the processed range.
        version: Version string for the stage logic.
        last_run: ISO timestamp of when stage was run.
        status: "ok" or "failed".
        keys: Entity codes the stage was restricted to (empty for all).
        row_count: Number of rows written.
        skipped_count: Number of records excluded, by any reason.
    """

    range_key: str
    version: str
    last_run: str
    status: str
    keys: list[str] = field(default_factory=list)
    row_count: int = 0
    skipped_count: int = 0

    @classmethod
    def now(cls, range_key: str, version: str, status: str, **kwargs) -> StageMetadata:
        return cls(
            range_key=range_key,
            version=version,
            last_run=datetime.now().isoformat(),
            status=status,
            **kwargs,
        )


def range_key(start_date: str, end_date: str) -> str:
    return f"{start_date}_{end_date}"


def _meta_path(stage_dir: Path, key: str) -> Path:
    meta_dir = stage_dir / "_meta"
    meta_dir.mkdir(parents=True, exist_ok=True)
    return meta_dir / f"{key}.json"


def write_metadata(stage_dir: Path, metadata: StageMetadata) -> None:
    """Write the metadata file for a stage completion."""
    path = _meta_path(stage_dir, metadata.range_key)
    write_text_atomic(path, json.dumps(asdict(metadata), indent=2))
    logger.debug("Wrote metadata: %s", path)


def read_metadata(stage_dir: Path, key: str) -> Optional[StageMetadata]:
    """Read the metadata file for a range, if it exists and parses."""
    path = _meta_path(stage_dir, key)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
        return StageMetadata(**data)
    except (ValueError, TypeError) as e:
        logger.warning("Error reading metadata %s: %s", path, e)
        return None


def should_run_stage(stage_dir: Path, key: str, version: str) -> bool:
    """Check if a stage needs to run based on metadata.

    Returns True if:
    - No metadata exists for this range
    - Metadata status is not "ok"
    - Metadata version doesn't match current version
    """
    meta = read_metadata(stage_dir, key)
    if meta is None:
        return True
    if meta.status != "ok":
        return True
    return meta.version != version
