import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from stackdeploy.domain.entities import LiveStackRecord, LiveStatus, StackSet
from stackdeploy.domain.errors import StaleStackVersionError

logger = logging.getLogger(__name__)


class StackRepository:
    """Single versioned record of the live stack, updated by compare-and-swap.

    The record is kept in memory and mirrored to ``path`` with an atomic
    replace so a restarted orchestrator sees the same live stack.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._lock = asyncio.Lock()
        self._record = self._load()

    def _load(self) -> LiveStackRecord:
        if self.path and self.path.exists():
            return LiveStackRecord.model_validate_json(self.path.read_text(encoding="utf-8"))
        return LiveStackRecord()

    def _persist(self, record: LiveStackRecord) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def current(self) -> LiveStackRecord:
        return self._record

    async def compare_and_swap(
        self,
        expected_version: int,
        status: LiveStatus,
        stack: Optional[StackSet],
    ) -> LiveStackRecord:
        async with self._lock:
            if self._record.version != expected_version:
                raise StaleStackVersionError(expected_version, self._record.version)
            record = LiveStackRecord(
                version=expected_version + 1,
                status=status,
                stack=stack,
                updated_at=datetime.now(timezone.utc),
            )
            self._persist(record)
            self._record = record

        revision = stack.revision_id[:12] if stack else "-"
        logger.info(f"📌 Live stack v{record.version}: {status.value} ({revision})")
        return record
