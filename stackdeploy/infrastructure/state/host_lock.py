"""Host-level lockfile guarding against overlapping pipeline runs."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from stackdeploy.domain.errors import PipelineBusyError

logger = logging.getLogger(__name__)


@dataclass
class LockInfo:
    pid: int
    run_id: str
    acquired_at: float

    def to_dict(self) -> dict:
        return {"pid": self.pid, "run_id": self.run_id, "acquired_at": self.acquired_at}

    @classmethod
    def from_dict(cls, data: dict) -> LockInfo:
        return cls(
            pid=int(data["pid"]),
            run_id=str(data.get("run_id", "")),
            acquired_at=float(data.get("acquired_at", 0)),
        )


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class HostLock:
    """Exclusive lockfile created with ``O_EXCL``.

    A lock left behind by a process that no longer exists is reclaimed.

    Parameters
    ----------
    path:
        Location of the lockfile, normally ``STATE_DIR/pipeline.lock``.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._held: Optional[LockInfo] = None

    def holder(self) -> Optional[LockInfo]:
        try:
            return LockInfo.from_dict(json.loads(self.path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError):
            # Half-written or foreign content; treat as stale.
            return LockInfo(pid=-1, run_id="", acquired_at=0)

    def acquire(self, run_id: str) -> LockInfo:
        """Take the lock for ``run_id``.

        Raises
        ------
        PipelineBusyError
            If another live process holds the lock.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        info = LockInfo(pid=os.getpid(), run_id=run_id, acquired_at=time.time())

        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                existing = self.holder()
                if existing and existing.pid > 0 and _pid_alive(existing.pid):
                    raise PipelineBusyError(
                        f"host lock held by pid {existing.pid} (run {existing.run_id or '?'})"
                    )
                logger.warning(f"🔓 Reclaiming stale host lock {self.path}")
                self.path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(info.to_dict(), fh)
            self._held = info
            logger.debug(f"Host lock acquired for run {run_id}")
            return info

        raise PipelineBusyError(f"could not acquire host lock {self.path}")

    def release(self) -> None:
        if self._held is None:
            return
        current = self.holder()
        if current and current.pid == self._held.pid and current.run_id == self._held.run_id:
            self.path.unlink(missing_ok=True)
        self._held = None
