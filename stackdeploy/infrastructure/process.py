"""Blocking CLI invocations offloaded to a worker thread."""
import asyncio
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


async def run_command(
    args: Sequence[str],
    timeout: float = 60.0,
    cwd: Optional[Union[str, Path]] = None,
) -> CommandResult:
    """Run ``args`` without a shell and capture its output.

    A timeout is reported through ``timed_out`` with returncode -1 instead of
    raising, so callers decide which error type it maps to.
    """
    argv = list(args)
    logger.debug(f"$ {' '.join(argv)}")

    def run_sync_cmd() -> subprocess.CompletedProcess:
        return subprocess.run(
            argv,
            capture_output=True,
            text=True,
            cwd=str(cwd) if cwd else None,
            timeout=timeout,
        )

    try:
        proc = await asyncio.to_thread(run_sync_cmd)
    except subprocess.TimeoutExpired:
        logger.warning(f"⏱️ `{argv[0]} {argv[1] if len(argv) > 1 else ''}` timed out after {timeout}s")
        return CommandResult(argv, -1, "", f"timed out after {timeout}s", timed_out=True)
    except FileNotFoundError as e:
        return CommandResult(argv, 127, "", str(e))

    return CommandResult(argv, proc.returncode, proc.stdout, proc.stderr)
