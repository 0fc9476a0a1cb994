import logging
import re
import shutil
from pathlib import Path

from stackdeploy.domain.errors import BuildError, SourceFetchError
from stackdeploy.infrastructure.process import run_command

logger = logging.getLogger(__name__)

_SHA = re.compile(r"^[0-9a-f]{7,40}$")


class GitClient:
    """Read-only access to the tracked remote through the ``git`` CLI."""

    def __init__(self, repo_url: str, branch: str, timeout: float = 120.0):
        self.repo_url = repo_url
        self.branch = branch
        self.timeout = timeout

    async def resolve_tip(self) -> str:
        if not self.repo_url:
            raise SourceFetchError("no repository URL configured")

        ref = f"refs/heads/{self.branch}"
        result = await run_command(["git", "ls-remote", self.repo_url, ref], timeout=self.timeout)
        if not result.ok:
            raise SourceFetchError(f"git ls-remote {self.repo_url} failed: {result.stderr.strip()}")

        for line in result.stdout.splitlines():
            sha, _, name = line.partition("\t")
            if name.strip() == ref and _SHA.match(sha):
                return sha
        raise SourceFetchError(f"branch {self.branch!r} not found on {self.repo_url}")

    async def checkout(self, revision_id: str, target_dir: Path) -> Path:
        """Clone the remote into ``target_dir`` and check out ``revision_id``."""
        if target_dir.exists():
            shutil.rmtree(target_dir)
        target_dir.parent.mkdir(parents=True, exist_ok=True)

        clone = await run_command(
            ["git", "clone", "--quiet", "--no-checkout", self.repo_url, str(target_dir)],
            timeout=self.timeout,
        )
        if not clone.ok:
            raise BuildError(f"could not clone {self.repo_url}", revision_id, clone.stderr)

        checkout = await run_command(
            ["git", "-C", str(target_dir), "checkout", "--quiet", "--force", revision_id],
            timeout=self.timeout,
        )
        if not checkout.ok:
            raise BuildError(f"revision {revision_id} could not be checked out", revision_id, checkout.stderr)

        logger.info(f"📦 Materialized {revision_id[:12]} into {target_dir}")
        return target_dir
