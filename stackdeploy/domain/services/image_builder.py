import logging
from pathlib import Path
from typing import Protocol

from stackdeploy.domain.entities import BuildArtifact, image_tag_for
from stackdeploy.domain.errors import BuildError
from stackdeploy.infrastructure.docker.dockerfile import BuildSpec

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 2000


class SourceCheckout(Protocol):
    async def checkout(self, revision_id: str, target_dir: Path) -> Path: ...


class ImageBuilder:
    def __init__(
        self,
        source: SourceCheckout,
        docker,
        work_dir: Path,
        image_repository: str,
        build_spec: BuildSpec,
        build_timeout: float = 900.0,
    ):
        self.source = source
        self.docker = docker
        self.work_dir = Path(work_dir)
        self.image_repository = image_repository
        self.build_spec = build_spec
        self.build_timeout = build_timeout

    def context_dir_for(self, revision_id: str) -> Path:
        return self.work_dir / "builds" / revision_id[:12]

    async def materialize(self, revision_id: str) -> Path:
        if not revision_id or revision_id == "latest":
            raise BuildError(f"invalid revision id {revision_id!r}", revision_id)
        return await self.source.checkout(revision_id, self.context_dir_for(revision_id))

    def _ensure_dockerfile(self, revision_id: str, context_dir: Path) -> None:
        if (context_dir / "Dockerfile").exists():
            return
        requirements = context_dir / self.build_spec.requirements_file
        if not requirements.exists():
            raise BuildError(
                f"no Dockerfile and no {self.build_spec.requirements_file} in build context",
                revision_id,
            )
        (context_dir / "Dockerfile").write_text(self.build_spec.render(), encoding="utf-8")
        logger.info(f"🧾 Rendered Dockerfile from {self.build_spec.base_image}")

    async def build(self, revision_id: str, context_dir: Path) -> BuildArtifact:
        """Build ``context_dir`` into an image tagged by revision.

        A failed build leaves every existing tag, including the live one, as it was.
        """
        context_dir = Path(context_dir)
        if not context_dir.is_dir():
            raise BuildError(f"build context {context_dir} does not exist", revision_id)
        self._ensure_dockerfile(revision_id, context_dir)

        tag = image_tag_for(self.image_repository, revision_id)
        logger.info(f"🔨 Building {tag}")
        result = await self.docker.build(context_dir, tag, timeout=self.build_timeout)
        if result.timed_out:
            raise BuildError(f"docker build timed out after {self.build_timeout}s", revision_id)
        if not result.ok:
            output = (result.stderr or result.stdout)[-_OUTPUT_TAIL:]
            raise BuildError(f"docker build exited with {result.returncode}", revision_id, output)

        artifact = BuildArtifact(image_tag=tag, revision_id=revision_id)
        logger.info(f"✅ Built {tag}")
        return artifact

    async def promote_tag(self, artifact: BuildArtifact) -> str:
        latest = f"{self.image_repository}:latest"
        await self.docker.tag(artifact.image_tag, latest)
        logger.info(f"🏷️ {latest} -> {artifact.image_tag}")
        return latest
