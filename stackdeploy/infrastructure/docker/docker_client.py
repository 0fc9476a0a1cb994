"""
Docker engine access via the docker CLI (no docker SDK).

Only the operations the orchestrator needs are exposed. Named volumes are
created here and never removed.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from stackdeploy.domain.errors import DockerCommandError
from stackdeploy.infrastructure.process import CommandResult, run_command

logger = logging.getLogger(__name__)


@dataclass
class HealthcheckSpec:
    test: List[str]
    interval: float
    timeout: float
    retries: int
    start_period: float


@dataclass
class ContainerSpec:
    name: str
    image: str
    network: str
    env: Dict[str, str] = field(default_factory=dict)
    ports: Dict[int, int] = field(default_factory=dict)  # host -> container
    volumes: Dict[str, str] = field(default_factory=dict)  # volume -> mount path
    restart: str = "unless-stopped"
    network_alias: Optional[str] = None
    healthcheck: Optional[HealthcheckSpec] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def to_run_args(self) -> List[str]:
        args = ["docker", "run", "--detach", "--name", self.name, "--network", self.network]
        if self.network_alias:
            args += ["--network-alias", self.network_alias]
        args += ["--restart", self.restart]
        for key, value in sorted(self.env.items()):
            args += ["--env", f"{key}={value}"]
        for host_port, container_port in sorted(self.ports.items()):
            args += ["--publish", f"{host_port}:{container_port}"]
        for volume, path in sorted(self.volumes.items()):
            args += ["--volume", f"{volume}:{path}"]
        for key, value in sorted(self.labels.items()):
            args += ["--label", f"{key}={value}"]
        if self.healthcheck:
            hc = self.healthcheck
            args += [
                "--health-cmd", " ".join(hc.test),
                "--health-interval", f"{int(hc.interval)}s",
                "--health-timeout", f"{int(hc.timeout)}s",
                "--health-retries", str(hc.retries),
                "--health-start-period", f"{int(hc.start_period)}s",
            ]
        args.append(self.image)
        return args


class DockerClient:
    def __init__(self, command_timeout: float = 60.0):
        self.command_timeout = command_timeout

    async def _run(self, args: List[str], timeout: Optional[float] = None, check: bool = True) -> CommandResult:
        result = await run_command(args, timeout=timeout or self.command_timeout)
        if check and not result.ok:
            logger.error(f"❌ {' '.join(args[:3])} failed (rc={result.returncode}): {result.stderr.strip()}")
            raise DockerCommandError(args, result.returncode, result.stderr)
        return result

    async def build(self, context_dir: Path, tag: str, timeout: float) -> CommandResult:
        """Run ``docker build``; the caller maps a failed result to its own error."""
        return await self._run(["docker", "build", "--tag", tag, str(context_dir)], timeout=timeout, check=False)

    async def tag(self, source: str, target: str) -> None:
        await self._run(["docker", "tag", source, target])

    async def ensure_network(self, name: str) -> None:
        existing = await self._run(["docker", "network", "inspect", name], check=False)
        if not existing.ok:
            await self._run(["docker", "network", "create", "--driver", "bridge", name])
            logger.info(f"🌐 Created network {name}")

    async def ensure_volume(self, name: str) -> None:
        existing = await self._run(["docker", "volume", "inspect", name], check=False)
        if not existing.ok:
            await self._run(["docker", "volume", "create", name])
            logger.info(f"💾 Created volume {name}")

    async def inspect(self, container: str) -> Optional[Dict[str, Any]]:
        """Return the inspect document for ``container`` or None when it does not exist."""
        result = await self._run(["docker", "container", "inspect", container], check=False)
        if not result.ok:
            return None
        info = json.loads(result.stdout or "[]")
        return info[0] if info else None

    async def is_running(self, container: str) -> bool:
        info = await self.inspect(container)
        return bool(info and info.get("State", {}).get("Running"))

    async def run(self, spec: ContainerSpec) -> str:
        result = await self._run(spec.to_run_args())
        container_id = result.stdout.strip()
        logger.info(f"🚀 Started {spec.name} ({container_id[:12]}) from {spec.image}")
        return container_id

    async def exec(self, container: str, command: List[str], timeout: float) -> CommandResult:
        return await self._run(["docker", "exec", container, *command], timeout=timeout, check=False)

    async def stop(self, container: str) -> None:
        await self._run(["docker", "stop", container])

    async def remove(self, container: str) -> None:
        # No --volumes flag: named volumes outlive every container.
        await self._run(["docker", "rm", "--force", container])
        logger.info(f"🧹 Removed container {container}")
