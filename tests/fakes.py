"""In-memory stand-ins for git, docker and health probes."""

import itertools
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from stackdeploy.dependencies import Orchestrator
from stackdeploy.domain.entities import StackState
from stackdeploy.domain.errors import DockerCommandError, SourceFetchError
from stackdeploy.domain.services import (
    DeploymentPipeline,
    HealthGate,
    HealthGatedDeployer,
    HealthPolicy,
    ImageBuilder,
    RollbackController,
    SourceWatcher,
)
from stackdeploy.infrastructure.docker.dockerfile import BuildSpec
from stackdeploy.infrastructure.process import CommandResult
from stackdeploy.infrastructure.state.host_lock import HostLock
from stackdeploy.infrastructure.state.outcome_store import OutcomeStore
from stackdeploy.infrastructure.state.stack_repository import StackRepository


class FakeGit:
    def __init__(self, tip: str = "abc123"):
        self.tip = tip
        self.unreachable = False
        self.without_requirements: set[str] = set()
        self.checkouts: List[str] = []

    async def resolve_tip(self) -> str:
        if self.unreachable:
            raise SourceFetchError("remote unreachable")
        return self.tip

    async def checkout(self, revision_id: str, target_dir: Path) -> Path:
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / "app.py").write_text("print('hello')\n", encoding="utf-8")
        if revision_id not in self.without_requirements:
            (target_dir / "requirement.txt").write_text("flask\nmysqlclient\n", encoding="utf-8")
        self.checkouts.append(revision_id)
        return target_dir


class FakeDocker:
    """Tracks containers by name; every mutating call lands in ``events``."""

    def __init__(self, events: Optional[list] = None):
        self.events = events if events is not None else []
        self.containers: Dict[str, dict] = {}
        self.networks: set[str] = set()
        self.volumes: set[str] = set()
        self.tags: Dict[str, str] = {}
        self.specs: Dict[str, object] = {}
        self.failing_builds: set[str] = set()
        self.build_timeouts: set[str] = set()
        # "container command" strings whose exec exits non-zero.
        self.failing_execs: set[str] = set()
        self.execs: List[str] = []
        self._ids = itertools.count(1)

    def _find(self, container: str) -> Optional[dict]:
        for name, info in self.containers.items():
            if container in (name, info["Id"]):
                return info
        return None

    def started_names(self) -> List[str]:
        return [name for kind, name in self.events if kind == "run"]

    def removed_names(self) -> List[str]:
        return [name for kind, name in self.events if kind == "remove"]

    async def build(self, context_dir: Path, tag: str, timeout: float) -> CommandResult:
        args = ["docker", "build", "--tag", tag, str(context_dir)]
        self.events.append(("build", tag))
        if tag in self.build_timeouts:
            return CommandResult(args, -1, "", "timed out", timed_out=True)
        if tag in self.failing_builds:
            return CommandResult(args, 1, "Step 4/8 : RUN pip install", "ERROR: no matching distribution")
        self.tags[tag] = tag
        return CommandResult(args, 0, f"Successfully tagged {tag}\n", "")

    async def tag(self, source: str, target: str) -> None:
        self.tags[target] = source
        self.events.append(("tag", target))

    async def ensure_network(self, name: str) -> None:
        self.networks.add(name)

    async def ensure_volume(self, name: str) -> None:
        self.volumes.add(name)

    async def inspect(self, container: str) -> Optional[dict]:
        info = self._find(container)
        if info is None:
            return None
        return {"Id": info["Id"], "State": {"Running": info["Running"]}, "Config": {"Image": info["Image"]}}

    async def is_running(self, container: str) -> bool:
        info = self._find(container)
        return bool(info and info["Running"])

    async def run(self, spec) -> str:
        if spec.name in self.containers:
            raise DockerCommandError(["docker", "run", spec.name], 125, "container name already in use")
        container_id = f"{spec.name}-{next(self._ids):04d}"
        self.containers[spec.name] = {"Id": container_id, "Image": spec.image, "Running": True}
        self.specs[spec.name] = spec
        self.events.append(("run", spec.name))
        return container_id

    async def exec(self, container: str, command: List[str], timeout: float) -> CommandResult:
        line = " ".join([container, *command])
        self.execs.append(line)
        args = ["docker", "exec", container, *command]
        if line in self.failing_execs:
            return CommandResult(args, 1, "", "host not found in upstream")
        return CommandResult(args, 0, "mysqld is alive\n", "")

    async def stop(self, container: str) -> None:
        info = self._find(container)
        if info is None:
            raise DockerCommandError(["docker", "stop", container], 1, "No such container")
        info["Running"] = False
        self.events.append(("stop", self._name_of(info)))

    async def remove(self, container: str) -> None:
        info = self._find(container)
        if info is None:
            raise DockerCommandError(["docker", "rm", container], 1, "No such container")
        name = self._name_of(info)
        del self.containers[name]
        self.events.append(("remove", name))

    def _name_of(self, info: dict) -> str:
        return next(name for name, candidate in self.containers.items() if candidate is info)


class ScriptedProbe:
    """Answers from a per-image script; the last answer repeats once the script runs out."""

    def __init__(self, scripts: Optional[Dict[str, Iterable[bool]]] = None, default: bool = True, events=None):
        self.scripts = {image: list(answers) for image, answers in (scripts or {}).items()}
        self.default = default
        self.events = events
        self.calls: List[str] = []

    def script(self, image: str, answers: Iterable[bool]) -> None:
        self.scripts[image] = list(answers)

    async def check(self, state: StackState) -> bool:
        self.calls.append(state.image)
        answers = self.scripts.get(state.image)
        if answers is None:
            healthy = self.default
        elif len(answers) > 1:
            healthy = answers.pop(0)
        else:
            healthy = answers[0] if answers else self.default
        if self.events is not None:
            self.events.append(("probe", f"{state.container_name}:{'ok' if healthy else 'fail'}"))
        return healthy


def make_orchestrator(settings, git: FakeGit, docker: FakeDocker, db_probe: ScriptedProbe, app_probe: ScriptedProbe):
    """Wire the real services around fakes, mirroring ``build_orchestrator``."""
    state_dir = settings.STATE_DIR
    repository = StackRepository(state_dir / "live_stack.json")
    outcomes = OutcomeStore(state_dir / "outcomes.jsonl")
    builder = ImageBuilder(
        git,
        docker,
        work_dir=settings.WORK_DIR,
        image_repository=settings.IMAGE_REPOSITORY,
        build_spec=BuildSpec.from_settings(settings),
        build_timeout=settings.BUILD_TIMEOUT_SECONDS,
    )
    deployer = HealthGatedDeployer(
        settings,
        docker,
        builder,
        repository,
        HealthGate(HealthPolicy.from_settings(settings)),
        database_probe=db_probe,
        app_probe_factory=lambda port: app_probe,
        manifest_path=state_dir / "docker-compose.yml",
    )
    rollback_controller = RollbackController(deployer, repository, outcomes)
    pipeline = DeploymentPipeline(
        builder,
        deployer,
        rollback_controller,
        repository,
        outcomes,
        host_lock=HostLock(state_dir / "pipeline.lock"),
        queue_size=settings.QUEUE_SIZE,
        history_size=settings.RUN_HISTORY_SIZE,
    )
    watcher = SourceWatcher(git, pipeline.submit, poll_interval=0.01, backoff_base=0.01, backoff_max=0.05)
    return Orchestrator(
        settings=settings,
        repository=repository,
        outcomes=outcomes,
        builder=builder,
        deployer=deployer,
        rollback_controller=rollback_controller,
        pipeline=pipeline,
        watcher=watcher,
    )


async def deploy(orchestrator, revision_id: str):
    """Request ``revision_id`` and wait for the worker to finish it."""
    from stackdeploy.domain.entities import TriggerSource

    request = orchestrator.watcher.notify(revision_id, TriggerSource.MANUAL, force=True)
    await orchestrator.pipeline.drain()
    return orchestrator.outcomes.for_request(request.request_id)
