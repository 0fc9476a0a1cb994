"""
Health-gated rollout of the two-tier stack.

The database tier comes up (or is reused) and must pass its gate before the
application tier is started. The previous stack is left untouched until the
candidate is promoted; ``retire`` removes it afterwards. Under blue_green the
public port belongs to an nginx proxy whose upstream is switched to the
promoted slot, so the live app always answers on APP_HOST_PORT.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from stackdeploy.domain.entities import (
    BuildArtifact,
    LiveStackRecord,
    LiveStatus,
    Slot,
    StackSet,
    StackState,
    Tier,
    TierStatus,
)
from stackdeploy.domain.errors import DeployError, DockerCommandError, HealthCheckTimeout, StaleStackVersionError
from stackdeploy.domain.services.health_gate import HealthGate, HealthProbe
from stackdeploy.infrastructure.docker.compose import (
    app_environment,
    app_healthcheck_test,
    database_environment,
    database_healthcheck_test,
    render_compose_manifest,
    write_manifest,
)
from stackdeploy.infrastructure.docker.docker_client import ContainerSpec, HealthcheckSpec
from stackdeploy.infrastructure.docker.proxy import CONF_MOUNT, read_proxy_conf, render_proxy_conf, write_proxy_conf

logger = logging.getLogger(__name__)

BLUE_GREEN = "blue_green"
RECREATE = "recreate"


class HealthGatedDeployer:
    def __init__(
        self,
        settings,
        docker,
        builder,
        repository,
        gate: HealthGate,
        database_probe: HealthProbe,
        app_probe_factory: Callable[[int], HealthProbe],
        manifest_path: Optional[Path] = None,
    ):
        self.settings = settings
        self.docker = docker
        self.builder = builder
        self.repository = repository
        self.gate = gate
        self.database_probe = database_probe
        self.app_probe_factory = app_probe_factory
        self.manifest_path = manifest_path
        self.strategy = settings.DEPLOY_STRATEGY

    # =========================================================================
    # Layout
    # =========================================================================

    def next_slot(self, previous: Optional[StackSet]) -> Slot:
        return previous.slot.other() if previous else Slot.BLUE

    @property
    def overlaps(self) -> bool:
        """True when the previous app keeps serving while the candidate starts."""
        return self.strategy == BLUE_GREEN

    def app_port_for(self, slot: Slot) -> int:
        if self.strategy != BLUE_GREEN:
            return self.settings.APP_HOST_PORT
        return self.settings.APP_BLUE_PORT if slot is Slot.BLUE else self.settings.APP_GREEN_PORT

    def _healthcheck(self, test: List[str]) -> HealthcheckSpec:
        policy = self.gate.policy
        return HealthcheckSpec(
            test=test[1:],
            interval=policy.interval,
            timeout=policy.timeout,
            retries=policy.retries,
            start_period=policy.start_period,
        )

    def database_spec(self) -> ContainerSpec:
        s = self.settings
        return ContainerSpec(
            name=s.db_container_name,
            image=s.DB_IMAGE,
            network=s.network_name,
            network_alias="database",
            env=database_environment(s),
            ports={s.DB_HOST_PORT: 3306},
            volumes={s.db_volume_name: "/var/lib/mysql"},
            restart=s.RESTART_POLICY,
            healthcheck=self._healthcheck(database_healthcheck_test(s)),
            labels={"stackdeploy.tier": Tier.DATABASE.value},
        )

    def app_spec(self, artifact: BuildArtifact, slot: Slot) -> ContainerSpec:
        s = self.settings
        return ContainerSpec(
            name=s.app_container_name(slot.value),
            image=artifact.image_tag,
            network=s.network_name,
            env=app_environment(s),
            ports={self.app_port_for(slot): s.APP_CONTAINER_PORT},
            restart=s.RESTART_POLICY,
            healthcheck=self._healthcheck(app_healthcheck_test(s)),
            labels={
                "stackdeploy.tier": Tier.APP.value,
                "stackdeploy.slot": slot.value,
                "stackdeploy.revision": artifact.revision_id,
            },
        )

    def proxy_spec(self) -> ContainerSpec:
        s = self.settings
        return ContainerSpec(
            name=s.proxy_container_name,
            image=s.PROXY_IMAGE,
            network=s.network_name,
            ports={s.APP_HOST_PORT: 80},
            volumes={str(s.proxy_conf_dir): f"{CONF_MOUNT}:ro"},
            restart=s.RESTART_POLICY,
            labels={"stackdeploy.tier": "proxy"},
        )

    # =========================================================================
    # Tiers
    # =========================================================================

    async def _running_with_image(self, name: str, image: str) -> Optional[Dict]:
        info = await self.docker.inspect(name)
        if info and info.get("State", {}).get("Running") and info.get("Config", {}).get("Image") == image:
            return info
        return None

    async def ensure_database(self, started: List[str]) -> StackState:
        """Reuse or start the database container and wait for its gate."""
        s = self.settings
        await self.docker.ensure_network(s.network_name)
        await self.docker.ensure_volume(s.db_volume_name)

        name = s.db_container_name
        info = await self._running_with_image(name, s.DB_IMAGE)
        if info:
            logger.info(f"♻️ Reusing running database container {name}")
            container_id = info["Id"]
        else:
            if await self.docker.inspect(name):
                # Container only; the data volume is never removed.
                await self.docker.remove(name)
            container_id = await self.docker.run(self.database_spec())
            started.append(container_id)

        state = StackState(tier=Tier.DATABASE, container_id=container_id, container_name=name, image=s.DB_IMAGE)
        return await self.gate.wait(state, self.database_probe)

    async def ensure_app(
        self,
        artifact: BuildArtifact,
        slot: Slot,
        started: List[str],
        reuse_running: bool = False,
    ) -> StackState:
        name = self.settings.app_container_name(slot.value)
        info = await self._running_with_image(name, artifact.image_tag) if reuse_running else None
        if info:
            logger.info(f"♻️ Reusing running app container {name}")
            container_id = info["Id"]
        else:
            if await self.docker.inspect(name):
                await self.docker.remove(name)
            container_id = await self.docker.run(self.app_spec(artifact, slot))
            started.append(container_id)

        state = StackState(tier=Tier.APP, container_id=container_id, container_name=name, image=artifact.image_tag)
        return await self.gate.wait(state, self.app_probe_factory(self.app_port_for(slot)))

    async def abort(self, started: List[str]) -> None:
        for container_id in reversed(started):
            try:
                await self.docker.remove(container_id)
            except DockerCommandError as e:
                logger.warning(f"⚠️ Could not remove {container_id[:12]} during abort: {e.message}")

    # =========================================================================
    # Rollout
    # =========================================================================

    async def start_candidate(self, artifact: BuildArtifact, previous: Optional[StackSet]) -> StackSet:
        """Bring up a healthy candidate stack or raise DeployError with nothing left behind."""
        slot = self.next_slot(previous)
        started: List[str] = []
        logger.info(f"🚦 Starting candidate {artifact.image_tag} in slot {slot.value} ({self.strategy})")
        try:
            database = await self.ensure_database(started)
            if not self.overlaps and previous:
                logger.warning(f"⏹️ Stopping previous app before start ({RECREATE} strategy)")
                await self.stop_app(previous)
            app = await self.ensure_app(artifact, slot, started)
        except DeployError as e:
            if isinstance(e, HealthCheckTimeout) and e.state is not None:
                logger.error(f"🩺 {e.state.container_name} is {e.state.status.value}")
            logger.error(f"❌ Candidate {artifact.image_tag} failed: {e.message}")
            await self.abort(started)
            raise

        return StackSet(
            slot=slot,
            artifact=artifact,
            tiers={Tier.APP: app, Tier.DATABASE: database},
            app_port=self.app_port_for(slot),
            public_port=self.settings.APP_HOST_PORT,
        )

    async def stop_app(self, stack: StackSet) -> None:
        app = stack.tiers[Tier.APP]
        try:
            await self.docker.stop(app.container_id)
        except DockerCommandError as e:
            logger.warning(f"⚠️ Could not stop {app.container_name}: {e.message}")
            return
        self._log_stopped(app)

    def _log_stopped(self, state: StackState) -> None:
        stopped = state.transition(TierStatus.STOPPED)
        logger.info(f"⏹️ {stopped.container_name}: {state.status.value} -> {stopped.status.value}")

    # =========================================================================
    # Traffic
    # =========================================================================

    async def _reload_proxy(self, name: str) -> Optional[str]:
        """Validate and reload nginx in ``name``; return the failure output, if any."""
        timeout = self.gate.policy.timeout
        check = await self.docker.exec(name, ["nginx", "-t"], timeout=timeout)
        if not check.ok:
            return check.stderr.strip() or check.stdout.strip()
        reload = await self.docker.exec(name, ["nginx", "-s", "reload"], timeout=timeout)
        if not reload.ok:
            return reload.stderr.strip() or reload.stdout.strip()
        return None

    async def route_traffic(self, stack: StackSet) -> None:
        """Point the public port at ``stack``'s app container.

        Only blue_green has a proxy; under recreate the app itself publishes
        the public port. A rejected config is put back before raising.

        Raises:
            DeployError: the proxy could not be started or reloaded.
        """
        if not self.overlaps:
            return
        s = self.settings
        app = stack.tiers[Tier.APP]
        name = s.proxy_container_name
        previous_conf = read_proxy_conf(s.proxy_conf_dir)
        conf = render_proxy_conf(app.container_name, s.APP_CONTAINER_PORT)
        running = await self.docker.is_running(name)
        if running and conf == previous_conf:
            logger.info(f"🔀 Port {s.APP_HOST_PORT} already routes to {app.container_name}")
            return
        try:
            write_proxy_conf(s.proxy_conf_dir, conf)
        except OSError as e:
            raise DeployError(f"could not write proxy config: {e}")

        if not running:
            if await self.docker.inspect(name):
                await self.docker.remove(name)
            await self.docker.run(self.proxy_spec())
        else:
            failure = await self._reload_proxy(name)
            if failure is not None:
                if previous_conf is not None:
                    write_proxy_conf(s.proxy_conf_dir, previous_conf)
                raise DeployError(f"proxy rejected route to {app.container_name}: {failure}")

        logger.info(f"🔀 Port {s.APP_HOST_PORT} now routes to {app.container_name}")

    # =========================================================================
    # Promotion
    # =========================================================================

    async def promote(self, candidate: StackSet, expected_version: int) -> LiveStackRecord:
        """Switch traffic to ``candidate`` and record it as live.

        Raises:
            StaleStackVersionError: the live record moved since the run started.
            DeployError: traffic could not be switched; the record is untouched.
        """
        current = self.repository.current()
        if current.version != expected_version:
            raise StaleStackVersionError(expected_version, current.version)

        promoted = candidate.model_copy(update={"promoted_at": datetime.now(timezone.utc)})
        await self.route_traffic(promoted)
        try:
            record = await self.repository.compare_and_swap(expected_version, LiveStatus.LIVE, promoted)
        except StaleStackVersionError:
            if current.stack:
                await self._route_back(current.stack)
            raise

        try:
            await self.builder.promote_tag(candidate.artifact)
        except DockerCommandError as e:
            logger.warning(f"⚠️ Could not move latest tag: {e.message}")
        self.write_manifest(promoted)
        logger.info(f"🎉 {candidate.artifact.image_tag} is live on port {promoted.public_port}")
        return record

    async def _route_back(self, stack: StackSet) -> None:
        try:
            await self.route_traffic(stack)
        except DeployError as e:
            logger.error(f"❌ Could not route back to {stack.artifact.image_tag}: {e.message}")

    async def retire(self, stack: StackSet, keep: Optional[StackSet] = None) -> None:
        """Remove ``stack``'s containers except those shared with ``keep``."""
        shared = keep.container_ids if keep else set()
        for state in stack.tiers.values():
            if state.container_id in shared:
                continue
            try:
                await self.docker.remove(state.container_id)
            except DockerCommandError as e:
                logger.warning(f"⚠️ Could not retire {state.container_name}: {e.message}")
                continue
            self._log_stopped(state)

    def manifest_for(self, stack: StackSet) -> Dict:
        return render_compose_manifest(self.settings, stack, self.gate.policy)

    def write_manifest(self, stack: StackSet) -> None:
        """Refresh the compose file; the live record stays authoritative when this fails."""
        if not self.manifest_path:
            return
        try:
            write_manifest(self.manifest_path, self.manifest_for(stack))
        except OSError as e:
            logger.error(f"❌ Could not write {self.manifest_path}: {e}")
