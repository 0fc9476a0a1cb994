import logging
from datetime import datetime, timezone
from typing import List, Optional

from stackdeploy.domain.entities import BuildArtifact, DeploymentOutcome, LiveStatus, Slot, StackSet, Tier
from stackdeploy.domain.errors import DeployError, RollbackNoPriorStateError

logger = logging.getLogger(__name__)


class RollbackController:
    """Restores a known-good stack, either after a failed rollout or on request."""

    def __init__(self, deployer, repository, outcomes):
        self.deployer = deployer
        self.repository = repository
        self.outcomes = outcomes

    async def _mark_down(self) -> None:
        record = self.repository.current()
        if record.status != LiveStatus.DOWN:
            await self.repository.compare_and_swap(record.version, LiveStatus.DOWN, None)

    @staticmethod
    def _artifact_of(outcome: DeploymentOutcome) -> BuildArtifact:
        return BuildArtifact(image_tag=outcome.image_tag, revision_id=outcome.revision_id, built_at=outcome.finished_at)

    async def _bring_up(self, artifact: BuildArtifact, slot: Slot, started: List[str]) -> StackSet:
        database = await self.deployer.ensure_database(started)
        app = await self.deployer.ensure_app(artifact, slot, started, reuse_running=True)
        restored = StackSet(
            slot=slot,
            artifact=artifact,
            tiers={Tier.APP: app, Tier.DATABASE: database},
            app_port=self.deployer.app_port_for(slot),
            public_port=self.deployer.settings.APP_HOST_PORT,
            promoted_at=datetime.now(timezone.utc),
        )
        await self.deployer.route_traffic(restored)
        record = self.repository.current()
        await self.repository.compare_and_swap(record.version, LiveStatus.LIVE, restored)
        self.deployer.write_manifest(restored)
        return restored

    async def restore(self, reason: str) -> StackSet:
        """Bring back the known-good stack after a failed rollout.

        That is the live stack when there is one, otherwise the stack of the
        last successful deployment. Containers still running are kept;
        anything missing is re-created from the recorded artifact tag.

        Raises:
            RollbackNoPriorStateError: nothing has ever deployed successfully.
            DeployError: the restored stack failed its health gate.
        """
        logger.warning(f"⏪ Rollback requested: {reason}")
        live = self.repository.current().stack
        if live:
            artifact, slot = live.artifact, live.slot
        else:
            last = self.outcomes.last_success()
            if last is None:
                await self._mark_down()
                logger.error("🛑 No prior successful deployment; stack is down")
                raise RollbackNoPriorStateError("no successful deployment to restore; stack is down")
            artifact, slot = self._artifact_of(last), Slot.BLUE

        started: List[str] = []
        try:
            restored = await self._bring_up(artifact, slot, started)
        except DeployError as e:
            await self.deployer.abort(started)
            await self._mark_down()
            logger.error(f"🛑 Rollback to {artifact.image_tag} failed: {e.message}")
            raise
        logger.info(f"✅ Restored {artifact.image_tag}")
        return restored

    async def restore_previous(self, reason: str) -> StackSet:
        """Replace the live stack with the last successful release before it.

        The release is the most recent success whose image differs from the
        live one. Under blue_green it starts in the other slot and the live
        stack keeps serving until traffic is switched.

        Raises:
            RollbackNoPriorStateError: there is no earlier release to go back to.
            DeployError: the earlier release failed its health gate.
        """
        logger.warning(f"⏪ Manual rollback requested: {reason}")
        live: Optional[StackSet] = self.repository.current().stack
        target = self.outcomes.last_success(exclude_tag=live.artifact.image_tag if live else None)
        if target is None:
            if live is None:
                await self._mark_down()
            logger.error("🛑 No earlier successful deployment to roll back to")
            raise RollbackNoPriorStateError("no earlier successful deployment to roll back to")

        artifact = self._artifact_of(target)
        slot = live.slot.other() if live else Slot.BLUE
        if live and not self.deployer.overlaps:
            await self.deployer.stop_app(live)

        started: List[str] = []
        try:
            restored = await self._bring_up(artifact, slot, started)
        except DeployError as e:
            await self.deployer.abort(started)
            if live is None or not self.deployer.overlaps:
                await self._mark_down()
            logger.error(f"🛑 Rollback to {artifact.image_tag} failed: {e.message}")
            raise

        if live:
            await self.deployer.retire(live, keep=restored)
        logger.info(f"✅ Rolled back from {live.artifact.image_tag if live else 'nothing'} to {artifact.image_tag}")
        return restored
