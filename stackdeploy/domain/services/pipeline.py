"""
Deployment pipeline.

Runs are serialized: a bounded queue feeds a single worker, an in-process
lock covers both worker runs and manual rollbacks, and a host lockfile keeps
a second orchestrator process on the same machine out. Every accepted
request ends with exactly one DeploymentOutcome.
"""

import asyncio
import logging
import uuid
from collections import deque
from typing import Deque, List, Optional

from stackdeploy.domain.entities import (
    DeploymentOutcome,
    DeploymentRequest,
    OutcomeResult,
    PipelineRun,
    StageStatus,
    TriggerSource,
)
from stackdeploy.domain.errors import (
    BuildError,
    DeployError,
    PipelineBusyError,
    RollbackNoPriorStateError,
    StaleStackVersionError,
)
from stackdeploy.infrastructure.logs.run_console import current_console, install_console_handler

logger = logging.getLogger(__name__)


class DeploymentPipeline:
    def __init__(
        self,
        builder,
        deployer,
        rollback_controller,
        repository,
        outcomes,
        host_lock=None,
        queue_size: int = 1,
        history_size: int = 50,
    ):
        self.builder = builder
        self.deployer = deployer
        self.rollback_controller = rollback_controller
        self.repository = repository
        self.outcomes = outcomes
        self.host_lock = host_lock
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._lock = asyncio.Lock()
        self._runs: Deque[PipelineRun] = deque(maxlen=history_size)
        self._counter = 0
        install_console_handler()

    # =========================================================================
    # Intake
    # =========================================================================

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def submit(self, request: DeploymentRequest) -> PipelineRun:
        """Queue ``request``; raise PipelineBusyError when the queue is full."""
        run = PipelineRun(number=self._counter + 1, request=request)
        try:
            self._queue.put_nowait(run)
        except asyncio.QueueFull:
            raise PipelineBusyError("a deployment is already queued; try again when it finishes")
        self._counter += 1
        self._runs.append(run)
        logger.info(f"📥 Queued run #{run.number} for {request.revision_id[:12]}")
        return run

    async def run_worker(self) -> None:
        logger.info("🛠️ Pipeline worker started")
        try:
            while True:
                run = await self._queue.get()
                try:
                    await self.execute(run)
                except Exception as e:
                    logger.exception(f"💥 Worker failed on run #{run.number}")
                    self._finish(run, OutcomeResult.FAILED, f"unexpected error: {type(e).__name__}: {e}")
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            self._abandon_pending("orchestrator shutting down")
            raise

    def _abandon_pending(self, reason: str) -> None:
        """Give every run without an outcome a failed one and empty the queue."""
        for run in self._runs:
            if run.outcome is not None:
                continue
            for record in run.stages:
                if record.status == StageStatus.RUNNING:
                    run.finish_stage(record.name, StageStatus.FAILED, reason)
            run.skip_remaining()
            self._finish(run, OutcomeResult.FAILED, reason)
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        logger.warning(f"🛑 Pipeline worker stopped: {reason}")

    async def drain(self) -> None:
        await self._queue.join()

    def runs(self) -> List[PipelineRun]:
        return list(reversed(self._runs))

    def get_run(self, number: int) -> Optional[PipelineRun]:
        for run in self._runs:
            if run.number == number:
                return run
        return None

    def run_for_request(self, request_id: str) -> Optional[PipelineRun]:
        for run in self._runs:
            if run.request.request_id == request_id:
                return run
        return None

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, run: PipelineRun) -> DeploymentOutcome:
        token = current_console.set(run.console)
        try:
            async with self._lock:
                return await self._execute_locked(run)
        finally:
            current_console.reset(token)

    async def _execute_locked(self, run: PipelineRun) -> DeploymentOutcome:
        request = run.request
        logger.info(
            f"▶️ Run #{run.number}: {request.revision_id[:12]} "
            f"({request.trigger_source.value}, request {request.request_id})"
        )
        acquired = False
        try:
            if self.host_lock:
                try:
                    self.host_lock.acquire(request.request_id)
                except PipelineBusyError as e:
                    run.skip_remaining()
                    return self._finish(run, OutcomeResult.FAILED, f"host busy: {e.message}")
                acquired = True
            return await self._run_stages(run)
        except Exception as e:
            logger.exception(f"💥 Run #{run.number} crashed")
            for record in run.stages:
                if record.status == StageStatus.RUNNING:
                    run.finish_stage(record.name, StageStatus.FAILED, str(e))
            run.skip_remaining()
            return self._finish(run, OutcomeResult.FAILED, f"unexpected error: {type(e).__name__}: {e}")
        finally:
            if acquired:
                self.host_lock.release()

    async def _run_stages(self, run: PipelineRun) -> DeploymentOutcome:
        revision_id = run.request.revision_id
        previous = self.repository.current()

        run.start_stage("clone")
        try:
            context_dir = await self.builder.materialize(revision_id)
        except BuildError as e:
            return self._fail_stage(run, "clone", e)
        run.finish_stage("clone", StageStatus.SUCCEEDED, str(context_dir))

        run.start_stage("build")
        try:
            artifact = await self.builder.build(revision_id, context_dir)
        except BuildError as e:
            if e.output:
                logger.error(e.output)
            return self._fail_stage(run, "build", e)
        run.finish_stage("build", StageStatus.SUCCEEDED, artifact.image_tag)

        run.start_stage("deploy")
        try:
            candidate = await self.deployer.start_candidate(artifact, previous.stack)
        except DeployError as e:
            run.finish_stage("deploy", StageStatus.FAILED, e.message)
            return await self._recover(run, artifact.image_tag, e)

        try:
            await self.deployer.promote(candidate, previous.version)
        except StaleStackVersionError as e:
            await self.deployer.retire(candidate, keep=self.repository.current().stack)
            run.finish_stage("deploy", StageStatus.FAILED, e.message)
            return self._finish(run, OutcomeResult.FAILED, e.message, image_tag=artifact.image_tag)
        except DeployError as e:
            await self.deployer.retire(candidate, keep=previous.stack)
            run.finish_stage("deploy", StageStatus.FAILED, e.message)
            return await self._recover(run, artifact.image_tag, e)

        run.finish_stage("deploy", StageStatus.SUCCEEDED, f"live on port {candidate.public_port}")
        outcome = self._finish(run, OutcomeResult.SUCCESS, None, image_tag=artifact.image_tag)
        if previous.stack:
            await self.deployer.retire(previous.stack, keep=candidate)
        return outcome

    def _fail_stage(self, run: PipelineRun, stage: str, error: BuildError) -> DeploymentOutcome:
        logger.error(f"❌ {stage} failed: {error.message}")
        run.finish_stage(stage, StageStatus.FAILED, error.message)
        run.skip_remaining()
        return self._finish(run, OutcomeResult.FAILED, f"{stage} failed: {error.message}")

    async def _recover(self, run: PipelineRun, image_tag: str, error: DeployError) -> DeploymentOutcome:
        reason = f"deploy failed: {error.message}"
        try:
            restored = await self.rollback_controller.restore(reason)
        except RollbackNoPriorStateError:
            return self._finish(
                run, OutcomeResult.FAILED, f"{reason}; no prior successful deployment, stack is down", image_tag=image_tag
            )
        except DeployError as e:
            return self._finish(
                run, OutcomeResult.FAILED, f"{reason}; rollback failed ({e.message}), stack is down", image_tag=image_tag
            )
        return self._finish(
            run,
            OutcomeResult.FAILED,
            f"{reason}; restored {restored.artifact.image_tag}",
            image_tag=image_tag,
            restored_revision_id=restored.revision_id,
        )

    def _finish(
        self,
        run: PipelineRun,
        result: OutcomeResult,
        reason: Optional[str],
        image_tag: Optional[str] = None,
        restored_revision_id: Optional[str] = None,
    ) -> DeploymentOutcome:
        if run.outcome is not None:
            return run.outcome
        request = run.request
        outcome = DeploymentOutcome(
            request_id=request.request_id,
            revision_id=request.revision_id,
            result=result,
            reason=reason,
            image_tag=image_tag,
            restored_revision_id=restored_revision_id,
            trigger_source=request.trigger_source,
        )
        run.outcome = outcome
        try:
            self.outcomes.append(outcome)
        except (OSError, ValueError) as e:
            logger.error(f"❌ Could not record outcome of run #{run.number}: {e}")
        icon = "✅" if result == OutcomeResult.SUCCESS else "❌"
        logger.info(f"{icon} Run #{run.number} finished: {result.value}" + (f" ({reason})" if reason else ""))
        return outcome

    # =========================================================================
    # Manual rollback
    # =========================================================================

    async def rollback(self, reason: str) -> DeploymentOutcome:
        """Restore the last known-good stack outside of a deployment run."""
        if self.busy:
            raise PipelineBusyError("a deployment is running; rollback refused")
        async with self._lock:
            run_id = f"rollback-{uuid.uuid4()}"
            if self.host_lock:
                self.host_lock.acquire(run_id)
            try:
                restored = await self.rollback_controller.restore_previous(reason)
            finally:
                if self.host_lock:
                    self.host_lock.release()

        outcome = DeploymentOutcome(
            request_id=run_id,
            revision_id=restored.revision_id,
            result=OutcomeResult.ROLLED_BACK,
            reason=reason,
            image_tag=restored.artifact.image_tag,
            restored_revision_id=restored.revision_id,
            trigger_source=TriggerSource.MANUAL,
        )
        self.outcomes.append(outcome)
        return outcome
