import json
import os

import pytest

from stackdeploy.domain.entities import (
    BuildArtifact,
    DeploymentOutcome,
    LiveStatus,
    OutcomeResult,
    Slot,
    StackSet,
    StackState,
    Tier,
    TierStatus,
)
from stackdeploy.domain.errors import PipelineBusyError, StaleStackVersionError
from stackdeploy.infrastructure.state.host_lock import HostLock
from stackdeploy.infrastructure.state.outcome_store import OutcomeStore
from stackdeploy.infrastructure.state.stack_repository import StackRepository


def _stack(revision="abc123"):
    artifact = BuildArtifact(image_tag=f"webapp:{revision}", revision_id=revision)
    return StackSet(
        slot=Slot.BLUE,
        artifact=artifact,
        tiers={
            Tier.APP: StackState(
                tier=Tier.APP,
                container_id="app1",
                container_name="webapp-app-blue",
                image=artifact.image_tag,
                status=TierStatus.HEALTHY,
            ),
            Tier.DATABASE: StackState(
                tier=Tier.DATABASE,
                container_id="db1",
                container_name="webapp-db",
                image="mysql:8.0",
                status=TierStatus.HEALTHY,
            ),
        },
        app_port=5001,
        public_port=5000,
    )


class TestStackRepository:
    @pytest.mark.asyncio
    async def test_compare_and_swap_bumps_version(self, tmp_path):
        repo = StackRepository(tmp_path / "live_stack.json")
        assert repo.current().status == LiveStatus.EMPTY

        record = await repo.compare_and_swap(0, LiveStatus.LIVE, _stack())

        assert record.version == 1
        assert repo.current().stack.revision_id == "abc123"

    @pytest.mark.asyncio
    async def test_stale_version_is_rejected(self, tmp_path):
        repo = StackRepository(tmp_path / "live_stack.json")
        await repo.compare_and_swap(0, LiveStatus.LIVE, _stack())

        with pytest.raises(StaleStackVersionError) as exc:
            await repo.compare_and_swap(0, LiveStatus.DOWN, None)

        assert exc.value.actual == 1
        assert repo.current().status == LiveStatus.LIVE

    @pytest.mark.asyncio
    async def test_record_survives_restart(self, tmp_path):
        path = tmp_path / "live_stack.json"
        await StackRepository(path).compare_and_swap(0, LiveStatus.LIVE, _stack("def456"))

        reloaded = StackRepository(path).current()

        assert reloaded.version == 1
        assert reloaded.stack.artifact.image_tag == "webapp:def456"
        assert reloaded.stack.tiers[Tier.DATABASE].container_name == "webapp-db"


class TestOutcomeStore:
    def _outcome(self, request_id, result, revision="abc123", image_tag="webapp:abc123"):
        return DeploymentOutcome(request_id=request_id, revision_id=revision, result=result, image_tag=image_tag)

    def test_last_success_skips_failures_and_rollbacks(self, tmp_path):
        store = OutcomeStore(tmp_path / "outcomes.jsonl")
        store.append(self._outcome("r1", OutcomeResult.SUCCESS))
        store.append(self._outcome("r2", OutcomeResult.FAILED, "def456", "webapp:def456"))
        store.append(self._outcome("r3", OutcomeResult.ROLLED_BACK))

        assert store.last_success().request_id == "r1"
        assert [o.request_id for o in store.recent(2)] == ["r3", "r2"]

    def test_last_success_can_skip_the_live_tag(self, tmp_path):
        store = OutcomeStore(tmp_path / "outcomes.jsonl")
        store.append(self._outcome("r1", OutcomeResult.SUCCESS))
        store.append(self._outcome("r2", OutcomeResult.SUCCESS, "def456", "webapp:def456"))
        store.append(self._outcome("r3", OutcomeResult.SUCCESS, "def456", "webapp:def456"))

        assert store.last_success(exclude_tag="webapp:def456").request_id == "r1"
        assert store.last_success(exclude_tag="webapp:abc123").request_id == "r3"

    def test_last_success_with_only_the_live_tag(self, tmp_path):
        store = OutcomeStore(tmp_path / "outcomes.jsonl")
        store.append(self._outcome("r1", OutcomeResult.SUCCESS))

        assert store.last_success(exclude_tag="webapp:abc123") is None

    def test_duplicate_request_is_rejected(self, tmp_path):
        store = OutcomeStore(tmp_path / "outcomes.jsonl")
        store.append(self._outcome("r1", OutcomeResult.SUCCESS))

        with pytest.raises(ValueError):
            store.append(self._outcome("r1", OutcomeResult.FAILED))

    def test_outcomes_survive_restart(self, tmp_path):
        path = tmp_path / "outcomes.jsonl"
        OutcomeStore(path).append(self._outcome("r1", OutcomeResult.SUCCESS))

        store = OutcomeStore(path)

        assert store.for_request("r1").image_tag == "webapp:abc123"
        assert len(path.read_text().splitlines()) == 1

    def test_empty_store(self):
        store = OutcomeStore()
        assert store.last_success() is None
        assert store.recent() == []


class TestHostLock:
    def test_acquire_and_release(self, tmp_path):
        lock = HostLock(tmp_path / "pipeline.lock")

        info = lock.acquire("run-1")

        assert info.pid == os.getpid()
        assert lock.holder().run_id == "run-1"
        lock.release()
        assert not lock.path.exists()

    def test_live_holder_blocks_second_acquire(self, tmp_path):
        first = HostLock(tmp_path / "pipeline.lock")
        first.acquire("run-1")

        with pytest.raises(PipelineBusyError):
            HostLock(tmp_path / "pipeline.lock").acquire("run-2")
        first.release()

    def test_stale_lock_is_reclaimed(self, tmp_path):
        path = tmp_path / "pipeline.lock"
        # Above the kernel's pid_max, so no such process can exist.
        path.write_text(json.dumps({"pid": 4194305, "run_id": "dead", "acquired_at": 0}))

        info = HostLock(path).acquire("run-2")

        assert info.run_id == "run-2"

    def test_garbage_lock_is_reclaimed(self, tmp_path):
        path = tmp_path / "pipeline.lock"
        path.write_text("not json")

        assert HostLock(path).acquire("run-3").run_id == "run-3"

    def test_release_leaves_foreign_lock_alone(self, tmp_path):
        path = tmp_path / "pipeline.lock"
        lock = HostLock(path)
        lock.acquire("run-1")
        path.write_text(json.dumps({"pid": os.getpid(), "run_id": "someone-else", "acquired_at": 0}))

        lock.release()

        assert path.exists()
