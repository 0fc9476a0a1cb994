import asyncio

import pytest

from stackdeploy.domain.entities import TriggerSource
from stackdeploy.domain.errors import PipelineBusyError
from stackdeploy.domain.services import SourceWatcher
from tests.fakes import FakeGit


class RecordingSubmit:
    def __init__(self):
        self.requests = []
        self.busy = False

    def __call__(self, request):
        if self.busy:
            raise PipelineBusyError("queue full")
        self.requests.append(request)


@pytest.fixture
def submit():
    return RecordingSubmit()


@pytest.fixture
def watcher(git, submit):
    return SourceWatcher(git, submit, poll_interval=30, backoff_base=5, backoff_max=40)


def test_duplicate_notifications_produce_one_request(watcher, submit):
    first = watcher.notify("abc123", TriggerSource.PUSH_EVENT)
    second = watcher.notify("abc123", TriggerSource.PUSH_EVENT)

    assert first is not None
    assert second is None
    assert [r.revision_id for r in submit.requests] == ["abc123"]


def test_manual_and_push_for_same_revision_are_distinct(watcher, submit):
    watcher.notify("abc123", TriggerSource.PUSH_EVENT)
    watcher.notify("abc123", TriggerSource.MANUAL)

    assert [r.trigger_source for r in submit.requests] == [TriggerSource.PUSH_EVENT, TriggerSource.MANUAL]


def test_force_bypasses_dedupe(watcher, submit):
    watcher.notify("abc123", TriggerSource.MANUAL)
    again = watcher.notify("abc123", TriggerSource.MANUAL, force=True)

    assert again is not None
    assert len(submit.requests) == 2
    assert submit.requests[0].request_id != submit.requests[1].request_id


def test_dedupe_window_is_bounded(git, submit):
    watcher = SourceWatcher(git, submit, dedupe_window=2)
    for rev in ("aaa111", "bbb222", "ccc333"):
        watcher.notify(rev, TriggerSource.PUSH_EVENT)

    assert watcher.notify("aaa111", TriggerSource.PUSH_EVENT) is not None
    assert watcher.notify("ccc333", TriggerSource.PUSH_EVENT) is None


@pytest.mark.asyncio
async def test_poll_once_only_fires_when_tip_moves(watcher, git, submit):
    assert (await watcher.poll_once()).revision_id == "abc123"
    assert await watcher.poll_once() is None

    git.tip = "def456"
    assert (await watcher.poll_once()).revision_id == "def456"
    assert watcher.last_revision == "def456"
    assert len(submit.requests) == 2


@pytest.mark.asyncio
async def test_busy_pipeline_is_retried_on_next_poll(watcher, submit):
    submit.busy = True
    assert await watcher.poll_once() is None
    assert watcher.last_revision is None

    submit.busy = False
    request = await watcher.poll_once()
    assert request.revision_id == "abc123"


def test_backoff_grows_exponentially_up_to_cap(watcher):
    delays = []
    for failures in range(6):
        watcher.consecutive_failures = failures
        delays.append(watcher.backoff_delay())

    assert delays == [30, 5, 10, 20, 40, 40]


@pytest.mark.asyncio
async def test_run_survives_unreachable_source(submit):
    git = FakeGit()
    git.unreachable = True
    watcher = SourceWatcher(git, submit, poll_interval=0.01, backoff_base=0.01, backoff_max=0.01)
    stop = asyncio.Event()

    task = asyncio.create_task(watcher.run(stop))
    await asyncio.sleep(0.05)
    assert watcher.consecutive_failures >= 1
    assert not task.done()

    git.unreachable = False
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1)

    assert watcher.consecutive_failures == 0
    assert [r.revision_id for r in submit.requests] == ["abc123"]
