import asyncio
import contextlib

import pytest
from httpx import ASGITransport, AsyncClient

from stackdeploy.config import Settings
from stackdeploy.main import create_app
from tests.fakes import FakeDocker, FakeGit, ScriptedProbe, make_orchestrator


@pytest.fixture
def settings(tmp_path):
    return Settings(
        STATE_DIR=tmp_path / "state",
        WORK_DIR=tmp_path / "work",
        REPO_URL="https://git.example.com/team/webapp.git",
        HEALTH_INTERVAL_SECONDS=0,
        HEALTH_TIMEOUT_SECONDS=1,
        HEALTH_RETRIES=3,
        HEALTH_START_PERIOD_SECONDS=0,
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def git():
    return FakeGit()


@pytest.fixture
def docker(events):
    return FakeDocker(events)


@pytest.fixture
def db_probe():
    return ScriptedProbe()


@pytest.fixture
def app_probe(events):
    return ScriptedProbe(events=events)


@pytest.fixture
def orchestrator(settings, git, docker, db_probe, app_probe):
    return make_orchestrator(settings, git, docker, db_probe, app_probe)


@pytest.fixture
async def worker(orchestrator):
    """Pipeline worker running for the duration of a test."""
    task = asyncio.create_task(orchestrator.pipeline.run_worker())
    yield orchestrator.pipeline
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@pytest.fixture
async def client(orchestrator):
    app = create_app(orchestrator, run_background=False)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
