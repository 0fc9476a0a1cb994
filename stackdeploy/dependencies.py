from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from stackdeploy.config import Settings, settings as default_settings
from stackdeploy.domain.errors import UnknownJobError
from stackdeploy.domain.services import (
    DeploymentPipeline,
    HealthGate,
    HealthGatedDeployer,
    HealthPolicy,
    ImageBuilder,
    RollbackController,
    SourceWatcher,
)
from stackdeploy.infrastructure.docker.docker_client import DockerClient
from stackdeploy.infrastructure.docker.dockerfile import BuildSpec
from stackdeploy.infrastructure.git.git_client import GitClient
from stackdeploy.infrastructure.health.probes import HttpHealthProbe, MySQLPingProbe
from stackdeploy.infrastructure.state.host_lock import HostLock
from stackdeploy.infrastructure.state.outcome_store import OutcomeStore
from stackdeploy.infrastructure.state.stack_repository import StackRepository

logger = logging.getLogger(__name__)


@dataclass
class Orchestrator:
    """Everything one orchestrator process shares between the API, the worker and the watcher."""

    settings: Settings
    repository: StackRepository
    outcomes: OutcomeStore
    builder: ImageBuilder
    deployer: HealthGatedDeployer
    rollback_controller: RollbackController
    pipeline: DeploymentPipeline
    watcher: SourceWatcher


def build_orchestrator(settings: Settings = default_settings) -> Orchestrator:
    state_dir = settings.STATE_DIR
    docker = DockerClient()
    git = GitClient(settings.REPO_URL, settings.REPO_BRANCH, timeout=settings.GIT_TIMEOUT_SECONDS)
    policy = HealthPolicy.from_settings(settings)

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
        HealthGate(policy),
        database_probe=MySQLPingProbe(docker, settings.DB_ROOT_PASSWORD, timeout=policy.timeout),
        app_probe_factory=lambda port: HttpHealthProbe(
            docker, f"http://{settings.APP_PROBE_HOST}:{port}{settings.APP_HEALTH_PATH}", timeout=policy.timeout
        ),
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
    live = repository.current().stack
    watcher = SourceWatcher(
        git,
        pipeline.submit,
        poll_interval=settings.POLL_INTERVAL_SECONDS,
        backoff_base=settings.BACKOFF_BASE_SECONDS,
        backoff_max=settings.BACKOFF_MAX_SECONDS,
        last_revision=live.revision_id if live else None,
    )
    logger.info(f"🔧 Orchestrator ready for job {settings.JOB_NAME} ({settings.DEPLOY_STRATEGY})")
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


# FastAPI dependencies
def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_pipeline(request: Request) -> DeploymentPipeline:
    return get_orchestrator(request).pipeline


def get_watcher(request: Request) -> SourceWatcher:
    return get_orchestrator(request).watcher


def get_repository(request: Request) -> StackRepository:
    return get_orchestrator(request).repository


def get_outcomes(request: Request) -> OutcomeStore:
    return get_orchestrator(request).outcomes


def require_job(job: str, request: Request) -> str:
    expected = get_orchestrator(request).settings.JOB_NAME
    if job != expected:
        raise UnknownJobError(f"job {job!r} does not exist")
    return job
