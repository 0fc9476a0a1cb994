import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from stackdeploy import __version__
from stackdeploy.api.v1 import health, jobs, stack, webhooks
from stackdeploy.config import settings
from stackdeploy.dependencies import Orchestrator, build_orchestrator
from stackdeploy.middleware import ErrorHandlingMiddleware, LoggingMiddleware

logger = logging.getLogger(__name__)


def create_app(orchestrator: Optional[Orchestrator] = None, run_background: bool = True) -> FastAPI:
    """Build the controller API.

    ``run_background`` starts the pipeline worker and, when a repository is
    configured, the source watcher for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(settings)
        orch: Orchestrator = app.state.orchestrator

        stop_event = asyncio.Event()
        tasks = []
        if run_background:
            tasks.append(asyncio.create_task(orch.pipeline.run_worker(), name="pipeline-worker"))
            if orch.settings.WATCHER_ENABLED and orch.settings.REPO_URL:
                tasks.append(asyncio.create_task(orch.watcher.run(stop_event), name="source-watcher"))
            else:
                logger.info("Source watcher disabled; waiting for webhooks and manual triggers")
        try:
            yield
        finally:
            stop_event.set()
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(
        title="stackdeploy",
        description="Health-gated deployment orchestrator for a two-tier web application",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    # Last added runs first.
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware, enable_error_logging=True)

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(jobs.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")
    app.include_router(stack.router, prefix="/api/v1")

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.LOG_LEVEL)
    print(f"🚀 Starting stackdeploy controller for job {settings.JOB_NAME}")
    print(f"🌐 Server: http://0.0.0.0:{settings.PORT}")
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
