from fastapi import APIRouter, Depends

from stackdeploy import __version__
from stackdeploy.dependencies import Orchestrator, get_orchestrator

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)):
    record = orchestrator.repository.current()
    return {
        "status": "healthy",
        "service": orchestrator.settings.APP_NAME,
        "version": __version__,
        "pipeline_busy": orchestrator.pipeline.busy,
        "live_stack": record.status.value,
    }
