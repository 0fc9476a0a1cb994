from fastapi import APIRouter, Depends, HTTPException, Query, status

from stackdeploy.dependencies import Orchestrator, get_orchestrator, get_outcomes, get_pipeline
from stackdeploy.domain.entities import DeploymentOutcome, LiveStackRecord
from stackdeploy.domain.services import DeploymentPipeline
from stackdeploy.infrastructure.state.outcome_store import OutcomeStore
from stackdeploy.schemas import OutcomeList, RollbackRequest

router = APIRouter(tags=["stack"])


@router.get("/stack", response_model=LiveStackRecord)
async def get_live_stack(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.repository.current()


@router.get("/stack/manifest")
async def get_manifest(orchestrator: Orchestrator = Depends(get_orchestrator)):
    stack = orchestrator.repository.current().stack
    if stack is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No live stack")
    return orchestrator.deployer.manifest_for(stack)


@router.post("/stack/rollback", response_model=DeploymentOutcome)
async def rollback_stack(request: RollbackRequest, pipeline: DeploymentPipeline = Depends(get_pipeline)):
    """Restore the last known-good stack."""
    return await pipeline.rollback(request.reason)


@router.get("/outcomes", response_model=OutcomeList)
async def list_outcomes(limit: int = Query(20, ge=1, le=500), outcomes: OutcomeStore = Depends(get_outcomes)):
    recent = outcomes.recent(limit)
    return OutcomeList(count=len(recent), outcomes=recent)
