from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import PlainTextResponse

from stackdeploy.dependencies import get_pipeline, get_watcher, require_job
from stackdeploy.domain.entities import PipelineRun, TriggerSource
from stackdeploy.domain.services import DeploymentPipeline, SourceWatcher
from stackdeploy.schemas import BuildTriggerRequest, RunList, RunSummary, TriggerResponse

router = APIRouter(prefix="/jobs/{job}", tags=["jobs"])


def _summary(run: PipelineRun) -> RunSummary:
    return RunSummary(number=run.number, request=run.request, stages=run.stages, outcome=run.outcome)


def _get_run_or_404(pipeline: DeploymentPipeline, number: int) -> PipelineRun:
    run = pipeline.get_run(number)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Run #{number} not found")
    return run


@router.post("/build", response_model=TriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_build(
    response: Response,
    body: Optional[BuildTriggerRequest] = None,
    job: str = Depends(require_job),
    watcher: SourceWatcher = Depends(get_watcher),
    pipeline: DeploymentPipeline = Depends(get_pipeline),
):
    """Manual "run now" trigger. Deploys the branch tip unless a revision is given."""
    body = body or BuildTriggerRequest()
    revision_id = body.revision_id or await watcher.resolve_tip()

    request = watcher.notify(revision_id, TriggerSource.MANUAL, force=body.force)
    if request is None:
        response.status_code = status.HTTP_200_OK
        return TriggerResponse(
            accepted=False,
            message=f"{revision_id[:12]} was already requested; pass force=true to deploy it again",
        )

    run = pipeline.run_for_request(request.request_id)
    return TriggerResponse(
        accepted=True,
        message=f"Run #{run.number} queued for {revision_id[:12]}",
        run_number=run.number,
        request=request,
    )


@router.get("/runs", response_model=RunList)
async def list_runs(job: str = Depends(require_job), pipeline: DeploymentPipeline = Depends(get_pipeline)):
    runs = [_summary(run) for run in pipeline.runs()]
    return RunList(job=job, count=len(runs), runs=runs, timestamp=datetime.now(timezone.utc))


@router.get("/runs/{number}", response_model=RunSummary)
async def get_run(number: int, job: str = Depends(require_job), pipeline: DeploymentPipeline = Depends(get_pipeline)):
    return _summary(_get_run_or_404(pipeline, number))


@router.get("/runs/{number}/console", response_class=PlainTextResponse)
async def get_console(number: int, job: str = Depends(require_job), pipeline: DeploymentPipeline = Depends(get_pipeline)):
    run = _get_run_or_404(pipeline, number)
    return "\n".join(run.console) + ("\n" if run.console else "")
