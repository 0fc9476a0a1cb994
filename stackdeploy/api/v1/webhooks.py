import logging

from fastapi import APIRouter, Depends, Response, status

from stackdeploy.dependencies import Orchestrator, get_orchestrator
from stackdeploy.domain.entities import TriggerSource
from stackdeploy.schemas import PushEvent, TriggerResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/push", response_model=TriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def push_event(event: PushEvent, response: Response, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Push notification from the VCS host; pushes to other branches are ignored."""
    tracked = f"refs/heads/{orchestrator.settings.REPO_BRANCH}"
    if event.ref != tracked:
        logger.info(f"Ignoring push to {event.ref}")
        response.status_code = status.HTTP_200_OK
        return TriggerResponse(accepted=False, message=f"{event.ref} is not tracked ({tracked})")

    request = orchestrator.watcher.notify(event.after, TriggerSource.PUSH_EVENT)
    if request is None:
        response.status_code = status.HTTP_200_OK
        return TriggerResponse(accepted=False, message=f"duplicate notification for {event.after[:12]}")

    run = orchestrator.pipeline.run_for_request(request.request_id)
    return TriggerResponse(
        accepted=True,
        message=f"Run #{run.number} queued for {event.after[:12]}",
        run_number=run.number,
        request=request,
    )
