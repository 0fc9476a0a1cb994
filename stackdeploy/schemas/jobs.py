from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from stackdeploy.domain.entities import DeploymentOutcome, DeploymentRequest, StageRecord


class BuildTriggerRequest(BaseModel):
    revision_id: Optional[str] = Field(None, description="Revision to deploy; defaults to the branch tip")
    force: bool = Field(False, description="Deploy even if this revision was already requested manually")


class PushEvent(BaseModel):
    ref: str = Field(..., description="Pushed ref, e.g. refs/heads/main")
    after: str = Field(..., description="Revision id the ref now points to")


class TriggerResponse(BaseModel):
    accepted: bool
    message: str
    run_number: Optional[int] = None
    request: Optional[DeploymentRequest] = None


class RunSummary(BaseModel):
    number: int
    request: DeploymentRequest
    stages: List[StageRecord]
    outcome: Optional[DeploymentOutcome] = None


class RunList(BaseModel):
    job: str
    count: int
    runs: List[RunSummary]
    timestamp: datetime
