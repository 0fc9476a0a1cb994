from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from stackdeploy.domain.entities.deployment_outcome import DeploymentOutcome
from stackdeploy.domain.entities.deployment_request import DeploymentRequest

STAGES = ("clone", "build", "deploy")


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageRecord(BaseModel):
    name: str
    status: StageStatus = StageStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    detail: Optional[str] = None


class PipelineRun(BaseModel):
    number: int
    request: DeploymentRequest
    stages: List[StageRecord] = Field(default_factory=lambda: [StageRecord(name=name) for name in STAGES])
    outcome: Optional[DeploymentOutcome] = None
    console: List[str] = Field(default_factory=list)

    def stage(self, name: str) -> StageRecord:
        for record in self.stages:
            if record.name == name:
                return record
        raise KeyError(name)

    def start_stage(self, name: str) -> None:
        record = self.stage(name)
        record.status = StageStatus.RUNNING
        record.started_at = datetime.now(timezone.utc)

    def finish_stage(self, name: str, status: StageStatus, detail: Optional[str] = None) -> None:
        record = self.stage(name)
        record.status = status
        record.finished_at = datetime.now(timezone.utc)
        record.detail = detail

    def skip_remaining(self) -> None:
        for record in self.stages:
            if record.status == StageStatus.PENDING:
                record.status = StageStatus.SKIPPED
