from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from stackdeploy.domain.entities.deployment_request import TriggerSource


class OutcomeResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class DeploymentOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    revision_id: str
    result: OutcomeResult
    reason: Optional[str] = None
    image_tag: Optional[str] = None
    restored_revision_id: Optional[str] = None
    trigger_source: Optional[TriggerSource] = None
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
