import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TriggerSource(str, Enum):
    MANUAL = "manual"
    PUSH_EVENT = "push-event"


class DeploymentRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    revision_id: str
    trigger_source: TriggerSource
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dedupe_key(self) -> tuple[str, str]:
        return self.revision_id, self.trigger_source.value
