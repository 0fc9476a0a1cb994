from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from stackdeploy.domain.entities.build_artifact import BuildArtifact
from stackdeploy.domain.errors import InvalidTransitionError


class Tier(str, Enum):
    APP = "app"
    DATABASE = "database"


class TierStatus(str, Enum):
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STOPPED = "stopped"


class Slot(str, Enum):
    BLUE = "blue"
    GREEN = "green"

    def other(self) -> "Slot":
        return Slot.GREEN if self is Slot.BLUE else Slot.BLUE


_ALLOWED = {
    TierStatus.STARTING: {TierStatus.HEALTHY, TierStatus.UNHEALTHY, TierStatus.STOPPED},
    TierStatus.HEALTHY: {TierStatus.STOPPED},
    TierStatus.UNHEALTHY: {TierStatus.STOPPED},
    TierStatus.STOPPED: set(),
}


class StackState(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: Tier
    container_id: str
    container_name: str
    image: str
    status: TierStatus = TierStatus.STARTING

    def transition(self, status: TierStatus) -> "StackState":
        if status not in _ALLOWED[self.status]:
            raise InvalidTransitionError(
                f"{self.tier.value} tier cannot move from {self.status.value} to {status.value}"
            )
        return self.model_copy(update={"status": status})


class StackSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    slot: Slot
    artifact: BuildArtifact
    tiers: Dict[Tier, StackState]
    app_port: int
    public_port: int
    promoted_at: Optional[datetime] = None

    @property
    def revision_id(self) -> str:
        return self.artifact.revision_id

    @property
    def container_ids(self) -> set[str]:
        return {state.container_id for state in self.tiers.values()}

    def is_healthy(self) -> bool:
        return all(state.status == TierStatus.HEALTHY for state in self.tiers.values())


class LiveStatus(str, Enum):
    EMPTY = "empty"
    LIVE = "live"
    DOWN = "down"


class LiveStackRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int = 0
    status: LiveStatus = LiveStatus.EMPTY
    stack: Optional[StackSet] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
