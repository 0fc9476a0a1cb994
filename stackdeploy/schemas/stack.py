from typing import List

from pydantic import BaseModel, Field, field_validator

from stackdeploy.domain.entities import DeploymentOutcome


class RollbackRequest(BaseModel):
    reason: str = Field(..., description="Why the last known-good stack is being restored")

    @field_validator("reason")
    @classmethod
    def reason_not_trivial(cls, value: str) -> str:
        if len(value.strip()) < 5:
            raise ValueError("Rollback reason must be at least 5 characters")
        return value.strip()


class OutcomeList(BaseModel):
    count: int
    outcomes: List[DeploymentOutcome]
