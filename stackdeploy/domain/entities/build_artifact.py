from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def image_tag_for(repository: str, revision_id: str) -> str:
    """Deterministic tag for a revision; ``latest`` is reserved for promoted stacks."""
    return f"{repository}:{revision_id[:12]}"


class BuildArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    image_tag: str
    revision_id: str
    built_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
