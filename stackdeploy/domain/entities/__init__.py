from .build_artifact import BuildArtifact, image_tag_for
from .deployment_outcome import DeploymentOutcome, OutcomeResult
from .deployment_request import DeploymentRequest, TriggerSource
from .pipeline_run import PipelineRun, StageRecord, StageStatus
from .stack_state import LiveStackRecord, LiveStatus, Slot, StackSet, StackState, Tier, TierStatus

__all__ = [
    "BuildArtifact",
    "image_tag_for",
    "DeploymentOutcome",
    "OutcomeResult",
    "DeploymentRequest",
    "TriggerSource",
    "PipelineRun",
    "StageRecord",
    "StageStatus",
    "LiveStackRecord",
    "LiveStatus",
    "Slot",
    "StackSet",
    "StackState",
    "Tier",
    "TierStatus",
]
