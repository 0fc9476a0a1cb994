from .errors import ErrorResponse
from .jobs import BuildTriggerRequest, PushEvent, RunList, RunSummary, TriggerResponse
from .stack import OutcomeList, RollbackRequest

__all__ = [
    "ErrorResponse",
    "BuildTriggerRequest",
    "PushEvent",
    "RunList",
    "RunSummary",
    "TriggerResponse",
    "OutcomeList",
    "RollbackRequest",
]
