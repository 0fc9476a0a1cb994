"""Error taxonomy for the deployment orchestrator."""
from typing import Optional


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestrator."""

    error_code = "ORCHESTRATOR_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SourceFetchError(OrchestratorError):
    """The revision source could not be reached. Retriable."""

    error_code = "SOURCE_FETCH_FAILED"


class BuildError(OrchestratorError):
    """Materializing or building a revision failed. Ends the run, never the watcher."""

    error_code = "BUILD_FAILED"

    def __init__(self, message: str, revision_id: Optional[str] = None, output: str = ""):
        super().__init__(message)
        self.revision_id = revision_id
        self.output = output


class DeployError(OrchestratorError):
    """A candidate stack could not be brought up. Triggers rollback."""

    error_code = "DEPLOY_FAILED"


class HealthCheckTimeout(DeployError):
    error_code = "HEALTH_CHECK_TIMEOUT"

    def __init__(self, tier: str, attempts: int, state=None):
        super().__init__(f"{tier} tier did not become healthy after {attempts} probes")
        self.tier = tier
        self.attempts = attempts
        # The StackState in its terminal unhealthy status, when the gate had one.
        self.state = state


class DockerCommandError(DeployError):
    error_code = "DOCKER_COMMAND_FAILED"

    def __init__(self, command: list[str], returncode: int, stderr: str):
        super().__init__(f"`{' '.join(command[:3])}` exited with {returncode}: {stderr.strip()[-500:]}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class RollbackNoPriorStateError(OrchestratorError):
    """There is no successful deployment to restore. Surfaced, not retried."""

    error_code = "NO_PRIOR_STATE"


class PipelineBusyError(OrchestratorError):
    error_code = "PIPELINE_BUSY"


class StaleStackVersionError(OrchestratorError):
    error_code = "STALE_STACK_VERSION"

    def __init__(self, expected: int, actual: int):
        super().__init__(f"live stack record is at version {actual}, expected {expected}")
        self.expected = expected
        self.actual = actual


class InvalidTransitionError(OrchestratorError):
    error_code = "INVALID_TRANSITION"


class UnknownJobError(OrchestratorError):
    error_code = "UNKNOWN_JOB"
