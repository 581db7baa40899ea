"""
Error taxonomy for the release engine.

Services raise these; the API layer turns them into HTTP responses using
the status code carried by each class. None of them are retried internally.
"""
from typing import Any, Dict, List, Optional


class FlowOpsError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_detail(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(FlowOpsError):
    """Malformed snapshot or input. Surfaced to the caller verbatim."""

    status_code = 422
    code = "validation_error"


class NoActiveDeploymentError(ValidationError):
    """The source environment has nothing live to promote."""

    code = "no_active_deployment"


class NotFoundError(FlowOpsError):
    status_code = 404
    code = "not_found"


class IncompatibleVersionsError(FlowOpsError):
    """Two versions from different workflows cannot be compared."""

    status_code = 400
    code = "incompatible_versions"


class TerminalEnvironmentError(FlowOpsError):
    """Promotion requested out of the last environment in the pipeline."""

    status_code = 409
    code = "terminal_environment"


class DeploymentInProgressError(FlowOpsError):
    """A non-terminal deployment already holds the environment slot."""

    status_code = 409
    code = "deployment_in_progress"

    def __init__(self, message: str, deployment_id: Optional[str] = None):
        super().__init__(message)
        self.deployment_id = deployment_id

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["deployment_id"] = self.deployment_id
        return detail


class ConcurrentModificationError(FlowOpsError):
    """Workflow head kept moving underneath a commit."""

    status_code = 409
    code = "concurrent_modification"


class LockTimeoutError(FlowOpsError):
    status_code = 503
    code = "lock_timeout"
