"""Error taxonomy for network-injection provisioning."""
from enum import Enum
from typing import List, Optional, Sequence


class ProvisioningError(Exception):
    """Base class for every error the orchestrator surfaces to callers."""
    kind = "ProvisioningError"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class SettingsError(ProvisioningError):
    """Raised when the settings file is invalid."""
    kind = "SettingsError"


class IdentityNotFound(ProvisioningError):
    """Raised when the acting principal cannot be resolved to exactly one object."""
    kind = "IdentityNotFound"


class BackendError(ProvisioningError):
    """Raised by a backend when a control-plane call fails outright."""
    kind = "BackendError"

    def __init__(self, message: str, code: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message, detail)
        self.code = code


class BaseDeploymentFailed(ProvisioningError):
    """Raised when the base deployment does not succeed."""
    kind = "BaseDeploymentFailed"

    def __init__(self, message: str, error=None):
        detail = f"{error.code}: {error.message}" if error else None
        super().__init__(message, detail)
        self.error = error


class DeploymentIncomplete(ProvisioningError):
    """Raised when a deployment reports success but omits required outputs."""
    kind = "DeploymentIncomplete"

    def __init__(self, missing: Sequence[str], template_ref: str = "base"):
        self.missing = sorted(missing)
        super().__init__(
            f"Deployment '{template_ref}' succeeded without required outputs",
            ", ".join(self.missing),
        )


class DependentFailureKind(str, Enum):
    NAME_COLLISION = "NameCollision"
    BACKEND_ERROR = "BackendError"


class DependentDeploymentFailed(ProvisioningError):
    """Raised when the dependent deployment fails or runs out of name attempts."""
    kind = "DependentDeploymentFailed"

    def __init__(
        self,
        failure_kind: DependentFailureKind,
        error=None,
        attempted_names: Optional[List[str]] = None,
    ):
        self.failure_kind = failure_kind
        self.error = error
        self.attempted_names = list(attempted_names or [])
        if failure_kind == DependentFailureKind.NAME_COLLISION:
            message = f"Every generated name collided after {len(self.attempted_names)} attempts"
        else:
            message = "Dependent deployment failed"
        detail = f"{error.code}: {error.message}" if error else None
        super().__init__(f"[{failure_kind.value}] {message}", detail)


class ProvisioningTimeout(ProvisioningError):
    """Raised when a caller-specified deadline passes before the backend finishes."""
    kind = "ProvisioningTimeout"

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(
            f"{operation} did not finish within {timeout:g}s",
            "resources may still be created; run 'reconcile' before retrying",
        )


class ReversalPartialFailure(ProvisioningError):
    """Raised when one or more dependent resources could not be deleted."""
    kind = "ReversalPartialFailure"

    def __init__(self, failures):
        self.failures = list(failures)
        detail = "; ".join(f"{f.handle.name}: {f.message}" for f in self.failures)
        super().__init__(f"{len(self.failures)} resource(s) could not be deleted", detail)


class InvalidRunState(ProvisioningError):
    """Raised when an operation is called from the wrong point of a run."""
    kind = "InvalidRunState"


class ConfirmationRequired(ProvisioningError):
    """Raised when a destructive operation has neither force nor a confirmation callback."""
    kind = "ConfirmationRequired"


class DeploymentNotFound(ProvisioningError):
    """Raised by reconcile when the backend has no record of the base deployment."""
    kind = "DeploymentNotFound"


class RecordCorrupted(ProvisioningError):
    """Raised when the record file exists but cannot be parsed."""
    kind = "RecordCorrupted"


class StoreLocked(ProvisioningError):
    """Raised when another live process holds the record lock."""
    kind = "StoreLocked"
