"""Data models shared by the orchestrator, backends and result store."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

# Logical roles of the base resources kept in a ProvisioningRecord
PRIMARY_NETWORK = "primaryNetwork"
SECONDARY_NETWORK = "secondaryNetwork"
PRIMARY_SUBNET = "primarySubnet"
SECONDARY_SUBNET = "secondarySubnet"

BASE_ROLES = (PRIMARY_NETWORK, SECONDARY_NETWORK, PRIMARY_SUBNET, SECONDARY_SUBNET)

# Base deployment output name -> record role
BASE_OUTPUT_ROLES = {
    "primaryNetworkId": PRIMARY_NETWORK,
    "secondaryNetworkId": SECONDARY_NETWORK,
    "primarySubnetId": PRIMARY_SUBNET,
    "secondarySubnetId": SECONDARY_SUBNET,
}
RESOURCE_GROUP_OUTPUT = "resourceGroupName"
REQUIRED_BASE_OUTPUTS = (RESOURCE_GROUP_OUTPUT,) + tuple(BASE_OUTPUT_ROLES)

ENTERPRISE_POLICY_TYPE = "Microsoft.PowerPlatform/enterprisePolicies"

# Error codes the backend uses to signal that a generated name is taken
NAME_COLLISION_CODES = frozenset({
    "EnterprisePolicyUpdateNotAllowed",
    "ResourceAlreadyExists",
    "NameCollision",
    "NameNotAvailable",
})


class DeploymentStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELED = "Canceled"
    RUNNING = "Running"  # only reported by reconcile

    @classmethod
    def from_provisioning_state(cls, state: Optional[str]) -> "DeploymentStatus":
        """Map an ARM provisioningState onto the statuses the orchestrator knows."""
        normalized = (state or "").lower()
        for status in (cls.SUCCEEDED, cls.FAILED, cls.CANCELED):
            if normalized == status.value.lower():
                return status
        return cls.RUNNING


class RunState(str, Enum):
    IDLE = "Idle"
    BASE_SUBMITTED = "BaseSubmitted"
    BASE_SUCCEEDED = "BaseSucceeded"
    BASE_FAILED = "BaseFailed"
    DEPENDENT_SUBMITTED = "DependentSubmitted"
    COMPLETE = "Complete"
    DEPENDENT_FAILED = "DependentFailed"


@dataclass(frozen=True)
class Scope:
    """Explicit subscription / resource group context for a backend call."""
    subscription_id: str
    resource_group: Optional[str] = None
    location: Optional[str] = None

    @property
    def level(self) -> str:
        return "resourceGroup" if self.resource_group else "subscription"

    def __str__(self) -> str:
        if self.resource_group:
            return f"{self.subscription_id}/{self.resource_group}"
        return self.subscription_id


@dataclass(frozen=True)
class DeploymentRequest:
    """A template submission. Immutable once built."""
    template_ref: str
    scope: Scope
    parameters: Mapping[str, Any] = field(default_factory=dict)
    template: Mapping[str, Any] = field(default_factory=dict)
    timeout: Optional[float] = None
    deployment_name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "template", MappingProxyType(dict(self.template)))
        if not self.deployment_name:
            prefix = self.scope.resource_group or "sub"
            object.__setattr__(self, "deployment_name", f"{prefix}-{self.template_ref}")


@dataclass(frozen=True)
class DeploymentError:
    """Structured error reported by the backend for a deployment."""
    code: str
    message: str = ""
    details: Tuple["DeploymentError", ...] = ()

    def codes(self) -> Iterator[str]:
        """Yield this error's code and every nested detail code."""
        yield self.code
        for detail in self.details:
            yield from detail.codes()

    @property
    def is_name_collision(self) -> bool:
        return any(code in NAME_COLLISION_CODES for code in self.codes())


@dataclass(frozen=True)
class DeploymentResult:
    """Final outcome of one DeploymentRequest."""
    status: DeploymentStatus
    outputs: Mapping[str, Any] = field(default_factory=dict)
    error: Optional[DeploymentError] = None
    deployment_name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))

    @property
    def succeeded(self) -> bool:
        return self.status == DeploymentStatus.SUCCEEDED


@dataclass(frozen=True)
class ResourceHandle:
    """A provisioned entity as reported by the backend."""
    resource_type: str
    name: str
    id: str
    region: Optional[str] = None


@dataclass(frozen=True)
class ProvisioningRecord:
    """Last-known identifiers of what a provisioning run created."""
    resource_group_name: str
    base_resource_ids: Dict[str, str]
    dependent_resource_name: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.dependent_resource_name:
            object.__setattr__(self, "dependent_resource_name", None)

    def with_dependent(self, name: Optional[str]) -> "ProvisioningRecord":
        return replace(self, dependent_resource_name=name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resourceGroupName": self.resource_group_name,
            "baseResourceIds": dict(self.base_resource_ids),
            "dependentResourceName": self.dependent_resource_name,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvisioningRecord":
        """Build a record from its serialised form.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If the timestamp is malformed.
        """
        return cls(
            resource_group_name=data["resourceGroupName"],
            base_resource_ids=dict(data["baseResourceIds"]),
            dependent_resource_name=data.get("dependentResourceName"),
            created_at=datetime.fromisoformat(data["createdAt"]),
        )


@dataclass(frozen=True)
class PrincipalId:
    """Object id of the acting principal and how it was found."""
    object_id: str
    source: str  # "token" or "directory"

    @property
    def needs_settling(self) -> bool:
        return self.source == "directory"


class DeletionHandle:
    """Tracks an asynchronous scope deletion submitted to the backend."""

    def __init__(self, scope: Scope, poller=None):
        self.scope = scope
        self._poller = poller

    def done(self) -> bool:
        return self._poller is None or self._poller.done()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the deletion finishes or the timeout passes; return done()."""
        if self._poller is not None:
            self._poller.wait(timeout)
        return self.done()

    def status(self) -> str:
        if self._poller is None:
            return DeploymentStatus.SUCCEEDED.value
        return self._poller.status()


@dataclass
class ReversalOptions:
    include_dependent: bool = False
    force: bool = False


@dataclass(frozen=True)
class ReversalFailure:
    handle: ResourceHandle
    message: str
    code: Optional[str] = None


@dataclass
class ReversalResult:
    """Report of a teardown."""
    scope: Scope
    scope_existed: bool = True
    deleted: List[ResourceHandle] = field(default_factory=list)
    failures: List[ReversalFailure] = field(default_factory=list)
    scope_deletion: Optional[DeletionHandle] = None
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    def raise_for_failures(self) -> None:
        """Raise ReversalPartialFailure if any dependent resource was left behind."""
        from .errors import ReversalPartialFailure

        if self.failures:
            raise ReversalPartialFailure(self.failures)
