"""Provisioning backend interface."""
from abc import ABC, abstractmethod
from typing import List, Optional

from ..deploy.models import DeletionHandle, DeploymentRequest, DeploymentResult, ResourceHandle, Scope


class ProvisioningBackend(ABC):
    """Control-plane operations the orchestrator depends on.

    Implementations receive the full Scope on every call and keep no
    "current subscription" of their own.
    """

    @abstractmethod
    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        """Run a deployment to completion.

        Args:
            request: Template, scope and parameters to submit.

        Returns:
            DeploymentResult: Final state; backend-reported failures come
                back as a Failed result, not an exception.

        Raises:
            ProvisioningTimeout: If `request.timeout` passes first.
        """
        pass

    @abstractmethod
    def get_deployment(self, scope: Scope, deployment_name: str) -> Optional[DeploymentResult]:
        """Look up a deployment by name; None if the backend has no such deployment."""
        pass

    @abstractmethod
    def list_resources(self, scope: Scope, resource_type: str) -> List[ResourceHandle]:
        """List resources of one type inside a resource group. Order is unspecified."""
        pass

    @abstractmethod
    def delete_resource(self, handle: ResourceHandle) -> None:
        """Delete one resource and wait for it to be gone.

        Raises:
            BackendError: If the backend refuses or fails the deletion.
        """
        pass

    @abstractmethod
    def delete_scope(self, scope: Scope) -> DeletionHandle:
        """Submit deletion of a resource group without waiting for it.

        Raises:
            BackendError: If the deletion cannot be submitted.
        """
        pass

    @abstractmethod
    def resource_exists(self, scope: Scope, resource_type: str, name: str) -> bool:
        pass

    @abstractmethod
    def scope_exists(self, scope: Scope) -> bool:
        pass
