"""Azure Resource Manager implementation of the provisioning backend."""
import logging
from typing import Dict, List, Optional

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resource.resources.models import Deployment, DeploymentMode, DeploymentProperties

from .base import ProvisioningBackend
from ..deploy.errors import BackendError, ProvisioningTimeout
from ..deploy.models import (
    ENTERPRISE_POLICY_TYPE,
    DeletionHandle,
    DeploymentError,
    DeploymentRequest,
    DeploymentResult,
    DeploymentStatus,
    ResourceHandle,
    Scope,
)

logger = logging.getLogger(__name__)

# API versions for resource types deleted by id; anything else is looked up on the provider
KNOWN_API_VERSIONS = {
    ENTERPRISE_POLICY_TYPE: "2020-10-30-preview",
    "Microsoft.Network/virtualNetworks": "2023-09-01",
}


def error_from_odata(odata) -> DeploymentError:
    """Convert an azure-core ODataV4Format error (and its details) to a DeploymentError."""
    details = tuple(error_from_odata(d) for d in (getattr(odata, "details", None) or []))
    return DeploymentError(
        code=getattr(odata, "code", None) or "Unknown",
        message=getattr(odata, "message", None) or "",
        details=details,
    )


def error_from_exception(e: HttpResponseError) -> DeploymentError:
    if e.error is not None:
        return error_from_odata(e.error)
    return DeploymentError(code=str(e.status_code or "HttpResponseError"), message=e.message or str(e))


def split_resource_type(resource_type: str):
    """Split `Namespace/type[/child]` into (namespace, type path)."""
    namespace, _, type_path = resource_type.partition("/")
    if not type_path:
        raise ValueError(f"Resource type must be 'Namespace/type': {resource_type!r}")
    return namespace, type_path


class AzureResourceBackend(ProvisioningBackend):
    """ProvisioningBackend over `azure-mgmt-resource`."""

    def __init__(self, credential=None):
        """Initialize the backend.

        Args:
            credential: Azure credential; DefaultAzureCredential if omitted.
        """
        self.credential = credential or DefaultAzureCredential()
        self._clients: Dict[str, ResourceManagementClient] = {}

    def _client(self, scope: Scope) -> ResourceManagementClient:
        client = self._clients.get(scope.subscription_id)
        if client is None:
            client = ResourceManagementClient(self.credential, scope.subscription_id)
            self._clients[scope.subscription_id] = client
        return client

    @staticmethod
    def _require_resource_group(scope: Scope) -> str:
        if not scope.resource_group:
            raise ValueError(f"Operation needs a resource group scope, got subscription scope {scope}")
        return scope.resource_group

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        client = self._client(request.scope)
        deployment = Deployment(
            properties=DeploymentProperties(
                template=dict(request.template),
                parameters={name: {"value": value} for name, value in request.parameters.items()},
                mode=DeploymentMode.INCREMENTAL,
            ),
        )

        try:
            if request.scope.resource_group:
                if request.scope.location:
                    client.resource_groups.create_or_update(
                        request.scope.resource_group, {"location": request.scope.location}
                    )
                poller = client.deployments.begin_create_or_update(
                    request.scope.resource_group, request.deployment_name, deployment
                )
            else:
                deployment.location = request.scope.location
                poller = client.deployments.begin_create_or_update_at_subscription_scope(
                    request.deployment_name, deployment
                )

            logger.info("Submitted deployment %s to %s", request.deployment_name, request.scope)
            poller.wait(request.timeout)
            if not poller.done():
                raise ProvisioningTimeout(f"Deployment {request.deployment_name}", request.timeout)
            result = poller.result()
        except HttpResponseError as e:
            error = error_from_exception(e)
            logger.debug("Deployment %s failed: %s %s", request.deployment_name, error.code, error.message)
            return DeploymentResult(
                status=DeploymentStatus.FAILED, error=error, deployment_name=request.deployment_name
            )

        return self._to_result(result, request.deployment_name)

    def get_deployment(self, scope: Scope, deployment_name: str) -> Optional[DeploymentResult]:
        client = self._client(scope)
        try:
            if scope.resource_group:
                result = client.deployments.get(scope.resource_group, deployment_name)
            else:
                result = client.deployments.get_at_subscription_scope(deployment_name)
        except ResourceNotFoundError:
            return None
        except HttpResponseError as e:
            error = error_from_exception(e)
            raise BackendError(f"Could not read deployment {deployment_name}", error.code, error.message)
        return self._to_result(result, deployment_name)

    @staticmethod
    def _to_result(deployment, deployment_name: str) -> DeploymentResult:
        properties = deployment.properties
        status = DeploymentStatus.from_provisioning_state(properties.provisioning_state if properties else None)
        raw_outputs = (properties.outputs if properties else None) or {}
        outputs = {
            name: (value.get("value") if isinstance(value, dict) else value)
            for name, value in raw_outputs.items()
        }
        error = None
        if properties is not None and properties.error is not None:
            error = error_from_odata(properties.error)
        return DeploymentResult(status=status, outputs=outputs, error=error, deployment_name=deployment_name)

    def list_resources(self, scope: Scope, resource_type: str) -> List[ResourceHandle]:
        resource_group = self._require_resource_group(scope)
        try:
            resources = self._client(scope).resources.list_by_resource_group(
                resource_group, filter=f"resourceType eq '{resource_type}'"
            )
            return [
                ResourceHandle(resource_type=r.type, name=r.name, id=r.id, region=r.location)
                for r in resources
            ]
        except HttpResponseError as e:
            error = error_from_exception(e)
            raise BackendError(f"Could not list {resource_type} in {scope}", error.code, error.message)

    def delete_resource(self, handle: ResourceHandle) -> None:
        client = self._client(Scope(self._subscription_of(handle.id)))
        try:
            api_version = self._api_version_for(client, handle.resource_type)
            poller = client.resources.begin_delete_by_id(handle.id, api_version)
            poller.result()
        except ResourceNotFoundError:
            logger.info("%s '%s' already absent", handle.resource_type, handle.name)
        except HttpResponseError as e:
            error = error_from_exception(e)
            raise BackendError(f"Could not delete {handle.name}", error.code, error.message)
        else:
            logger.info("Deleted %s '%s'", handle.resource_type, handle.name)

    @staticmethod
    def _subscription_of(resource_id: str) -> str:
        parts = resource_id.strip("/").split("/")
        if len(parts) < 2 or parts[0].lower() != "subscriptions":
            raise ValueError(f"Not an ARM resource id: {resource_id!r}")
        return parts[1]

    @staticmethod
    def _api_version_for(client: ResourceManagementClient, resource_type: str) -> str:
        if resource_type in KNOWN_API_VERSIONS:
            return KNOWN_API_VERSIONS[resource_type]

        namespace, type_path = split_resource_type(resource_type)
        provider = client.providers.get(namespace)
        for provider_type in provider.resource_types or []:
            if provider_type.resource_type.lower() == type_path.lower():
                versions = provider_type.api_versions or []
                stable = [v for v in versions if "preview" not in v.lower()]
                # ARM lists api versions newest first
                if stable or versions:
                    return (stable or versions)[0]
        raise BackendError(f"No API version known for {resource_type}")

    def delete_scope(self, scope: Scope) -> DeletionHandle:
        resource_group = self._require_resource_group(scope)
        try:
            poller = self._client(scope).resource_groups.begin_delete(resource_group)
        except ResourceNotFoundError:
            logger.info("Resource group %s already absent", resource_group)
            return DeletionHandle(scope)
        except HttpResponseError as e:
            error = error_from_exception(e)
            raise BackendError(f"Could not delete resource group {resource_group}", error.code, error.message)
        logger.info("Submitted deletion of resource group %s", resource_group)
        return DeletionHandle(scope, poller)

    def resource_exists(self, scope: Scope, resource_type: str, name: str) -> bool:
        resource_group = self._require_resource_group(scope)
        client = self._client(scope)
        namespace, type_path = split_resource_type(resource_type)
        try:
            return client.resources.check_existence(
                resource_group,
                namespace,
                "",
                type_path,
                name,
                self._api_version_for(client, resource_type),
            )
        except HttpResponseError as e:
            error = error_from_exception(e)
            raise BackendError(f"Could not check {resource_type} '{name}'", error.code, error.message)

    def scope_exists(self, scope: Scope) -> bool:
        resource_group = self._require_resource_group(scope)
        try:
            return self._client(scope).resource_groups.check_existence(resource_group)
        except HttpResponseError as e:
            error = error_from_exception(e)
            raise BackendError(f"Could not check resource group {resource_group}", error.code, error.message)
