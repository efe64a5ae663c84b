"""Shared fixtures: an in-memory provisioning backend and base outputs."""
from typing import Dict, List, Optional

import pytest

from netinjection.backend.base import ProvisioningBackend
from netinjection.deploy.errors import BackendError
from netinjection.deploy.models import (
    ENTERPRISE_POLICY_TYPE,
    DeletionHandle,
    DeploymentError,
    DeploymentResult,
    DeploymentStatus,
    ResourceHandle,
    Scope,
)
from netinjection.deploy.orchestrator import DeploymentOrchestrator
from netinjection.deploy.parameters import BaseParameters
from netinjection.settings.schema import ProvisionSettings
from netinjection.state.store import ResultStore

SUBSCRIPTION = "sub-1"
RESOURCE_GROUP = "rg-pp-vnet"


def network_id(name: str) -> str:
    return f"/subscriptions/{SUBSCRIPTION}/resourceGroups/{RESOURCE_GROUP}/providers/Microsoft.Network/virtualNetworks/{name}"


def make_base_outputs(resource_group: str = RESOURCE_GROUP) -> Dict[str, str]:
    return {
        "resourceGroupName": resource_group,
        "primaryNetworkId": network_id("vnet-pp-westeurope"),
        "secondaryNetworkId": network_id("vnet-pp-northeurope"),
        "primarySubnetId": network_id("vnet-pp-westeurope") + "/subnets/snet-pp-injection",
        "secondarySubnetId": network_id("vnet-pp-northeurope") + "/subnets/snet-pp-injection",
    }


class FakeBackend(ProvisioningBackend):
    """Scripted, in-memory ProvisioningBackend.

    `results[template_ref]` is a list of results returned in order; the last
    one repeats. `collisions` is how many dependent deployments fail with a
    name collision before one succeeds. `exists_error`, when set, is raised
    by `resource_exists`.
    """

    def __init__(self):
        self.results: Dict[str, List[DeploymentResult]] = {
            "base": [DeploymentResult(status=DeploymentStatus.SUCCEEDED, outputs=make_base_outputs())],
            "policy": [DeploymentResult(status=DeploymentStatus.SUCCEEDED, outputs={"policyId": "pid"})],
        }
        self.collisions = 0
        self.requests = []
        self.deployments: Dict[str, DeploymentResult] = {}
        self.existing_names = set()
        self.resources: List[ResourceHandle] = []
        self.fail_deletes = set()
        self.deleted: List[ResourceHandle] = []
        self.deleted_scopes: List[Scope] = []
        self.scope_present = True
        self.exists_error: Optional[BackendError] = None

    def deploy(self, request):
        self.requests.append(request)
        if request.template_ref == "policy" and self.collisions > 0:
            self.collisions -= 1
            return DeploymentResult(
                status=DeploymentStatus.FAILED,
                error=DeploymentError(
                    code="DeploymentFailed",
                    details=(DeploymentError(code="EnterprisePolicyUpdateNotAllowed", message="name taken"),),
                ),
                deployment_name=request.deployment_name,
            )
        scripted = self.results[request.template_ref]
        result = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        self.deployments[request.deployment_name] = result
        return result

    def get_deployment(self, scope, deployment_name) -> Optional[DeploymentResult]:
        return self.deployments.get(deployment_name)

    def list_resources(self, scope, resource_type):
        return [r for r in self.resources if r.resource_type == resource_type]

    def delete_resource(self, handle):
        if handle.name in self.fail_deletes:
            raise BackendError(f"Could not delete {handle.name}", "Conflict", "policy is linked to an environment")
        self.deleted.append(handle)

    def delete_scope(self, scope):
        self.deleted_scopes.append(scope)
        return DeletionHandle(scope)

    def resource_exists(self, scope, resource_type, name):
        if self.exists_error is not None:
            raise self.exists_error
        return name in self.existing_names

    def scope_exists(self, scope):
        return self.scope_present


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def base_outputs():
    return make_base_outputs()


@pytest.fixture
def scope():
    return Scope(SUBSCRIPTION, RESOURCE_GROUP, "westeurope")


@pytest.fixture
def store(tmp_path):
    return ResultStore(tmp_path / "provisioning-record.json")


@pytest.fixture
def policy_handles():
    return [
        ResourceHandle(
            resource_type=ENTERPRISE_POLICY_TYPE,
            name=f"ep-pp-vnet-{n}",
            id=f"/subscriptions/{SUBSCRIPTION}/resourceGroups/{RESOURCE_GROUP}/providers/{ENTERPRISE_POLICY_TYPE}/ep-pp-vnet-{n}",
            region="europe",
        )
        for n in (1111, 2222, 3333)
    ]


@pytest.fixture
def base_parameters():
    return BaseParameters(
        primary_region="westeurope",
        secondary_region="northeurope",
        primary_network_name="vnet-pp-westeurope",
        secondary_network_name="vnet-pp-northeurope",
        principal_id="00000000-0000-0000-0000-0000000000aa",
        principal_identifier="alice@example.com",
    )


@pytest.fixture
def orchestrator(fake_backend, store, scope):
    return DeploymentOrchestrator(
        fake_backend, store, scope, template_context=ProvisionSettings().template_context()
    )
