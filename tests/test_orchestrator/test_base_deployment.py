"""Tests for the base deployment step."""
import pytest

from netinjection.deploy.errors import BackendError, BaseDeploymentFailed, DeploymentIncomplete
from netinjection.deploy.models import (
    DeploymentError,
    DeploymentResult,
    DeploymentStatus,
    ProvisioningRecord,
    RunState,
)


def test_base_success_persists_record(orchestrator, fake_backend, store, base_parameters, base_outputs):
    result = orchestrator.provision_base(orchestrator.build_base_request(base_parameters))

    assert result.succeeded
    assert orchestrator.state == RunState.BASE_SUCCEEDED

    record = store.load()
    assert record.resource_group_name == "rg-pp-vnet"
    assert record.base_resource_ids == {
        "primaryNetwork": base_outputs["primaryNetworkId"],
        "secondaryNetwork": base_outputs["secondaryNetworkId"],
        "primarySubnet": base_outputs["primarySubnetId"],
        "secondarySubnet": base_outputs["secondarySubnetId"],
    }
    assert record.dependent_resource_name is None
    assert orchestrator.record == record


def test_base_request_carries_parameters_and_template(orchestrator, fake_backend, base_parameters):
    orchestrator.provision_base(orchestrator.build_base_request(base_parameters))

    request = fake_backend.requests[0]
    assert request.template_ref == "base"
    assert request.deployment_name == "rg-pp-vnet-base"
    assert request.parameters["principalId"] == "00000000-0000-0000-0000-0000000000aa"
    assert request.parameters["primaryRegion"] == "westeurope"
    types = [r["type"] for r in request.template["resources"]]
    assert types.count("Microsoft.Network/virtualNetworks") == 2
    assert "Microsoft.Authorization/roleAssignments" in types


def test_base_failure_writes_nothing(orchestrator, fake_backend, store, base_parameters):
    fake_backend.results["base"] = [
        DeploymentResult(
            status=DeploymentStatus.FAILED,
            error=DeploymentError(code="InvalidTemplate", message="bad address space"),
        )
    ]

    with pytest.raises(BaseDeploymentFailed) as exc_info:
        orchestrator.provision_base(orchestrator.build_base_request(base_parameters))

    assert exc_info.value.error.code == "InvalidTemplate"
    assert orchestrator.state == RunState.BASE_FAILED
    assert store.load() is None


def test_canceled_base_is_a_failure(orchestrator, fake_backend, base_parameters):
    fake_backend.results["base"] = [DeploymentResult(status=DeploymentStatus.CANCELED)]

    with pytest.raises(BaseDeploymentFailed):
        orchestrator.provision_base(orchestrator.build_base_request(base_parameters))


def test_missing_output_is_incomplete(orchestrator, fake_backend, store, base_parameters, base_outputs):
    del base_outputs["secondarySubnetId"]
    fake_backend.results["base"] = [DeploymentResult(status=DeploymentStatus.SUCCEEDED, outputs=base_outputs)]

    with pytest.raises(DeploymentIncomplete) as exc_info:
        orchestrator.provision_base(orchestrator.build_base_request(base_parameters))

    assert exc_info.value.missing == ["secondarySubnetId"]
    assert orchestrator.state == RunState.BASE_FAILED
    assert store.load() is None


def test_rerun_keeps_existing_dependent(orchestrator, fake_backend, store, base_parameters, base_outputs):
    """A repeated base deployment keeps the recorded policy if it still exists."""
    store.save(ProvisioningRecord("rg-pp-vnet", {"primaryNetwork": "old"}, "ep-pp-vnet-4242"))
    fake_backend.existing_names.add("ep-pp-vnet-4242")

    orchestrator.provision_base(orchestrator.build_base_request(base_parameters))

    record = store.load()
    assert record.dependent_resource_name == "ep-pp-vnet-4242"
    assert record.base_resource_ids["primaryNetwork"] == base_outputs["primaryNetworkId"]


def test_rerun_drops_vanished_dependent(orchestrator, store, base_parameters):
    store.save(ProvisioningRecord("rg-pp-vnet", {"primaryNetwork": "old"}, "ep-pp-vnet-4242"))

    orchestrator.provision_base(orchestrator.build_base_request(base_parameters))

    assert store.load().dependent_resource_name is None


def test_corrupt_previous_record_is_replaced(orchestrator, store, base_parameters):
    store.path.write_text("{not json")

    orchestrator.provision_base(orchestrator.build_base_request(base_parameters))

    assert store.load().resource_group_name == "rg-pp-vnet"


def test_unverifiable_dependent_still_saves_record(orchestrator, fake_backend, store, base_parameters, base_outputs):
    """A failing existence check drops the old policy name but keeps the new outputs."""
    store.save(ProvisioningRecord("rg-pp-vnet", {"primaryNetwork": "old"}, "ep-pp-vnet-4242"))
    fake_backend.exists_error = BackendError("Too many requests", "TooManyRequests")

    result = orchestrator.provision_base(orchestrator.build_base_request(base_parameters))

    assert result.succeeded
    assert orchestrator.state == RunState.BASE_SUCCEEDED
    record = store.load()
    assert record.base_resource_ids["primaryNetwork"] == base_outputs["primaryNetworkId"]
    assert record.dependent_resource_name is None
