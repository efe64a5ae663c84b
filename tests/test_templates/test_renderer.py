"""Tests for ARM template rendering."""
import pytest

from netinjection.deploy.errors import ProvisioningError
from netinjection.deploy.parameters import PolicyParameters, subnet_name_from_id
from netinjection.deploy.renderer import TemplateLibrary
from netinjection.settings.schema import ProvisionSettings


@pytest.fixture
def context():
    return ProvisionSettings().template_context()


def test_base_template(context):
    template = TemplateLibrary(defaults={"tags": {"owner": "platform"}}).render("base", **context)

    networks = [r for r in template["resources"] if r["type"] == "Microsoft.Network/virtualNetworks"]
    assert [n["name"] for n in networks] == [
        "[parameters('primaryNetworkName')]",
        "[parameters('secondaryNetworkName')]",
    ]
    assert networks[0]["tags"] == {"owner": "platform"}
    assert networks[1]["properties"]["addressSpace"]["addressPrefixes"] == ["10.20.0.0/16"]

    subnet = networks[0]["properties"]["subnets"][0]
    assert subnet["properties"]["addressPrefix"] == "10.10.0.0/24"
    assert subnet["properties"]["delegations"][0]["properties"]["serviceName"] == (
        "Microsoft.PowerPlatform/enterprisePolicies"
    )

    peerings = [r for r in template["resources"] if r["type"].endswith("virtualNetworkPeerings")]
    assert len(peerings) == 2
    assert set(template["outputs"]) == {
        "resourceGroupName",
        "primaryNetworkId",
        "secondaryNetworkId",
        "primarySubnetId",
        "secondarySubnetId",
    }
    assert template["variables"]["subnetName"] == "snet-pp-injection"


def test_policy_template(context):
    template = TemplateLibrary().render("policy", **context)

    policy = template["resources"][0]
    assert policy["type"] == "Microsoft.PowerPlatform/enterprisePolicies"
    assert policy["kind"] == "NetworkInjection"
    assert policy["location"] == "europe"
    assert policy["apiVersion"] == "2020-10-30-preview"
    assert set(template["parameters"]) == set(
        PolicyParameters("n", "a", "b", "c", "d").to_arm()
    )


def test_unknown_template():
    with pytest.raises(ProvisioningError, match="Unknown template"):
        TemplateLibrary().render("nope")


def test_missing_variable():
    with pytest.raises(ProvisioningError, match="missing a variable"):
        TemplateLibrary().render("base")


def test_custom_template_dir(tmp_path):
    (tmp_path / "bad.json.j2").write_text("{ \"a\": {{ value }} ")

    with pytest.raises(ProvisioningError, match="invalid JSON"):
        TemplateLibrary(tmp_path).render("bad", value=1)


def test_subnet_name_from_id():
    subnet_id = "/subscriptions/s/resourceGroups/rg/providers/Microsoft.Network/virtualNetworks/v/subnets/snet-a"

    assert subnet_name_from_id(subnet_id) == "snet-a"
    with pytest.raises(ValueError):
        subnet_name_from_id("/subscriptions/s/resourceGroups/rg")
