"""Typed parameter builders for the base and dependent deployments."""
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from .errors import DeploymentIncomplete


def subnet_name_from_id(subnet_id: str) -> str:
    """Return the trailing name segment of a subnet resource id."""
    name = subnet_id.rstrip("/").rsplit("/", 1)[-1]
    if not name or "/subnets/" not in subnet_id.lower():
        raise ValueError(f"Not a subnet resource id: {subnet_id!r}")
    return name


@dataclass(frozen=True)
class BaseParameters:
    """Parameters of the base (networks, peering, role assignment) template."""
    primary_region: str
    secondary_region: str
    primary_network_name: str
    secondary_network_name: str
    principal_id: str
    principal_identifier: str

    def to_arm(self) -> Dict[str, Any]:
        return {
            "primaryRegion": self.primary_region,
            "secondaryRegion": self.secondary_region,
            "primaryNetworkName": self.primary_network_name,
            "secondaryNetworkName": self.secondary_network_name,
            "principalId": self.principal_id,
            "principalIdentifier": self.principal_identifier,
        }


@dataclass(frozen=True)
class PolicyParameters:
    """Parameters of the enterprise policy template."""
    generated_name: str
    primary_network_id: str
    secondary_network_id: str
    primary_subnet_name: str
    secondary_subnet_name: str

    @classmethod
    def from_base_outputs(cls, generated_name: str, outputs: Mapping[str, Any]) -> "PolicyParameters":
        """Map base deployment outputs onto policy parameters.

        Raises:
            DeploymentIncomplete: If an output the policy needs is absent.
        """
        needed = ("primaryNetworkId", "secondaryNetworkId", "primarySubnetId", "secondarySubnetId")
        missing = [name for name in needed if not outputs.get(name)]
        if missing:
            raise DeploymentIncomplete(missing)

        return cls(
            generated_name=generated_name,
            primary_network_id=outputs["primaryNetworkId"],
            secondary_network_id=outputs["secondaryNetworkId"],
            primary_subnet_name=subnet_name_from_id(outputs["primarySubnetId"]),
            secondary_subnet_name=subnet_name_from_id(outputs["secondarySubnetId"]),
        )

    def to_arm(self) -> Dict[str, Any]:
        return {
            "generatedName": self.generated_name,
            "primaryNetworkId": self.primary_network_id,
            "secondaryNetworkId": self.secondary_network_id,
            "primarySubnetName": self.primary_subnet_name,
            "secondarySubnetName": self.secondary_subnet_name,
        }
