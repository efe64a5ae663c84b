"""Pydantic models for provisioning settings."""
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class NetworkSettings(BaseModel):
    """Dual-region network layout."""
    model_config = ConfigDict(populate_by_name=True)

    primary_region: str = Field(default="westeurope", alias="primaryRegion")
    secondary_region: str = Field(default="northeurope", alias="secondaryRegion")
    primary_network_name: Optional[str] = Field(default=None, alias="primaryNetworkName")
    secondary_network_name: Optional[str] = Field(default=None, alias="secondaryNetworkName")
    subnet_name: str = Field(default="snet-pp-injection", alias="subnetName")
    primary_address_space: str = Field(default="10.10.0.0/16", alias="primaryAddressSpace")
    primary_subnet_prefix: str = Field(default="10.10.0.0/24", alias="primarySubnetPrefix")
    secondary_address_space: str = Field(default="10.20.0.0/16", alias="secondaryAddressSpace")
    secondary_subnet_prefix: str = Field(default="10.20.0.0/24", alias="secondarySubnetPrefix")

    def effective_primary_network_name(self) -> str:
        return self.primary_network_name or f"vnet-pp-{self.primary_region}"

    def effective_secondary_network_name(self) -> str:
        return self.secondary_network_name or f"vnet-pp-{self.secondary_region}"


class PolicySettings(BaseModel):
    """Enterprise policy (dependent resource) naming and placement."""
    model_config = ConfigDict(populate_by_name=True)

    name_prefix: str = Field(default="ep-pp-vnet", alias="namePrefix")
    location: str = "europe"
    max_attempts: int = Field(default=5, ge=1, alias="maxAttempts")


class OrchestrationSettings(BaseModel):
    """Timing and local state knobs."""
    model_config = ConfigDict(populate_by_name=True)

    identity_settle_seconds: float = Field(default=10.0, ge=0, alias="identitySettleSeconds")
    deployment_timeout_seconds: Optional[float] = Field(default=None, gt=0, alias="deploymentTimeoutSeconds")
    record_path: str = Field(default="provisioning-record.json", alias="recordPath")


class ProvisionSettings(BaseModel):
    """Root settings schema."""
    model_config = ConfigDict(populate_by_name=True)

    subscription: Optional[str] = None
    resource_group: str = Field(default="rg-pp-vnet", alias="resourceGroup")
    tags: Dict[str, str] = Field(default_factory=dict)
    network: NetworkSettings = Field(default_factory=NetworkSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    orchestration: OrchestrationSettings = Field(default_factory=OrchestrationSettings)

    def template_context(self) -> dict:
        """Render variables for the base and policy templates."""
        network = self.network
        return {
            "subnet_name": network.subnet_name,
            "networks": [
                {
                    "role": "primary",
                    "peer": "secondary",
                    "address_space": network.primary_address_space,
                    "subnet_prefix": network.primary_subnet_prefix,
                },
                {
                    "role": "secondary",
                    "peer": "primary",
                    "address_space": network.secondary_address_space,
                    "subnet_prefix": network.secondary_subnet_prefix,
                },
            ],
            "policy_location": self.policy.location,
        }
