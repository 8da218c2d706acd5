"""Pydantic models for configuration and validation."""

from pvegate.models.config import (
    ProvisionerConfig,
    GatewayConfig,
    DownstreamConfig,
    VPNConfig,
    FirewallConfig,
    ReadinessConfig,
)
from pvegate.models.container import ContainerSpec, GuestSpec
from pvegate.models.network import BridgeConfig, FirewallRule, FirewallSpec
from pvegate.models.template import TemplateRef
from pvegate.models.tunnel import TunnelSpec

__all__ = [
    "ProvisionerConfig",
    "GatewayConfig",
    "DownstreamConfig",
    "VPNConfig",
    "FirewallConfig",
    "ReadinessConfig",
    "ContainerSpec",
    "GuestSpec",
    "BridgeConfig",
    "FirewallRule",
    "FirewallSpec",
    "TemplateRef",
    "TunnelSpec",
]
