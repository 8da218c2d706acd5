"""
pvegate - WireGuard gateway provisioning for Proxmox VE.

Builds an internal bridge, a VPN gateway container that routes all of its
traffic through a WireGuard tunnel, and downstream containers that use the
gateway as their default route.
"""

__version__ = "1.0.0"
__author__ = "pvegate Development Team"

# Re-export key components for easier access
from pvegate.models.config import ProvisionerConfig
from pvegate.models.container import ContainerSpec
from pvegate.models.template import TemplateRef
from pvegate.models.tunnel import TunnelSpec

__all__ = [
    "ProvisionerConfig",
    "ContainerSpec",
    "TemplateRef",
    "TunnelSpec",
]
