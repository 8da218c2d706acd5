"""Configuration models."""

import ipaddress
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pvegate.models.container import check_hostname, check_ipv4
from pvegate.models.network import BridgeConfig
from pvegate.models.template import TemplateRef
from pvegate.models.tunnel import INTERFACE_NAME_PATTERN, SERVICE_NAME_PATTERN


class GatewayConfig(BaseModel):
    """VPN gateway container settings."""
    vmid: int = Field(default=200, ge=100)
    hostname: str = Field(default="vpn-gateway")
    ip: str = Field(default="10.10.10.2")
    storage: str = Field(default="local-lvm")
    memory: int = Field(default=512, ge=16)
    cores: int = Field(default=1, ge=1)
    unprivileged: bool = Field(default=True)
    nameserver: Optional[str] = Field(default="1.1.1.1")
    recreate: bool = Field(default=True, description="Destroy and recreate an existing container")

    @field_validator("ip", "nameserver")
    @classmethod
    def validate_addresses(cls, v):
        """Validate IPv4 addresses."""
        return check_ipv4(v)

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v):
        """Validate hostname label."""
        return check_hostname(v)


class DownstreamConfig(BaseModel):
    """Container routed through the gateway."""
    vmid: int = Field(..., ge=100)
    ip: str = Field(...)
    hostname: Optional[str] = None
    storage: str = Field(default="local-lvm")
    memory: int = Field(default=256, ge=16)
    cores: int = Field(default=1, ge=1)
    unprivileged: bool = Field(default=True)
    nameserver: Optional[str] = None

    @field_validator("ip", "nameserver")
    @classmethod
    def validate_addresses(cls, v):
        """Validate IPv4 addresses."""
        return check_ipv4(v)

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v):
        """Validate hostname label."""
        return check_hostname(v) if v is not None else v

    @property
    def resolved_hostname(self) -> str:
        return self.hostname or f"vpn-client-{self.vmid}"

    model_config = ConfigDict(extra="ignore")


class VPNConfig(BaseModel):
    """WireGuard client settings for the gateway."""
    subnet: str = Field(default="10.10.10.0/24", description="Source network masqueraded into the tunnel")
    host_config_dir: str = Field(default="/root/vpn")
    container_config_dir: str = Field(default="/etc/wireguard/config", pattern=r"^/[A-Za-z0-9_./-]+$")
    interface: str = Field(default="wg0", pattern=INTERFACE_NAME_PATTERN)
    service_name: str = Field(default="wg-client", pattern=SERVICE_NAME_PATTERN)
    restart_sec: int = Field(default=5, ge=1)
    packages: List[str] = Field(default_factory=lambda: ["wireguard", "iptables", "iptables-persistent"])

    @field_validator("subnet")
    @classmethod
    def validate_subnet(cls, v):
        """Validate subnet CIDR."""
        return str(ipaddress.IPv4Network(v, strict=False))


class FirewallConfig(BaseModel):
    """NAT topology policy."""
    host_masquerade: bool = Field(default=True, description="Masquerade gateway traffic on the host LAN interface")
    host_packages: List[str] = Field(default_factory=lambda: ["iptables-persistent"])
    gateway_egress: Optional[str] = Field(
        default=None, pattern=INTERFACE_NAME_PATTERN, description="Gateway NAT interface, defaults to the tunnel"
    )
    persist: bool = Field(default=True)
    prune: bool = Field(default=True)


class ReadinessConfig(BaseModel):
    """Container readiness polling."""
    timeout: float = Field(default=120.0, gt=0)
    interval: float = Field(default=1.0, gt=0)
    backoff: float = Field(default=1.0, ge=1.0)
    max_interval: float = Field(default=10.0, gt=0)


class ProvisionerConfig(BaseModel):
    """Main configuration model."""
    log_level: str = Field(default="INFO")
    lan_interface: str = Field(default="vmbr0", pattern=INTERFACE_NAME_PATTERN)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    template: TemplateRef = Field(default_factory=TemplateRef)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    vpn: VPNConfig = Field(default_factory=VPNConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    downstream: List[DownstreamConfig] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @model_validator(mode="after")
    def validate_topology(self):
        """Check addresses and IDs against the bridge network."""
        gateway_ip = ipaddress.IPv4Address(self.gateway.ip)
        if gateway_ip not in self.bridge.network:
            raise ValueError(f"Gateway IP {gateway_ip} is outside bridge network {self.bridge.network}")
        if gateway_ip == self.bridge.interface.ip:
            raise ValueError(f"Gateway IP {gateway_ip} collides with the bridge address")

        seen_vmids = {self.gateway.vmid}
        seen_ips = {gateway_ip}
        for downstream in self.downstream:
            self.check_downstream(downstream, seen_vmids=seen_vmids, seen_ips=seen_ips)
            seen_vmids.add(downstream.vmid)
            seen_ips.add(ipaddress.IPv4Address(downstream.ip))
        return self

    def check_downstream(self, downstream: DownstreamConfig, seen_vmids=None, seen_ips=None) -> None:
        """Raise ValueError if a downstream container does not fit the topology."""
        ip = ipaddress.IPv4Address(downstream.ip)
        if seen_vmids is None:
            seen_vmids = {self.gateway.vmid}
        if seen_ips is None:
            seen_ips = {ipaddress.IPv4Address(self.gateway.ip)}

        if downstream.vmid in seen_vmids:
            raise ValueError(f"Container ID {downstream.vmid} is already in use")
        if ip not in self.bridge.network:
            raise ValueError(f"Downstream IP {ip} is outside bridge network {self.bridge.network}")
        if ip == self.bridge.interface.ip or ip in seen_ips:
            raise ValueError(f"Downstream IP {ip} is already in use")

    @property
    def gateway_egress(self) -> str:
        return self.firewall.gateway_egress or self.vpn.interface

    model_config = ConfigDict(extra="ignore")
