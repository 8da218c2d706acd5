"""Tests for configuration models."""

import pytest
from pydantic import ValidationError

from pvegate.models.config import (
    DownstreamConfig,
    FirewallConfig,
    GatewayConfig,
    ProvisionerConfig,
    ReadinessConfig,
    VPNConfig,
)


class TestProvisionerConfig:
    """Test ProvisionerConfig model."""

    def test_default_values(self):
        """Test default topology."""
        config = ProvisionerConfig()

        assert config.bridge.name == "vmbr1"
        assert config.bridge.ip == "10.10.10.1"
        assert str(config.bridge.network) == "10.10.10.0/24"
        assert config.gateway.vmid == 200
        assert config.gateway.ip == "10.10.10.2"
        assert config.gateway.recreate is True
        assert config.template.volume_id == "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst"
        assert config.lan_interface == "vmbr0"
        assert config.downstream == []

    def test_log_level_validation(self):
        """Test log level validation."""
        config = ProvisionerConfig(log_level="debug")
        assert config.log_level == "DEBUG"

        with pytest.raises(ValidationError) as exc_info:
            ProvisionerConfig(log_level="LOUD")

        assert "log_level" in str(exc_info.value)

    def test_gateway_outside_bridge_network(self):
        """Gateway must live on the bridge network."""
        with pytest.raises(ValidationError) as exc_info:
            ProvisionerConfig(gateway={"ip": "192.168.1.2"})

        assert "outside bridge network" in str(exc_info.value)

    def test_gateway_collides_with_bridge_address(self):
        """Gateway cannot reuse the host bridge address."""
        with pytest.raises(ValidationError) as exc_info:
            ProvisionerConfig(gateway={"ip": "10.10.10.1"})

        assert "collides" in str(exc_info.value)

    def test_duplicate_downstream_vmid(self):
        """Downstream IDs must be unique and differ from the gateway."""
        with pytest.raises(ValidationError) as exc_info:
            ProvisionerConfig(downstream=[{"vmid": 200, "ip": "10.10.10.10"}])
        assert "already in use" in str(exc_info.value)

        with pytest.raises(ValidationError):
            ProvisionerConfig(downstream=[
                {"vmid": 201, "ip": "10.10.10.10"},
                {"vmid": 201, "ip": "10.10.10.11"},
            ])

    def test_duplicate_downstream_ip(self):
        """Downstream IPs must not collide with the gateway or each other."""
        with pytest.raises(ValidationError):
            ProvisionerConfig(downstream=[{"vmid": 201, "ip": "10.10.10.2"}])

        with pytest.raises(ValidationError):
            ProvisionerConfig(downstream=[
                {"vmid": 201, "ip": "10.10.10.10"},
                {"vmid": 202, "ip": "10.10.10.10"},
            ])

    def test_check_downstream(self):
        """check_downstream validates a single container against the topology."""
        config = ProvisionerConfig()

        config.check_downstream(DownstreamConfig(vmid=201, ip="10.10.10.10"))

        with pytest.raises(ValueError, match="outside bridge network"):
            config.check_downstream(DownstreamConfig(vmid=201, ip="172.16.0.10"))
        with pytest.raises(ValueError, match="already in use"):
            config.check_downstream(DownstreamConfig(vmid=200, ip="10.10.10.10"))

    def test_gateway_egress_defaults_to_tunnel(self):
        """Gateway NAT goes out of the tunnel unless overridden."""
        assert ProvisionerConfig().gateway_egress == "wg0"

        config = ProvisionerConfig(firewall={"gateway_egress": "eth0"})
        assert config.gateway_egress == "eth0"


class TestGatewayConfig:
    """Test GatewayConfig model."""

    def test_invalid_ip(self):
        with pytest.raises(ValidationError):
            GatewayConfig(ip="10.10.10.300")

    def test_invalid_hostname(self):
        with pytest.raises(ValidationError):
            GatewayConfig(hostname="vpn_gateway")


class TestDownstreamConfig:
    """Test DownstreamConfig model."""

    def test_resolved_hostname(self):
        """Hostname defaults to vpn-client-<vmid>."""
        assert DownstreamConfig(vmid=201, ip="10.10.10.10").resolved_hostname == "vpn-client-201"
        assert DownstreamConfig(vmid=201, ip="10.10.10.10", hostname="media").resolved_hostname == "media"

    def test_defaults(self):
        downstream = DownstreamConfig(vmid=201, ip="10.10.10.10")

        assert downstream.memory == 256
        assert downstream.cores == 1
        assert downstream.unprivileged is True

    def test_vmid_minimum(self):
        with pytest.raises(ValidationError):
            DownstreamConfig(vmid=99, ip="10.10.10.10")


class TestVPNConfig:
    """Test VPNConfig model."""

    def test_subnet_is_normalized(self):
        assert VPNConfig(subnet="10.10.10.7/24").subnet == "10.10.10.0/24"

    def test_container_dir_rejects_shell_characters(self):
        with pytest.raises(ValidationError):
            VPNConfig(container_config_dir="/etc/wireguard/$(reboot)")

    def test_interface_name_is_checked(self):
        with pytest.raises(ValidationError):
            VPNConfig(interface="wireguard-client-tunnel0")
        with pytest.raises(ValidationError):
            VPNConfig(interface="wg0; reboot")

    def test_service_name_is_checked(self):
        with pytest.raises(ValidationError):
            VPNConfig(service_name="wg client")
        assert VPNConfig(service_name="wg-quick@wg0").service_name == "wg-quick@wg0"


class TestFirewallConfig:
    """Test FirewallConfig model."""

    def test_gateway_egress_defaults_to_tunnel(self):
        config = ProvisionerConfig(vpn={"interface": "wg1"})
        assert config.firewall.gateway_egress is None
        assert config.gateway_egress == "wg1"

    def test_gateway_egress_is_checked(self):
        with pytest.raises(ValidationError):
            FirewallConfig(gateway_egress="wg0 -j ACCEPT")
        assert FirewallConfig(gateway_egress="eth0").gateway_egress == "eth0"

    def test_lan_interface_is_checked(self):
        with pytest.raises(ValidationError):
            ProvisionerConfig(lan_interface="vmbr0 $(reboot)")


class TestReadinessConfig:
    """Test ReadinessConfig model."""

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            ReadinessConfig(timeout=0)

    def test_backoff_cannot_shrink(self):
        with pytest.raises(ValidationError):
            ReadinessConfig(backoff=0.5)
