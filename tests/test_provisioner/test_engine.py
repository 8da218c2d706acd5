"""Tests for the Provisioner."""

import subprocess
import pytest
from unittest.mock import AsyncMock, MagicMock

from pvegate.models.config import DownstreamConfig, ProvisionerConfig
from pvegate.providers.base import ProviderStatus
from pvegate.provisioner.engine import Provisioner


PROVIDER_METHODS = {
    "bridge": ["present", "status", "is_up"],
    "template": ["present", "status"],
    "container": ["validate_spec", "recreate", "present", "wait_until_ready", "get_state", "destroy"],
    "guest": ["missing_packages", "install_packages", "configure_forwarding", "status"],
    "firewall": ["validate_spec", "present", "status"],
    "tunnel": ["seed_config_files", "validate_spec", "install_service", "service_state"],
}

DEFAULT_RETURNS = {
    "validate_spec": True,
    "missing_packages": [],
}


class Recorder:
    """Mock providers that log every call in order."""

    def __init__(self):
        self.calls = []
        self.returns = {}
        self.providers = {}
        for name, methods in PROVIDER_METHODS.items():
            provider = MagicMock()
            for method in methods:
                setattr(provider, method, AsyncMock(side_effect=self._recording(name, method)))
            self.providers[name] = provider

    def _recording(self, name, method):
        async def _call(*args, **kwargs):
            self.calls.append(f"{name}.{method}")
            return self.returns.get(f"{name}.{method}", DEFAULT_RETURNS.get(method))
        return _call

    def registry(self):
        registry = MagicMock()
        registry.get_provider.side_effect = self.providers.get
        return registry


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def config():
    return ProvisionerConfig()


@pytest.fixture
def provisioner(config, recorder):
    return Provisioner(config, recorder.registry())


class TestSpecs:
    """Test specs derived from configuration."""

    def test_gateway_routes_via_bridge(self, provisioner):
        spec = provisioner.gateway_spec()

        assert spec.vmid == 200
        assert spec.gateway == "10.10.10.1"
        assert spec.nameserver == "1.1.1.1"
        assert spec.template == "local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst"
        assert "gw=10.10.10.1" in spec.net0

    def test_downstream_routes_via_gateway(self, provisioner):
        spec = provisioner.downstream_spec(DownstreamConfig(vmid=201, ip="10.10.10.10"))

        assert spec.gateway == "10.10.10.2"
        assert spec.hostname == "vpn-client-201"
        assert spec.memory == 256
        assert spec.cores == 1

    def test_host_firewall_rules(self, provisioner):
        rules = provisioner.host_firewall_spec().rules

        assert [str(r) for r in rules] == [
            "-t nat PVEGATE-POSTROUTING -s 10.10.10.2 -o vmbr0 -j MASQUERADE",
            "-t filter PVEGATE-FORWARD -s 10.10.10.2 -o vmbr0 -j ACCEPT",
            "-t filter PVEGATE-FORWARD -d 10.10.10.2 -i vmbr0 -m conntrack "
            "--ctstate RELATED,ESTABLISHED -j ACCEPT",
        ]

    def test_host_masquerade_disabled(self, recorder):
        config = ProvisionerConfig(firewall={"host_masquerade": False})
        assert Provisioner(config, recorder.registry()).host_firewall_spec().rules == []

    def test_gateway_nat_rule(self, provisioner):
        spec = provisioner.gateway_firewall_spec()

        assert spec.vmid == 200
        assert [str(r) for r in spec.rules] == [
            "-t nat PVEGATE-POSTROUTING -s 10.10.10.0/24 -o wg0 -j MASQUERADE"
        ]


@pytest.mark.asyncio
class TestProvisionGateway:
    """Test the gateway sequence."""

    async def test_step_order(self, provisioner, recorder):
        await provisioner.provision_gateway()

        assert recorder.calls == [
            "bridge.present",
            "guest.missing_packages",
            "firewall.validate_spec",
            "firewall.present",
            "template.present",
            "container.validate_spec",
            "container.recreate",
            "container.wait_until_ready",
            "guest.configure_forwarding",
            "guest.install_packages",
            "tunnel.seed_config_files",
            "tunnel.validate_spec",
            "tunnel.install_service",
            "firewall.validate_spec",
            "firewall.present",
        ]
        assert provisioner.last_run is not None

    async def test_missing_host_packages_are_installed(self, provisioner, recorder):
        recorder.returns["guest.missing_packages"] = ["iptables-persistent"]

        await provisioner.ensure_host_firewall()

        recorder.providers["guest"].install_packages.assert_called_once_with(None, ["iptables-persistent"])

    async def test_stops_at_first_failure(self, provisioner, recorder):
        """Nothing after a failed step runs."""
        recorder.providers["container"].recreate.side_effect = subprocess.CalledProcessError(
            255, ["pct", "create"], stderr="unable to create CT 200"
        )

        with pytest.raises(subprocess.CalledProcessError):
            await provisioner.provision_gateway()

        recorder.providers["container"].wait_until_ready.assert_not_called()
        recorder.providers["tunnel"].install_service.assert_not_called()
        assert provisioner.last_run is None

    async def test_reuse_gateway_when_recreate_disabled(self, recorder):
        config = ProvisionerConfig(gateway={"recreate": False})
        provisioner = Provisioner(config, recorder.registry())

        await provisioner.provision_gateway()

        assert "container.present" in recorder.calls
        assert "container.recreate" not in recorder.calls

    async def test_invalid_tunnel_spec(self, provisioner, recorder):
        recorder.returns["tunnel.validate_spec"] = False

        with pytest.raises(ValueError):
            await provisioner.install_tunnel_service()

    async def test_missing_provider(self, config):
        registry = MagicMock()
        registry.get_provider.return_value = None

        with pytest.raises(RuntimeError, match="Bridge provider not available"):
            await Provisioner(config, registry).ensure_bridge()


@pytest.mark.asyncio
class TestDownstream:
    """Test downstream container operations."""

    async def test_provision_downstream(self, provisioner, recorder):
        spec = await provisioner.provision_downstream(DownstreamConfig(vmid=201, ip="10.10.10.10"))

        assert spec.gateway == "10.10.10.2"
        recorder.providers["container"].recreate.assert_called_once_with(spec)
        recorder.providers["container"].wait_until_ready.assert_called_once_with(201)

    async def test_provision_declared_downstream(self, recorder):
        config = ProvisionerConfig(downstream=[
            {"vmid": 201, "ip": "10.10.10.10"},
            {"vmid": 202, "ip": "10.10.10.11", "hostname": "media"},
        ])
        provisioner = Provisioner(config, recorder.registry())

        created = await provisioner.provision()

        assert [s.hostname for s in created] == ["vpn-client-201", "media"]

    async def test_remove_downstream(self, provisioner, recorder):
        recorder.returns["container.get_state"] = "running"

        assert await provisioner.remove_downstream(201) is True
        recorder.providers["container"].destroy.assert_called_once_with(201)

    async def test_remove_absent_downstream(self, provisioner, recorder):
        assert await provisioner.remove_downstream(201) is False
        recorder.providers["container"].destroy.assert_not_called()

    async def test_remove_refuses_gateway(self, provisioner, recorder):
        with pytest.raises(ValueError):
            await provisioner.remove_downstream(200)
        recorder.providers["container"].destroy.assert_not_called()


@pytest.mark.asyncio
class TestStatus:
    """Test the status report."""

    async def test_running_gateway(self, recorder):
        config = ProvisionerConfig(downstream=[{"vmid": 201, "ip": "10.10.10.10"}])
        provisioner = Provisioner(config, recorder.registry())
        recorder.returns.update({
            "bridge.status": ProviderStatus.PRESENT,
            "bridge.is_up": True,
            "template.status": ProviderStatus.PRESENT,
            "firewall.status": ProviderStatus.PRESENT,
            "container.get_state": "running",
            "guest.status": ProviderStatus.PRESENT,
            "tunnel.service_state": "active",
        })

        status = await provisioner.get_status()

        assert status["bridge"] == {
            "name": "vmbr1", "address": "10.10.10.1/24", "configured": True, "up": True
        }
        assert status["template"]["present"] is True
        assert status["host_firewall"] is True
        assert status["gateway"]["state"] == "running"
        assert status["gateway"]["configured"] is True
        assert status["gateway"]["tunnel"] == "active"
        assert status["gateway"]["nat"] is True
        assert status["downstream"] == [
            {"vmid": 201, "hostname": "vpn-client-201", "ip": "10.10.10.10", "state": "running"}
        ]

    async def test_absent_gateway_skips_container_checks(self, provisioner, recorder):
        recorder.returns.update({
            "bridge.status": ProviderStatus.ABSENT,
            "bridge.is_up": False,
            "template.status": ProviderStatus.ABSENT,
            "firewall.status": ProviderStatus.ABSENT,
        })

        status = await provisioner.get_status()

        assert status["gateway"]["state"] == "absent"
        assert status["gateway"]["tunnel"] == "n/a"
        assert status["gateway"]["nat"] is False
        recorder.providers["tunnel"].service_state.assert_not_called()
        recorder.providers["guest"].status.assert_not_called()
