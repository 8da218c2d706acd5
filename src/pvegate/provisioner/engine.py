"""Provisioning engine.

Runs the gateway sequence as an ordered list of steps. Each step checks the
live state of its resource before changing it, so a run that failed halfway
can simply be started again.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pvegate.models.config import DownstreamConfig, ProvisionerConfig
from pvegate.models.container import ContainerSpec, GuestSpec
from pvegate.models.network import FirewallRule, FirewallSpec
from pvegate.models.tunnel import TunnelSpec
from pvegate.providers import ProviderRegistry, ProviderStatus


logger = logging.getLogger(__name__)

Step = Tuple[str, Callable[[], Awaitable[Any]]]


class Provisioner:
    """Orchestrates providers to build the VPN gateway and its clients."""

    def __init__(self, config: ProvisionerConfig, provider_registry: ProviderRegistry):
        """Initialize provisioner."""
        self.config = config
        self.provider_registry = provider_registry
        self.last_run: Optional[datetime] = None

    def _provider(self, name: str):
        provider = self.provider_registry.get_provider(name)
        if not provider:
            raise RuntimeError(f"{name.capitalize()} provider not available")
        return provider

    # Specs derived from configuration

    def gateway_spec(self) -> ContainerSpec:
        """Gateway container, routed through the host bridge address."""
        gateway = self.config.gateway
        return ContainerSpec(
            vmid=gateway.vmid,
            hostname=gateway.hostname,
            template=self.config.template.volume_id,
            bridge=self.config.bridge.name,
            ip=gateway.ip,
            prefix_len=self.config.bridge.network.prefixlen,
            gateway=self.config.bridge.ip,
            nameserver=gateway.nameserver,
            storage=gateway.storage,
            memory=gateway.memory,
            cores=gateway.cores,
            unprivileged=gateway.unprivileged,
        )

    def downstream_spec(self, downstream: DownstreamConfig) -> ContainerSpec:
        """Downstream container whose default route is the gateway."""
        return ContainerSpec(
            vmid=downstream.vmid,
            hostname=downstream.resolved_hostname,
            template=self.config.template.volume_id,
            bridge=self.config.bridge.name,
            ip=downstream.ip,
            prefix_len=self.config.bridge.network.prefixlen,
            gateway=self.config.gateway.ip,
            nameserver=downstream.nameserver,
            storage=downstream.storage,
            memory=downstream.memory,
            cores=downstream.cores,
            unprivileged=downstream.unprivileged,
        )

    def guest_spec(self) -> GuestSpec:
        return GuestSpec(vmid=self.config.gateway.vmid, ip_forward=True, packages=self.config.vpn.packages)

    def tunnel_spec(self) -> TunnelSpec:
        vpn = self.config.vpn
        return TunnelSpec(
            vmid=self.config.gateway.vmid,
            host_config_dir=vpn.host_config_dir,
            container_config_dir=vpn.container_config_dir,
            interface=vpn.interface,
            service_name=vpn.service_name,
            restart_sec=vpn.restart_sec,
        )

    def host_firewall_spec(self) -> FirewallSpec:
        """Host NAT and forwarding for the gateway through the LAN interface."""
        rules = []
        if self.config.firewall.host_masquerade:
            gateway_ip = self.config.gateway.ip
            lan = self.config.lan_interface
            rules = [
                FirewallRule(table="nat", chain="POSTROUTING",
                             match=["-s", gateway_ip, "-o", lan], target="MASQUERADE"),
                FirewallRule(table="filter", chain="FORWARD",
                             match=["-s", gateway_ip, "-o", lan], target="ACCEPT"),
                FirewallRule(table="filter", chain="FORWARD",
                             match=["-d", gateway_ip, "-i", lan, "-m", "conntrack",
                                    "--ctstate", "RELATED,ESTABLISHED"],
                             target="ACCEPT"),
            ]
        return FirewallSpec(
            name="host",
            rules=rules,
            persist=self.config.firewall.persist,
            prune=self.config.firewall.prune,
        )

    def gateway_firewall_spec(self) -> FirewallSpec:
        """Gateway NAT for the VPN subnet through the egress interface."""
        return FirewallSpec(
            name="gateway",
            vmid=self.config.gateway.vmid,
            rules=[
                FirewallRule(table="nat", chain="POSTROUTING",
                             match=["-s", self.config.vpn.subnet, "-o", self.config.gateway_egress],
                             target="MASQUERADE"),
            ],
            persist=self.config.firewall.persist,
            prune=self.config.firewall.prune,
        )

    # Operations

    async def ensure_bridge(self) -> bool:
        """Ensure the internal bridge is defined and up."""
        return await self._provider("bridge").present(self.config.bridge)

    async def ensure_host_firewall(self) -> int:
        """Install the persistence package and reconcile host rules."""
        spec = self.host_firewall_spec()
        if not spec.rules:
            logger.info("Host masquerading disabled, skipping host firewall")
            return 0

        guest_provider = self._provider("guest")
        if self.config.firewall.host_packages:
            missing = await guest_provider.missing_packages(None, self.config.firewall.host_packages)
            if missing:
                await guest_provider.install_packages(None, missing)
        return await self._reconcile_firewall(spec)

    async def ensure_template(self) -> bool:
        """Ensure the container template is cached."""
        return await self._provider("template").present(self.config.template)

    async def recreate_container(self, spec: ContainerSpec) -> None:
        """Replace any container with ``spec.vmid`` by a fresh one and start it."""
        container_provider = self._provider("container")
        if not await container_provider.validate_spec(spec):
            raise ValueError(f"Invalid container configuration for {spec.vmid}")
        await container_provider.recreate(spec)

    async def wait_until_responsive(self, vmid: int) -> int:
        """Block until the container answers commands (bounded)."""
        return await self._provider("container").wait_until_ready(vmid)

    async def configure_forwarding(self, vmid: int) -> None:
        await self._provider("guest").configure_forwarding(vmid)

    async def install_packages(self, vmid: Optional[int], packages: List[str]) -> None:
        await self._provider("guest").install_packages(vmid, packages)

    async def seed_config_files(self) -> int:
        """Copy VPN configs into the gateway if it has none."""
        return await self._provider("tunnel").seed_config_files(self.tunnel_spec())

    async def install_tunnel_service(self) -> None:
        """Install, enable and start the tunnel service in the gateway."""
        tunnel_provider = self._provider("tunnel")
        spec = self.tunnel_spec()
        if not await tunnel_provider.validate_spec(spec):
            raise ValueError("Invalid tunnel configuration")
        await tunnel_provider.install_service(spec)

    async def configure_nat(self) -> int:
        """Reconcile the gateway's masquerade rule."""
        return await self._reconcile_firewall(self.gateway_firewall_spec())

    async def _reconcile_firewall(self, spec: FirewallSpec) -> int:
        firewall_provider = self._provider("firewall")
        if not await firewall_provider.validate_spec(spec):
            raise ValueError(f"Invalid firewall rule set {spec.name}")
        return await firewall_provider.present(spec)

    async def _ensure_gateway_container(self) -> None:
        spec = self.gateway_spec()
        if self.config.gateway.recreate:
            await self.recreate_container(spec)
        else:
            await self._provider("container").present(spec)

    def gateway_steps(self) -> List[Step]:
        """The gateway sequence, in execution order."""
        vmid = self.config.gateway.vmid
        return [
            ("bridge", self.ensure_bridge),
            ("host firewall", self.ensure_host_firewall),
            ("template", self.ensure_template),
            ("gateway container", self._ensure_gateway_container),
            ("wait for gateway", lambda: self.wait_until_responsive(vmid)),
            ("ip forwarding", lambda: self.configure_forwarding(vmid)),
            ("packages", lambda: self.install_packages(vmid, self.config.vpn.packages)),
            ("vpn configs", self.seed_config_files),
            ("tunnel service", self.install_tunnel_service),
            ("gateway nat", self.configure_nat),
        ]

    async def provision_gateway(self) -> None:
        """Run every gateway step, stopping at the first failure."""
        steps = self.gateway_steps()
        start_time = datetime.now()
        logger.info(f"Provisioning VPN gateway {self.config.gateway.vmid}")

        for index, (name, step) in enumerate(steps, start=1):
            logger.info(f"[{index}/{len(steps)}] {name}")
            try:
                await step()
            except Exception as e:
                logger.error(f"Step '{name}' failed: {e}")
                raise

        self.last_run = datetime.now()
        duration = (self.last_run - start_time).total_seconds()
        logger.info(
            f"VPN gateway ready at {self.config.gateway.ip} on {self.config.bridge.name} "
            f"({duration:.1f}s)"
        )

    async def provision_downstream(self, downstream: DownstreamConfig) -> ContainerSpec:
        """Recreate a downstream container routed via the gateway."""
        spec = self.downstream_spec(downstream)
        logger.info(f"Provisioning downstream container {spec.vmid} via {self.config.gateway.ip}")
        await self.recreate_container(spec)
        await self.wait_until_responsive(spec.vmid)
        logger.info(f"Downstream container {spec.vmid} routed via VPN gateway ({self.config.gateway.ip})")
        return spec

    async def provision(self) -> List[ContainerSpec]:
        """Provision the gateway, then every declared downstream container."""
        await self.provision_gateway()
        created = []
        for downstream in self.config.downstream:
            created.append(await self.provision_downstream(downstream))
        return created

    async def remove_downstream(self, vmid: int) -> bool:
        """Stop and destroy a downstream container. Returns False if it was absent."""
        if vmid == self.config.gateway.vmid:
            raise ValueError(f"Container {vmid} is the gateway, not a downstream container")

        container_provider = self._provider("container")
        if await container_provider.get_state(vmid) is None:
            logger.info(f"Container {vmid} already absent")
            return False
        await container_provider.destroy(vmid)
        return True

    async def get_status(self) -> Dict[str, Any]:
        """Collect live status of every managed resource."""
        bridge_provider = self._provider("bridge")
        container_provider = self._provider("container")
        firewall_provider = self._provider("firewall")
        tunnel_provider = self._provider("tunnel")

        bridge = self.config.bridge
        gateway_state = await container_provider.get_state(self.config.gateway.vmid)
        gateway_running = gateway_state == "running"

        status: Dict[str, Any] = {
            "bridge": {
                "name": bridge.name,
                "address": bridge.address,
                "configured": await bridge_provider.status(bridge) == ProviderStatus.PRESENT,
                "up": await bridge_provider.is_up(bridge),
            },
            "template": {
                "name": self.config.template.name,
                "present": await self._provider("template").status(self.config.template) == ProviderStatus.PRESENT,
            },
            "host_firewall": (
                await firewall_provider.status(self.host_firewall_spec()) == ProviderStatus.PRESENT
            ),
            "gateway": {
                "vmid": self.config.gateway.vmid,
                "ip": self.config.gateway.ip,
                "state": gateway_state or "absent",
                "configured": (
                    await self._provider("guest").status(self.guest_spec()) == ProviderStatus.PRESENT
                    if gateway_running else False
                ),
                "tunnel": (
                    await tunnel_provider.service_state(self.tunnel_spec()) if gateway_running else "n/a"
                ),
                "nat": (
                    await firewall_provider.status(self.gateway_firewall_spec()) == ProviderStatus.PRESENT
                    if gateway_running else False
                ),
            },
            "downstream": [],
        }

        for downstream in self.config.downstream:
            state = await container_provider.get_state(downstream.vmid)
            status["downstream"].append({
                "vmid": downstream.vmid,
                "hostname": downstream.resolved_hostname,
                "ip": downstream.ip,
                "state": state or "absent",
            })
        return status
