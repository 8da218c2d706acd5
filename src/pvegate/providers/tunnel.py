"""Tunnel provider for the supervised WireGuard client in the gateway."""

import asyncio
import logging
import shlex
from pathlib import Path
from typing import List, Optional, TYPE_CHECKING

from pvegate.models.tunnel import TunnelSpec
from pvegate.providers.base import BaseProvider, ProviderStatus
from pvegate.utils.templates import render_template

if TYPE_CHECKING:
    from pvegate.providers.container import ContainerProvider
    from pvegate.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


# systemd expands $VAR in Exec lines, so shell variables are written as $$VAR
UNIT_TEMPLATE = """\
[Unit]
Description=WireGuard VPN Client ({{ interface }})
After=network-online.target
Wants=network-online.target

[Service]
Type=oneshot
RemainAfterExit=yes
ExecStart=/usr/bin/bash -c 'CONF=$$(ls {{ config_dir }}/*.conf | shuf -n1); cp "$$CONF" {{ active_config }}; chmod 600 {{ active_config }}; wg-quick up {{ interface }}'
ExecStop=/usr/bin/wg-quick down {{ interface }}
Restart=on-failure
RestartSec={{ restart_sec }}

[Install]
WantedBy=multi-user.target
"""


class TunnelProvider(BaseProvider):
    """Provider for the WireGuard client service inside a container."""

    def __init__(self):
        """Initialize tunnel provider."""
        self._container_provider: Optional["ContainerProvider"] = None

    async def initialize(self, config, registry: "ProviderRegistry") -> None:
        """Inject the container provider."""
        self._container_provider = registry.get_provider("container")

    @property
    def containers(self) -> "ContainerProvider":
        return self._container_provider

    async def status(self, spec: TunnelSpec) -> ProviderStatus:
        """Present when the service is active."""
        try:
            state = await self.service_state(spec)
        except Exception as e:
            logger.error(f"Error checking tunnel in container {spec.vmid}: {e}")
            return ProviderStatus.ERROR
        return ProviderStatus.PRESENT if state == "active" else ProviderStatus.ABSENT

    async def present(self, spec: TunnelSpec) -> None:
        """Seed configs if needed, then install and start the service."""
        await self.seed_config_files(spec)
        await self.install_service(spec)

    async def absent(self, spec: TunnelSpec) -> None:
        """Stop, disable and delete the service unit."""
        await self.containers.execute(
            spec.vmid, ["systemctl", "disable", "--now", spec.unit_name], check=False
        )
        await self.containers.execute(spec.vmid, ["rm", "-f", spec.unit_path])
        await self.containers.execute(spec.vmid, ["systemctl", "daemon-reload"])
        logger.info(f"Removed {spec.unit_name} from container {spec.vmid}")

    async def validate_spec(self, spec: TunnelSpec) -> bool:
        """Config directories must be absolute."""
        for path in (spec.host_config_dir, spec.container_config_dir):
            if not path.startswith("/"):
                logger.error(f"Tunnel config directory must be absolute: {path}")
                return False
        return True

    async def host_config_files(self, spec: TunnelSpec) -> List[Path]:
        """WireGuard configs available on the host, sorted by name."""
        source = Path(spec.host_config_dir)
        return sorted(await asyncio.to_thread(lambda: list(source.glob("*.conf"))))

    async def count_container_configs(self, spec: TunnelSpec) -> int:
        """Count ``*.conf`` files already in the container directory."""
        pattern = f"{shlex.quote(spec.container_config_dir)}/*.conf"
        result = await self.containers.execute(
            spec.vmid, ["sh", "-c", f"ls {pattern} 2>/dev/null | wc -l"]
        )
        return int(result.stdout.strip() or 0)

    async def seed_config_files(self, spec: TunnelSpec) -> int:
        """Copy host configs into the container when it has none.

        Returns the number of files copied, 0 when the container directory
        already holds at least one config.
        """
        existing = await self.count_container_configs(spec)
        if existing:
            logger.info(
                f"Container {spec.vmid} already has {existing} WireGuard config(s), skipping copy"
            )
            return 0

        sources = await self.host_config_files(spec)
        if not sources:
            raise FileNotFoundError(f"No WireGuard configs (*.conf) in {spec.host_config_dir}")

        logger.info(f"Copying {len(sources)} WireGuard config(s) from {spec.host_config_dir}")
        await self.containers.execute(spec.vmid, ["mkdir", "-p", spec.container_config_dir])
        for source in sources:
            await self.containers.push(
                spec.vmid, source, f"{spec.container_config_dir}/{source.name}", perms="0600"
            )
        return len(sources)

    def render_unit(self, spec: TunnelSpec) -> str:
        """Render the systemd unit for the tunnel service."""
        return render_template(
            UNIT_TEMPLATE,
            interface=spec.interface,
            config_dir=spec.container_config_dir,
            active_config=spec.active_config,
            restart_sec=spec.restart_sec,
        )

    async def install_service(self, spec: TunnelSpec) -> None:
        """Write the unit, then reload, enable and (re)start it."""
        await self.containers.write_file(spec.vmid, spec.unit_path, self.render_unit(spec))
        await self.containers.execute(spec.vmid, ["systemctl", "daemon-reload"])
        await self.containers.execute(spec.vmid, ["systemctl", "enable", spec.unit_name])
        await self.containers.execute(spec.vmid, ["systemctl", "restart", spec.unit_name], timeout=120)
        logger.info(f"Started {spec.unit_name} in container {spec.vmid}")

    async def service_state(self, spec: TunnelSpec) -> str:
        """Return ``systemctl is-active`` output for the service."""
        result = await self.containers.execute(
            spec.vmid, ["systemctl", "is-active", spec.unit_name], check=False
        )
        return result.stdout.strip() or "unknown"
