"""Bridge provider for the internal VPN network."""

import asyncio
import logging
from typing import TYPE_CHECKING

from pvegate.models.network import BridgeConfig
from pvegate.providers.base import BaseProvider, ProviderStatus
from pvegate.utils.command import run_command
from pvegate.utils.templates import render_template

if TYPE_CHECKING:
    from pvegate.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


BRIDGE_TEMPLATE = """\
auto {{ name }}
iface {{ name }} inet static
    address {{ address }}
    bridge-ports none
    bridge-stp off
    bridge-fd 0
"""


class BridgeProvider(BaseProvider):
    """Provider for an ifupdown bridge without physical ports."""

    async def initialize(self, config, registry: "ProviderRegistry") -> None:
        """Nothing to prepare, the bridge spec carries its own paths."""
        pass

    async def status(self, spec: BridgeConfig) -> ProviderStatus:
        """Bridge is present when its definition file exists."""
        exists = await asyncio.to_thread(spec.config_file.exists)
        return ProviderStatus.PRESENT if exists else ProviderStatus.ABSENT

    async def present(self, spec: BridgeConfig) -> bool:
        """Write the bridge definition if missing and bring the bridge up.

        Returns True if the definition file was written.
        """
        created = False
        if await self.status(spec) == ProviderStatus.ABSENT:
            logger.info(f"Creating {spec.name} config at {spec.config_file}")
            content = self.render(spec)
            await asyncio.to_thread(lambda: spec.config_file.parent.mkdir(parents=True, exist_ok=True))
            await asyncio.to_thread(spec.config_file.write_text, content)
            created = True

        await self.activate(spec, cycle=created)
        return created

    async def absent(self, spec: BridgeConfig) -> None:
        """Bring the bridge down and remove its definition."""
        if await self.status(spec) == ProviderStatus.ABSENT:
            logger.debug(f"Bridge {spec.name} already absent")
            return

        await run_command(["ifdown", spec.name], check=False)
        await asyncio.to_thread(spec.config_file.unlink)
        logger.info(f"Removed bridge {spec.name}")

    async def validate_spec(self, spec: BridgeConfig) -> bool:
        """Validation is handled by Pydantic."""
        return True

    def render(self, spec: BridgeConfig) -> str:
        """Render the interfaces(5) stanza for the bridge."""
        return render_template(BRIDGE_TEMPLATE, name=spec.name, address=spec.address)

    async def activate(self, spec: BridgeConfig, cycle: bool = False) -> None:
        """Bring the bridge up, cycling it when ``ifup`` alone is not enough."""
        if not cycle:
            result = await run_command(["ifup", spec.name], check=False)
            if result.ok:
                logger.debug(f"Bridge {spec.name} is up")
                return
            logger.debug(f"ifup {spec.name} failed, cycling interface: {result.stderr.strip()}")

        await run_command(["ifdown", spec.name], check=False)
        await run_command(["ifup", spec.name])
        logger.info(f"Bridge {spec.name} up with address {spec.address}")

    async def is_up(self, spec: BridgeConfig) -> bool:
        """Check the UP flag on the bridge link."""
        result = await run_command(["ip", "-o", "link", "show", "dev", spec.name], check=False)
        if not result.ok:
            return False
        flags = result.stdout.partition("<")[2].partition(">")[0]
        return "UP" in flags.split(",")
