"""Template provider for managing cached container templates."""

import asyncio
import logging
import subprocess
from typing import TYPE_CHECKING

from pvegate.models.template import TemplateRef
from pvegate.providers.base import BaseProvider, ProviderStatus
from pvegate.utils.command import run_command

if TYPE_CHECKING:
    from pvegate.providers.registry import ProviderRegistry


logger = logging.getLogger(__name__)


class TemplateProvider(BaseProvider):
    """Provider for pveam container templates."""

    async def initialize(self, config, registry: "ProviderRegistry") -> None:
        """Template paths come from each TemplateRef."""
        pass

    async def status(self, spec: TemplateRef) -> ProviderStatus:
        """Check if the template archive is in the local cache."""
        try:
            exists = await asyncio.to_thread(spec.cache_path.exists)
        except OSError as e:
            logger.error(f"Error checking template {spec.name}: {e}")
            return ProviderStatus.ERROR
        return ProviderStatus.PRESENT if exists else ProviderStatus.ABSENT

    async def present(self, spec: TemplateRef) -> bool:
        """Download the template if it is not cached.

        Returns True if a download happened.
        """
        if await self.status(spec) == ProviderStatus.PRESENT:
            logger.debug(f"Template {spec.name} already present")
            return False

        logger.info(f"Downloading LXC template {spec.name}")
        try:
            await run_command(["pveam", "update"], timeout=300)
            # Extended timeout for slow mirrors
            await run_command(["pveam", "download", spec.storage, spec.name], timeout=1800)
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to download template {spec.name}: {e}. Stderr: {e.stderr}")
            raise

        logger.info(f"Template {spec.name} downloaded to {spec.storage}")
        return True

    async def absent(self, spec: TemplateRef) -> None:
        """Remove the template from storage."""
        if await self.status(spec) == ProviderStatus.ABSENT:
            logger.debug(f"Template {spec.name} already absent")
            return

        await run_command(["pveam", "remove", spec.volume_id])
        logger.info(f"Template {spec.name} removed")

    async def validate_spec(self, spec: TemplateRef) -> bool:
        """Validation is handled by Pydantic."""
        return True
