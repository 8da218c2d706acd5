"""Guest provider for OS-level setup inside containers (and on the host)."""

import logging
import re
from typing import List, Optional, TYPE_CHECKING

from pvegate.models.container import GuestSpec
from pvegate.providers.base import BaseProvider, ProviderStatus
from pvegate.utils.command import CommandResult, run_command

if TYPE_CHECKING:
    from pvegate.providers.container import ContainerProvider
    from pvegate.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


SYSCTL_CONF = "/etc/sysctl.conf"
FORWARD_KEY = "net.ipv4.ip_forward"
PACKAGE_RE = re.compile(r"^[a-z0-9][a-z0-9+.-]+$")


def invalid_packages(packages: List[str]) -> List[str]:
    """Return entries that are not valid Debian package names."""
    return [p for p in packages if not PACKAGE_RE.match(p)]


class GuestProvider(BaseProvider):
    """Provider for IP forwarding and Debian packages.

    Commands run inside the container given by ``vmid``, or on the host when
    ``vmid`` is None.
    """

    def __init__(self):
        """Initialize guest provider."""
        self._container_provider: Optional["ContainerProvider"] = None

    async def initialize(self, config, registry: "ProviderRegistry") -> None:
        """Inject the container provider for in-container execution."""
        self._container_provider = registry.get_provider("container")

    async def _run(self, vmid: Optional[int], cmd: List[str], check: bool = True,
                   timeout: Optional[float] = None) -> CommandResult:
        if vmid is None:
            return await run_command(cmd, check=check, timeout=timeout)
        return await self._container_provider.execute(vmid, cmd, check=check, timeout=timeout)

    async def status(self, spec: GuestSpec) -> ProviderStatus:
        """Present when forwarding matches and every package is installed."""
        try:
            if spec.ip_forward and not await self.forwarding_enabled(spec.vmid):
                return ProviderStatus.ABSENT
            missing = await self.missing_packages(spec.vmid, spec.packages)
        except Exception as e:
            logger.error(f"Error checking guest {spec.vmid}: {e}")
            return ProviderStatus.ERROR
        return ProviderStatus.ABSENT if missing else ProviderStatus.PRESENT

    async def present(self, spec: GuestSpec) -> None:
        """Enable forwarding and install packages."""
        if spec.ip_forward:
            await self.configure_forwarding(spec.vmid)
        if spec.packages:
            await self.install_packages(spec.vmid, spec.packages)

    async def absent(self, spec: GuestSpec) -> None:
        """Disable forwarding; packages are left installed."""
        if not spec.ip_forward:
            return
        await self._run(spec.vmid, ["sysctl", "-w", f"{FORWARD_KEY}=0"])
        await self._run(spec.vmid, [
            "sed", "-i", f"s/^{FORWARD_KEY}=1/#{FORWARD_KEY}=1/", SYSCTL_CONF
        ])
        logger.info(f"Disabled IPv4 forwarding in container {spec.vmid}")

    async def validate_spec(self, spec: GuestSpec) -> bool:
        """Package names must be plain Debian package names."""
        invalid = invalid_packages(spec.packages)
        if invalid:
            logger.error(f"Invalid package names for {spec.vmid}: {invalid}")
            return False
        return True

    async def configure_forwarding(self, vmid: Optional[int]) -> None:
        """Enable IPv4 forwarding now and persist it in sysctl.conf."""
        await self._run(vmid, ["sysctl", "-w", f"{FORWARD_KEY}=1"])
        await self._run(vmid, [
            "sed", "-i", f"s/^#\\s*{FORWARD_KEY}=1/{FORWARD_KEY}=1/", SYSCTL_CONF
        ])
        await self._run(vmid, ["sysctl", "-p"])
        logger.info(f"Enabled IPv4 forwarding in {self._where(vmid)}")

    async def forwarding_enabled(self, vmid: Optional[int]) -> bool:
        result = await self._run(vmid, ["sysctl", "-n", FORWARD_KEY], check=False)
        return result.ok and result.stdout.strip() == "1"

    async def install_packages(self, vmid: Optional[int], packages: List[str]) -> None:
        """Refresh the package index and install ``packages`` non-interactively."""
        invalid = invalid_packages(packages)
        if invalid:
            raise ValueError(f"Invalid package names: {invalid}")
        logger.info(f"Installing {', '.join(packages)} in {self._where(vmid)}")
        await self._run(vmid, ["apt-get", "update", "-qq"], timeout=600)
        await self._run(vmid, [
            "env", "DEBIAN_FRONTEND=noninteractive",
            "apt-get", "install", "-y", "-qq", *packages,
        ], timeout=1800)

    async def missing_packages(self, vmid: Optional[int], packages: List[str]) -> List[str]:
        """Return the packages dpkg does not report as installed."""
        missing = []
        for package in packages:
            result = await self._run(
                vmid, ["dpkg-query", "-W", "-f=${Status}", package], check=False
            )
            if not (result.ok and "install ok installed" in result.stdout):
                missing.append(package)
        return missing

    @staticmethod
    def _where(vmid: Optional[int]) -> str:
        return "host" if vmid is None else f"container {vmid}"
