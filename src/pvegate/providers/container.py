"""Container provider for managing Proxmox LXC containers through pct."""

import asyncio
import logging
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional, TYPE_CHECKING

from pvegate.models.config import ReadinessConfig
from pvegate.models.container import ContainerSpec, VOLUME_ID_RE
from pvegate.providers.base import BaseProvider, ProviderStatus
from pvegate.utils.command import CommandResult, guest_command, run_command

if TYPE_CHECKING:
    from pvegate.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

# Lower bound on a single readiness check, even near the deadline
CHECK_TIMEOUT_FLOOR = 1.0


class ContainerNotReadyError(Exception):
    """Container did not answer commands before the readiness deadline."""

    def __init__(self, vmid: int, timeout: float, attempts: int):
        super().__init__(
            f"Container {vmid} did not become ready within {timeout:g}s ({attempts} attempts)"
        )
        self.vmid = vmid
        self.timeout = timeout
        self.attempts = attempts


class ContainerProvider(BaseProvider):
    """Provider for managing LXC containers with pct."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize container provider."""
        self.readiness = ReadinessConfig()
        self._clock = clock

    async def initialize(self, config, registry: "ProviderRegistry") -> None:
        """Initialize provider with configuration."""
        self.readiness = config.readiness

    async def status(self, spec: ContainerSpec) -> ProviderStatus:
        """Check if container exists."""
        try:
            state = await self.get_state(spec.vmid)
        except Exception as e:
            logger.error(f"Error checking container {spec.vmid}: {e}")
            return ProviderStatus.ERROR
        return ProviderStatus.ABSENT if state is None else ProviderStatus.PRESENT

    async def get_state(self, vmid: int) -> Optional[str]:
        """Return the pct status string (``running``, ``stopped``) or None if absent."""
        result = await run_command(["pct", "status", str(vmid)], check=False)
        if not result.ok:
            return None

        for line in result.stdout.splitlines():
            key, _, value = line.partition(":")
            if key.strip() == "status":
                return value.strip()
        return "unknown"

    async def is_running(self, vmid: int) -> bool:
        """Check if container is running."""
        return await self.get_state(vmid) == "running"

    async def present(self, spec: ContainerSpec) -> bool:
        """Ensure container exists and is started, reusing an existing one.

        Returns True if the container was created.
        """
        state = await self.get_state(spec.vmid)
        if state is None:
            await self.create(spec)
            await self.start(spec.vmid)
            return True

        logger.debug(f"Container {spec.vmid} already present ({state})")
        if state != "running":
            await self.start(spec.vmid)
        return False

    async def recreate(self, spec: ContainerSpec) -> None:
        """Destroy the container if it exists, then create and start a fresh one."""
        if await self.status(spec) == ProviderStatus.PRESENT:
            await self.destroy(spec.vmid)
        await self.create(spec)
        await self.start(spec.vmid)

    async def absent(self, spec: ContainerSpec) -> None:
        """Ensure container is absent."""
        if await self.status(spec) != ProviderStatus.PRESENT:
            logger.debug(f"Container {spec.vmid} already absent")
            return
        await self.destroy(spec.vmid)

    async def validate_spec(self, spec: ContainerSpec) -> bool:
        """Validate container specification."""
        if not VOLUME_ID_RE.match(spec.template):
            logger.error(f"Container {spec.vmid} has invalid template {spec.template}")
            return False
        return True

    async def create(self, spec: ContainerSpec) -> None:
        """Create the container from its template."""
        logger.info(f"Creating container {spec.vmid} ({spec.hostname}) on {spec.bridge} with IP {spec.ip}")
        try:
            # Extended timeout, rootfs is unpacked from the template
            await run_command(spec.create_args(), timeout=600)
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to create container {spec.vmid}: {e}. Stderr: {e.stderr}")
            raise

    async def start(self, vmid: int) -> None:
        """Start the container."""
        logger.info(f"Starting container {vmid}")
        await run_command(["pct", "start", str(vmid)], timeout=120)

    async def stop(self, vmid: int) -> None:
        """Stop the container; a container that is already stopped is fine."""
        result = await run_command(["pct", "stop", str(vmid)], check=False, timeout=120)
        if not result.ok:
            logger.debug(f"pct stop {vmid} exited {result.returncode}: {result.stderr.strip()}")

    async def destroy(self, vmid: int) -> None:
        """Stop and destroy the container."""
        logger.info(f"Removing existing container {vmid}")
        await self.stop(vmid)
        try:
            await run_command(["pct", "destroy", str(vmid), "--force"], timeout=300)
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to destroy container {vmid}: {e}. Stderr: {e.stderr}")
            raise

    async def wait_until_ready(self, vmid: int, timeout: Optional[float] = None) -> int:
        """Poll ``pct exec <vmid> -- true`` until it succeeds.

        Sleeps ``readiness.interval`` between probes, multiplied by
        ``readiness.backoff`` after each miss and capped at
        ``readiness.max_interval``. Each check is bounded by the time left
        before the deadline. Returns the number of probes used.
        """
        timeout = self.readiness.timeout if timeout is None else timeout
        interval = self.readiness.interval
        deadline = self._clock() + timeout
        attempts = 0

        while True:
            attempts += 1
            remaining = deadline - self._clock()
            try:
                result = await run_command(
                    guest_command(vmid, ["true"]),
                    check=False,
                    timeout=max(remaining, CHECK_TIMEOUT_FLOOR),
                )
            except subprocess.TimeoutExpired:
                logger.debug(f"Container {vmid} readiness check timed out (attempt {attempts})")
            else:
                if result.ok:
                    logger.debug(f"Container {vmid} is ready after {attempts} attempt(s)")
                    return attempts

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise ContainerNotReadyError(vmid, timeout, attempts)

            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * self.readiness.backoff, self.readiness.max_interval)

    async def execute(
        self,
        vmid: int,
        command: List[str],
        check: bool = True,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Execute command in container."""
        return await run_command(guest_command(vmid, command), check=check, timeout=timeout)

    async def push(self, vmid: int, source: Path, dest: str, perms: Optional[str] = None) -> None:
        """Copy a host file into the container."""
        cmd = ["pct", "push", str(vmid), str(source), dest]
        if perms:
            cmd.extend(["--perms", perms])
        await run_command(cmd)
        logger.debug(f"Pushed {source} to {vmid}:{dest}")

    async def write_file(self, vmid: int, dest: str, content: str, perms: str = "0644") -> None:
        """Write ``content`` to ``dest`` inside the container."""
        def _write_temp() -> Path:
            with tempfile.NamedTemporaryFile("w", suffix=".pvegate", delete=False) as handle:
                handle.write(content)
                return Path(handle.name)

        temp_path = await asyncio.to_thread(_write_temp)
        try:
            await self.push(vmid, temp_path, dest, perms=perms)
        finally:
            await asyncio.to_thread(temp_path.unlink, True)
