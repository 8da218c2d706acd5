"""Firewall provider reconciling iptables rules on the host or in a container.

Rules are never appended to builtin chains directly. Each builtin chain used
by a rule set gets a companion ``PVEGATE-<CHAIN>`` chain, hooked once from
the builtin chain. Reconciling a rule set then means:

1. create the owned chain and its jump if missing,
2. append each desired rule that ``iptables -C`` does not find,
3. with ``prune`` set, rebuild the owned chain if it still holds more rules
   than desired (something stale is left over).

Running the same rule set twice therefore never duplicates a rule.
"""

import logging
from typing import List, Optional, TYPE_CHECKING

from pvegate.models.network import FirewallRule, FirewallSpec, OWNED_CHAIN_PREFIX
from pvegate.providers.base import BaseProvider, ProviderStatus
from pvegate.utils.command import CommandResult, run_command

if TYPE_CHECKING:
    from pvegate.providers.container import ContainerProvider
    from pvegate.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


class FirewallProvider(BaseProvider):
    """Provider for iptables rule sets."""

    def __init__(self):
        """Initialize firewall provider."""
        self._container_provider: Optional["ContainerProvider"] = None

    async def initialize(self, config, registry: "ProviderRegistry") -> None:
        """Inject the container provider for in-container rule sets."""
        self._container_provider = registry.get_provider("container")

    async def _run(self, spec: FirewallSpec, cmd: List[str], check: bool = True) -> CommandResult:
        if spec.vmid is None:
            return await run_command(cmd, check=check)
        return await self._container_provider.execute(spec.vmid, cmd, check=check)

    async def _iptables(self, spec: FirewallSpec, table: str, *args: str, check: bool = True) -> CommandResult:
        return await self._run(spec, ["iptables", "-t", table, *args], check=check)

    async def status(self, spec: FirewallSpec) -> ProviderStatus:
        """Present when every desired rule is in place."""
        try:
            for rule in spec.rules:
                if not await self.rule_exists(spec, rule):
                    return ProviderStatus.ABSENT
        except Exception as e:
            logger.error(f"Error checking firewall {spec.name}: {e}")
            return ProviderStatus.ERROR
        return ProviderStatus.PRESENT

    async def present(self, spec: FirewallSpec) -> int:
        """Reconcile the rule set. Returns the number of rules written."""
        written = 0
        for table, chain in spec.chains():
            owned = f"{OWNED_CHAIN_PREFIX}{chain}"
            desired = spec.rules_for(table, chain)
            await self._ensure_chain(spec, table, chain)

            appended = 0
            for rule in desired:
                if await self.rule_exists(spec, rule):
                    logger.debug(f"[{spec.name}] rule present: {rule}")
                    continue
                await self._append(spec, rule)
                appended += 1

            if spec.prune:
                current = await self.list_rules(spec, table, owned)
                if len(current) > len(desired):
                    logger.info(
                        f"[{spec.name}] pruning {len(current) - len(desired)} stale rule(s) from {table}/{owned}"
                    )
                    await self._iptables(spec, table, "-F", owned)
                    for rule in desired:
                        await self._append(spec, rule)
                    appended = len(desired)

            written += appended

        if written:
            logger.info(f"[{spec.name}] wrote {written} firewall rule(s)")
        else:
            logger.debug(f"[{spec.name}] firewall already up to date")

        if spec.persist:
            await self.persist(spec)
        return written

    async def absent(self, spec: FirewallSpec) -> None:
        """Unhook and delete every owned chain used by the rule set."""
        for table, chain in spec.chains():
            owned = f"{OWNED_CHAIN_PREFIX}{chain}"
            while (await self._iptables(spec, table, "-D", chain, "-j", owned, check=False)).ok:
                pass
            await self._iptables(spec, table, "-F", owned, check=False)
            await self._iptables(spec, table, "-X", owned, check=False)
            logger.info(f"[{spec.name}] removed chain {table}/{owned}")

        if spec.persist:
            await self.persist(spec)

    async def validate_spec(self, spec: FirewallSpec) -> bool:
        """Reject rules whose target would jump back into an owned chain."""
        for rule in spec.rules:
            if rule.target.startswith(OWNED_CHAIN_PREFIX):
                logger.error(f"[{spec.name}] rule targets an owned chain: {rule}")
                return False
        return True

    async def rule_exists(self, spec: FirewallSpec, rule: FirewallRule) -> bool:
        """Ask iptables whether ``rule`` is in its owned chain."""
        result = await self._iptables(
            spec, rule.table, "-C", rule.owned_chain, *rule.rule_args(), check=False
        )
        return result.ok

    async def list_rules(self, spec: FirewallSpec, table: str, chain: str) -> List[str]:
        """Return the ``-A`` lines of ``chain`` as printed by ``iptables -S``."""
        result = await self._iptables(spec, table, "-S", chain, check=False)
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line.startswith(f"-A {chain} ")]

    async def persist(self, spec: FirewallSpec) -> None:
        """Save the live rule set so it survives a reboot."""
        await self._run(spec, ["netfilter-persistent", "save"])
        logger.debug(f"[{spec.name}] saved firewall rules")

    async def _append(self, spec: FirewallSpec, rule: FirewallRule) -> None:
        await self._iptables(spec, rule.table, "-A", rule.owned_chain, *rule.rule_args())
        logger.info(f"[{spec.name}] added rule: {rule}")

    async def _ensure_chain(self, spec: FirewallSpec, table: str, chain: str) -> None:
        """Create the owned chain and hook it from ``chain`` exactly once."""
        owned = f"{OWNED_CHAIN_PREFIX}{chain}"
        if not (await self._iptables(spec, table, "-S", owned, check=False)).ok:
            await self._iptables(spec, table, "-N", owned)
            logger.debug(f"[{spec.name}] created chain {table}/{owned}")

        if not (await self._iptables(spec, table, "-C", chain, "-j", owned, check=False)).ok:
            await self._iptables(spec, table, "-I", chain, "1", "-j", owned)
            logger.debug(f"[{spec.name}] hooked {table}/{owned} from {chain}")
