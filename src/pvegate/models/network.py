"""Bridge and firewall models."""

import ipaddress
from pathlib import Path
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


# Rules are kept in chains owned by pvegate, hooked from the builtin chain
OWNED_CHAIN_PREFIX = "PVEGATE-"


class BridgeConfig(BaseModel):
    """Internal Linux bridge for the VPN network."""
    name: str = Field(default="vmbr1", pattern=r"^[A-Za-z0-9_.-]{1,15}$")
    address: str = Field(default="10.10.10.1/24", description="Host address on the bridge (CIDR)")
    config_dir: str = Field(default="/etc/network/interfaces.d")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        """Require an IPv4 interface address with a prefix length."""
        if "/" not in v:
            raise ValueError(f"Bridge address needs a prefix length: {v}")
        ipaddress.IPv4Interface(v)
        return v

    @property
    def interface(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface(self.address)

    @property
    def ip(self) -> str:
        return str(self.interface.ip)

    @property
    def network(self) -> ipaddress.IPv4Network:
        return self.interface.network

    @property
    def config_file(self) -> Path:
        return Path(self.config_dir) / self.name

    model_config = ConfigDict(extra="ignore")


class FirewallRule(BaseModel):
    """A single iptables rule.

    ``chain`` names the builtin chain the rule belongs to; the rule itself is
    placed in the matching pvegate-owned chain (see ``owned_chain``).
    """
    table: Literal["filter", "nat"] = Field(default="filter")
    chain: Literal["INPUT", "FORWARD", "OUTPUT", "PREROUTING", "POSTROUTING"]
    match: List[str] = Field(default_factory=list, description="Match arguments, e.g. ['-s', '10.0.0.2']")
    target: str = Field(..., pattern=r"^[A-Z][A-Z_-]*$")

    @property
    def owned_chain(self) -> str:
        return f"{OWNED_CHAIN_PREFIX}{self.chain}"

    def rule_args(self) -> List[str]:
        """Arguments following ``-A <chain>`` / ``-C <chain>``."""
        return [*self.match, "-j", self.target]

    def __str__(self) -> str:
        return " ".join([f"-t {self.table}", self.owned_chain, *self.rule_args()])

    model_config = ConfigDict(extra="forbid", frozen=True)


class FirewallSpec(BaseModel):
    """Desired rule set for the host (``vmid`` unset) or one container."""
    name: str = Field(..., description="Rule set name used in log messages")
    vmid: Optional[int] = Field(default=None, ge=100)
    rules: List[FirewallRule] = Field(default_factory=list)
    persist: bool = Field(default=True, description="Save rules with netfilter-persistent")
    prune: bool = Field(default=True, description="Remove rules no longer desired")

    def chains(self) -> List[tuple]:
        """(table, builtin chain) pairs in first-use order."""
        seen = []
        for rule in self.rules:
            key = (rule.table, rule.chain)
            if key not in seen:
                seen.append(key)
        return seen

    def rules_for(self, table: str, chain: str) -> List[FirewallRule]:
        return [r for r in self.rules if r.table == table and r.chain == chain]

    model_config = ConfigDict(extra="ignore")
