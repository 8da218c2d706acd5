"""Container specification models."""

import ipaddress
import re
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


HOSTNAME_RE = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
VOLUME_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+:vztmpl/[^/\s]+$")


def check_ipv4(value: Optional[str]) -> Optional[str]:
    """Validate an optional IPv4 address string."""
    if value is None:
        return value
    return str(ipaddress.IPv4Address(value.strip()))


def check_hostname(value: str) -> str:
    """Validate a single-label hostname."""
    if not HOSTNAME_RE.match(value):
        raise ValueError(f"Invalid hostname: {value}")
    return value


class ContainerSpec(BaseModel):
    """LXC container managed through ``pct``."""
    vmid: int = Field(..., ge=100, le=999999999, description="Proxmox container ID")
    hostname: str = Field(..., description="Container hostname")
    template: str = Field(..., description="Template volume id, e.g. local:vztmpl/debian.tar.zst")
    bridge: str = Field(default="vmbr1")
    ip: str = Field(..., description="Static IPv4 address on the bridge")
    prefix_len: int = Field(default=24, ge=1, le=32)
    gateway: Optional[str] = Field(default=None, description="Default route")
    nameserver: Optional[str] = None
    storage: str = Field(default="local-lvm")
    memory: int = Field(default=512, ge=16, description="Memory in MiB")
    cores: int = Field(default=1, ge=1)
    unprivileged: bool = Field(default=True)

    @field_validator("ip", "gateway", "nameserver")
    @classmethod
    def validate_addresses(cls, v):
        """Validate IPv4 addresses."""
        return check_ipv4(v)

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v):
        """Validate hostname label."""
        return check_hostname(v)

    @field_validator("template")
    @classmethod
    def validate_template(cls, v):
        """Template must be a vztmpl volume id."""
        if not VOLUME_ID_RE.match(v):
            raise ValueError(f"Invalid template volume id: {v}")
        return v

    @property
    def net0(self) -> str:
        """Value for ``pct create --net0``."""
        options = ["name=eth0", f"bridge={self.bridge}", f"ip={self.ip}/{self.prefix_len}"]
        if self.gateway:
            options.append(f"gw={self.gateway}")
        return ",".join(options)

    def create_args(self) -> List[str]:
        """Full ``pct create`` command line."""
        args = [
            "pct", "create", str(self.vmid), self.template,
            "--hostname", self.hostname,
            "--net0", self.net0,
            "--storage", self.storage,
            "--memory", str(self.memory),
            "--cores", str(self.cores),
            "--unprivileged", "1" if self.unprivileged else "0",
        ]
        if self.nameserver:
            args.extend(["--nameserver", self.nameserver])
        return args

    model_config = ConfigDict(extra="ignore")


class GuestSpec(BaseModel):
    """OS-level configuration applied inside a running container."""
    vmid: int = Field(..., ge=100)
    ip_forward: bool = Field(default=True)
    packages: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")
