"""WireGuard tunnel service models."""

from pydantic import BaseModel, ConfigDict, Field


# Names that end up in ip link, iptables and systemd unit arguments
INTERFACE_NAME_PATTERN = r"^[A-Za-z0-9_=+.-]{1,15}$"
SERVICE_NAME_PATTERN = r"^[A-Za-z0-9_.@-]+$"


class TunnelSpec(BaseModel):
    """Supervised WireGuard client inside the gateway container.

    Every ``*.conf`` in ``container_config_dir`` is a candidate; one is picked
    at random each time the service starts.
    """
    vmid: int = Field(..., ge=100)
    host_config_dir: str = Field(default="/root/vpn")
    container_config_dir: str = Field(default="/etc/wireguard/config", pattern=r"^/[A-Za-z0-9_./-]+$")
    interface: str = Field(default="wg0", pattern=INTERFACE_NAME_PATTERN)
    service_name: str = Field(default="wg-client", pattern=SERVICE_NAME_PATTERN)
    restart_sec: int = Field(default=5, ge=1)

    @property
    def unit_name(self) -> str:
        return f"{self.service_name}.service"

    @property
    def unit_path(self) -> str:
        return f"/etc/systemd/system/{self.unit_name}"

    @property
    def active_config(self) -> str:
        return f"/etc/wireguard/{self.interface}.conf"

    model_config = ConfigDict(extra="ignore")
