"""Command implementations for CLI."""

import asyncio
import ipaddress
from typing import Any, Awaitable, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from pvegate.models.config import DownstreamConfig, ProvisionerConfig
from pvegate.provisioner.engine import Provisioner
from pvegate.providers import ProviderRegistry


console = Console()


def build_provisioner(config: ProvisionerConfig) -> Provisioner:
    """Create a provisioner with an initialized provider registry."""
    registry = ProviderRegistry()
    asyncio.run(registry.initialize(config))
    return Provisioner(config, registry)


def _run_async(description: str, coro: Awaitable[Any], success_msg: Optional[str] = None) -> Any:
    """Helper to run a coroutine with a progress spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(description, total=None)

        result = asyncio.run(coro)

        progress.update(task, completed=True)

    if success_msg:
        console.print(success_msg)

    return result


def provision_gateway(config: ProvisionerConfig, prompt: bool = True):
    """Provision the gateway, declared downstream containers and optionally one more."""
    provisioner = build_provisioner(config)

    _run_async(
        f"Provisioning VPN gateway {config.gateway.vmid}...",
        provisioner.provision_gateway(),
        success_msg=(
            f"[green]✓[/green] VPN Gateway ready at {config.gateway.ip} "
            f"on {config.bridge.name}"
        ),
    )

    for downstream in config.downstream:
        _provision_downstream(provisioner, downstream)

    if not prompt:
        return

    downstream = prompt_downstream(config)
    if downstream is None:
        console.print("Skipped downstream container creation.")
        return
    _provision_downstream(provisioner, downstream)


def prompt_downstream(config: ProvisionerConfig) -> Optional[DownstreamConfig]:
    """Ask whether to create a downstream container and collect its ID and IP.

    Blank answers abort with exit code 1 before anything is created.
    """
    if not typer.confirm("Create a container that routes through the VPN gateway?", default=False):
        return None

    default_vmid = config.gateway.vmid + 1
    default_ip = config.bridge.network.network_address + 10

    vmid = typer.prompt("Container ID", default=str(default_vmid)).strip()
    if not vmid:
        console.print("[red]Aborted:[/red] container ID missing.")
        raise typer.Exit(1)

    ip = typer.prompt("Container IP", default=str(default_ip)).strip()
    if not ip:
        console.print("[red]Aborted:[/red] IP missing.")
        raise typer.Exit(1)

    try:
        downstream = DownstreamConfig(vmid=int(vmid), ip=ip)
        config.check_downstream(downstream, seen_vmids=_declared_vmids(config), seen_ips=_declared_ips(config))
    except ValueError as e:
        console.print(f"[red]Aborted:[/red] {e}")
        raise typer.Exit(1) from e
    return downstream


def _declared_vmids(config: ProvisionerConfig) -> set:
    return {config.gateway.vmid, *(d.vmid for d in config.downstream)}


def _declared_ips(config: ProvisionerConfig) -> set:
    return {
        ipaddress.IPv4Address(config.gateway.ip),
        *(ipaddress.IPv4Address(d.ip) for d in config.downstream),
    }


def _provision_downstream(provisioner: Provisioner, downstream: DownstreamConfig):
    gateway_ip = provisioner.config.gateway.ip
    _run_async(
        f"Creating container {downstream.vmid}...",
        provisioner.provision_downstream(downstream),
        success_msg=(
            f"[green]✓[/green] Container {downstream.vmid} ({downstream.ip}) "
            f"routed via VPN gateway ({gateway_ip})"
        ),
    )


def add_downstream(config: ProvisionerConfig, vmid: int, ip: str, hostname: Optional[str] = None):
    """Create one downstream container against an existing gateway."""
    declared = next((d for d in config.downstream if d.vmid == vmid), None)
    if declared is None:
        downstream = DownstreamConfig(vmid=vmid, ip=ip, hostname=hostname)
        config.check_downstream(downstream, seen_vmids=_declared_vmids(config), seen_ips=_declared_ips(config))
    else:
        if ipaddress.IPv4Address(declared.ip) != ipaddress.IPv4Address(ip):
            raise ValueError(f"Container {vmid} is declared with IP {declared.ip}, not {ip}")
        downstream = declared.model_copy(update={"hostname": hostname}) if hostname else declared

    _provision_downstream(build_provisioner(config), downstream)


def remove_downstream(config: ProvisionerConfig, vmid: int):
    """Stop and destroy a downstream container."""
    provisioner = build_provisioner(config)
    removed = _run_async(f"Removing container {vmid}...", provisioner.remove_downstream(vmid))
    if removed:
        console.print(f"[green]✓[/green] Container {vmid} removed")
    else:
        console.print(f"[yellow]Container {vmid} does not exist[/yellow]")


def _mark(value: bool) -> str:
    return "[green]✓[/green]" if value else "[red]✗[/red]"


def show_status(config: ProvisionerConfig):
    """Show status of the bridge, gateway and downstream containers."""
    provisioner = build_provisioner(config)
    status = asyncio.run(provisioner.get_status())

    bridge = status["bridge"]
    template = status["template"]
    gateway = status["gateway"]

    table = Table(title="Host")
    table.add_column("Resource", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_row(
        "Bridge",
        f"{bridge['name']} ({bridge['address']})",
        f"configured {_mark(bridge['configured'])}  up {_mark(bridge['up'])}",
    )
    table.add_row("Template", template["name"], _mark(template["present"]))
    table.add_row("Host NAT", config.lan_interface, _mark(status["host_firewall"]))
    console.print(table)
    console.print()

    table = Table(title="Containers")
    table.add_column("VMID", style="cyan")
    table.add_column("Role", style="magenta")
    table.add_column("IP")
    table.add_column("State")
    table.add_column("Tunnel")
    table.add_column("NAT")

    state_color = "green" if gateway["state"] == "running" else "yellow"
    table.add_row(
        str(gateway["vmid"]),
        "gateway",
        gateway["ip"],
        f"[{state_color}]{gateway['state']}[/{state_color}]",
        gateway["tunnel"],
        _mark(gateway["nat"]),
    )
    for downstream in status["downstream"]:
        state_color = "green" if downstream["state"] == "running" else "yellow"
        table.add_row(
            str(downstream["vmid"]),
            downstream["hostname"],
            downstream["ip"],
            f"[{state_color}]{downstream['state']}[/{state_color}]",
            "",
            "",
        )
    console.print(table)


def validate_config(config: ProvisionerConfig):
    """Report a summary of a configuration that loaded successfully."""
    console.print("[green]✓[/green] Configuration is valid")
    console.print(f"  Bridge: {config.bridge.name} ({config.bridge.address})")
    console.print(f"  Gateway: {config.gateway.vmid} at {config.gateway.ip}")
    console.print(f"  Template: {config.template.volume_id}")
    console.print(f"  Downstream containers: {len(config.downstream)}")
