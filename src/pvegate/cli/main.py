"""Main CLI implementation using Typer."""

import asyncio
import os
import subprocess
from pathlib import Path
from typing import Optional, Callable, Any

import typer
from rich.console import Console

from pvegate.cli.commands import (
    add_downstream,
    provision_gateway,
    remove_downstream,
    show_status,
    validate_config,
)
from pvegate.provisioner.config import ConfigManager
from pvegate.providers.container import ContainerNotReadyError
from pvegate.utils.logging import setup_logging


CONFIG_DIR_ENV = "PVEGATE_CONFIG_DIR"
DEFAULT_CONFIG_DIR = Path("configs")

# Create Typer app
app = typer.Typer(
    name="pvegate",
    help="pvegate - WireGuard VPN gateway provisioning for Proxmox VE",
    add_completion=False,
)

# Console for rich output
console = Console()


def resolve_config_dir(config_dir: Optional[Path]) -> Path:
    """Option first, then the environment, then ./configs."""
    if config_dir:
        return config_dir
    env_dir = os.environ.get(CONFIG_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    return DEFAULT_CONFIG_DIR


def _run_cli_command(handler: Callable[..., Any], config_dir: Optional[Path], **kwargs: Any):
    """Helper to load configuration and run a CLI command with error handling."""
    try:
        config = asyncio.run(ConfigManager(resolve_config_dir(config_dir)).load())
        setup_logging(config.log_level)
        handler(config, **kwargs)
    except subprocess.CalledProcessError as e:
        console.print(f"[red]Error:[/red] {e}")
        if e.stderr:
            console.print(f"[dim]{e.stderr.strip()}[/dim]")
        raise typer.Exit(1) from e
    except (ValueError, OSError, RuntimeError, subprocess.SubprocessError, ContainerNotReadyError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


ConfigDirOption = typer.Option(
    None, "--config-dir", "-c", help=f"Configuration directory (default: ${CONFIG_DIR_ENV} or ./configs)"
)


@app.command("provision")
def provision_command(
    prompt: bool = typer.Option(
        True, "--prompt/--no-prompt", help="Offer to create a downstream container afterwards"
    ),
    config_dir: Optional[Path] = ConfigDirOption,
):
    """Build the bridge, host NAT and VPN gateway container."""
    _run_cli_command(provision_gateway, config_dir=config_dir, prompt=prompt)


@app.command("status")
def status_command(
    config_dir: Optional[Path] = ConfigDirOption,
):
    """Show bridge, gateway and downstream container status."""
    _run_cli_command(show_status, config_dir=config_dir)


# Downstream subcommands
downstream_app = typer.Typer(help="Downstream container commands")
app.add_typer(downstream_app, name="downstream")


@downstream_app.command("add")
def downstream_add_command(
    vmid: int = typer.Argument(..., help="Container ID"),
    ip: str = typer.Argument(..., help="Container IP on the bridge network"),
    hostname: Optional[str] = typer.Option(
        None, "--hostname", help="Container hostname (default: vpn-client-<vmid>)"
    ),
    config_dir: Optional[Path] = ConfigDirOption,
):
    """Create a container routed through the VPN gateway."""
    _run_cli_command(add_downstream, config_dir=config_dir, vmid=vmid, ip=ip, hostname=hostname)


@downstream_app.command("remove")
def downstream_remove_command(
    vmid: int = typer.Argument(..., help="Container ID"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Force removal without confirmation"
    ),
    config_dir: Optional[Path] = ConfigDirOption,
):
    """Stop and destroy a downstream container."""
    if not force:
        confirm = typer.confirm(f"Remove container {vmid}?")
        if not confirm:
            raise typer.Abort()
    _run_cli_command(remove_downstream, config_dir=config_dir, vmid=vmid)


# Config subcommands
config_app = typer.Typer(help="Configuration commands")
app.add_typer(config_app, name="config")


@config_app.command("validate")
def config_validate_command(
    config_dir: Optional[Path] = ConfigDirOption,
):
    """Validate configuration files."""
    _run_cli_command(validate_config, config_dir=config_dir)


def main():
    """Main entry point for CLI."""
    app()
