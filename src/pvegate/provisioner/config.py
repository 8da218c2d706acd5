"""Configuration loading for the provisioner."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ruamel.yaml import YAML
from pydantic import ValidationError

from pvegate.models.config import DownstreamConfig, ProvisionerConfig


logger = logging.getLogger(__name__)


class ConfigManager:
    """Loads ``config.yaml`` and the declared downstream containers.

    Layout::

        <config_dir>/config.yaml
        <config_dir>/downstream/*.yaml   # containers: {hostname: {vmid, ip, ...}}
    """

    def __init__(self, config_dir: Path):
        """Initialize configuration manager."""
        self.config_dir = Path(config_dir)
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.config: Optional[ProvisionerConfig] = None

    async def load(self) -> ProvisionerConfig:
        """Load and validate all configuration files."""
        logger.info(f"Loading configuration from {self.config_dir}")

        config_file = self.config_dir / "config.yaml"
        if not await asyncio.to_thread(config_file.exists):
            raise FileNotFoundError(f"Main config not found: {config_file}")

        data = dict(await self._read_yaml(config_file))
        declared = list(data.get("downstream") or [])
        declared.extend(await self._load_downstream())
        data["downstream"] = declared

        try:
            self.config = ProvisionerConfig(**data)
        except ValidationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise

        logger.info(
            f"Configuration loaded: gateway {self.config.gateway.vmid}, "
            f"{len(self.config.downstream)} downstream container(s)"
        )
        return self.config

    async def _load_downstream(self) -> List[Dict[str, Any]]:
        """Load downstream container declarations."""
        downstream_dir = self.config_dir / "downstream"
        if not await asyncio.to_thread(downstream_dir.exists):
            logger.debug(f"Downstream directory not found: {downstream_dir}")
            return []

        declared = []
        for yaml_file in sorted(downstream_dir.glob("*.yaml")):
            data = await self._read_yaml(yaml_file)
            for hostname, spec in (data.get("containers") or {}).items():
                entry = dict(spec or {})
                entry.setdefault("hostname", hostname)
                declared.append(entry)
            logger.debug(f"Loaded downstream containers from {yaml_file}")
        return declared

    async def _read_yaml(self, file_path: Path) -> Dict[str, Any]:
        """Read and parse a YAML mapping."""
        content = await asyncio.to_thread(file_path.read_text)
        data = self.yaml.load(content)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{file_path} must contain a mapping")
        return data

    def get_downstream(self, vmid: int) -> Optional[DownstreamConfig]:
        """Get a declared downstream container by ID."""
        if not self.config:
            return None
        for downstream in self.config.downstream:
            if downstream.vmid == vmid:
                return downstream
        return None
