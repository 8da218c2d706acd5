"""Container template models."""

from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field, field_validator


TEMPLATE_SUFFIXES = (".tar.zst", ".tar.gz", ".tar.xz")


class TemplateRef(BaseModel):
    """Container template cached by ``pveam``."""
    name: str = Field(default="debian-12-standard_12.7-1_amd64.tar.zst", description="Template archive name")
    storage: str = Field(default="local", description="Storage that holds vztmpl content")
    cache_dir: str = Field(default="/var/lib/vz/template/cache")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        """Template must be a plain archive file name."""
        if "/" in v or not v.endswith(TEMPLATE_SUFFIXES):
            raise ValueError(f"Invalid template archive name: {v}")
        return v

    @property
    def volume_id(self) -> str:
        return f"{self.storage}:vztmpl/{self.name}"

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir) / self.name

    model_config = ConfigDict(extra="ignore")
