"""
Data models for device configuration.

These Pydantic models validate the device file that tells a node which
volumes it serves and where each one is mounted.
"""
from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import BaseModel, Field, field_validator

__all__ = ["DeviceSpec", "DeviceConfig"]


class DeviceSpec(BaseModel):
    """One device served by this node."""
    name: str = Field(..., description="Device identifier used in request paths")
    path: str = Field(..., description="Mount point of the volume")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        """Device names are single path segments."""
        if not v or "/" in v or v in (".", ".."):
            raise ValueError(f"Invalid device name: {v!r}")
        return v


class DeviceConfig(BaseModel):
    """
    Device file parsed from YAML.

    Example:
        devices:
          - name: vol0
            path: /mnt/gluster-object/vol0
    """
    devices: List[DeviceSpec] = Field(default_factory=list, description="Devices served by this node")

    @field_validator("devices")
    @classmethod
    def validate_unique(cls, v):
        """Reject duplicate device names."""
        seen = set()
        for device in v:
            if device.name in seen:
                raise ValueError(f"Duplicate device name '{device.name}'")
            seen.add(device.name)
        return v

    @classmethod
    def from_yaml_file(cls, path: Path) -> DeviceConfig:
        """Load DeviceConfig from a YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Device configuration not found: {path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls.model_validate(data)
