"""
Settings and configuration for volstore.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables at registry/CLI construction time.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional

__all__ = ["Settings", "create_settings_from_env", "DEFAULT_CONTENT_TYPE", "METADATA_CHUNK_SIZE"]

# Per-slot extended attribute ceiling observed on GlusterFS/XFS deployments
METADATA_CHUNK_SIZE = 65536

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_MIME_RE = re.compile(r"^[A-Za-z0-9!#$&^_.+-]+/[A-Za-z0-9!#$&^_.+-]+(?:\s*;.*)?$")


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for volstore volumes and object handles.

    Device Settings:
        devices_config: Path to the YAML file listing local devices
        mount_check: Require each device root to be a mount point
        mount_retry: Extra attempts when waiting for a device mount (0=no retry)

    Object Settings:
        metadata_chunk_size: Per-slot extended attribute ceiling in bytes
        io_chunk_size: Read/write block size for body copies and hashing
        disable_fallocate: Never preallocate staging files
        default_content_type: Content-Type stamped on generated metadata
    """
    devices_config: Optional[str] = None
    mount_check: bool = True
    mount_retry: int = 0

    metadata_chunk_size: int = METADATA_CHUNK_SIZE
    io_chunk_size: int = 65536
    disable_fallocate: bool = False
    default_content_type: str = DEFAULT_CONTENT_TYPE

    def __post_init__(self):
        """Validate settings on construction."""
        if self.metadata_chunk_size <= 0:
            raise ValueError(f"metadata_chunk_size must be positive, got {self.metadata_chunk_size}")

        if self.io_chunk_size <= 0:
            raise ValueError(f"io_chunk_size must be positive, got {self.io_chunk_size}")

        if self.mount_retry < 0:
            raise ValueError(f"mount_retry must be non-negative, got {self.mount_retry}")

        if not self.default_content_type or not _MIME_RE.match(self.default_content_type):
            raise ValueError(f"Invalid default_content_type: {self.default_content_type!r}")


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - VOLSTORE_DEVICES_CONFIG (optional)
        - VOLSTORE_MOUNT_CHECK (default: true)
        - VOLSTORE_MOUNT_RETRY (default: 0)
        - VOLSTORE_METADATA_CHUNK_SIZE (default: 65536)
        - VOLSTORE_IO_CHUNK_SIZE (default: 65536)
        - VOLSTORE_DISABLE_FALLOCATE (default: false)
        - VOLSTORE_DEFAULT_CONTENT_TYPE (default: application/octet-stream)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    return Settings(
        devices_config=os.getenv("VOLSTORE_DEVICES_CONFIG") or None,
        mount_check=str_to_bool(os.getenv("VOLSTORE_MOUNT_CHECK", "true")),
        mount_retry=get_int("VOLSTORE_MOUNT_RETRY", 0),
        metadata_chunk_size=get_int("VOLSTORE_METADATA_CHUNK_SIZE", METADATA_CHUNK_SIZE),
        io_chunk_size=get_int("VOLSTORE_IO_CHUNK_SIZE", 65536),
        disable_fallocate=str_to_bool(os.getenv("VOLSTORE_DISABLE_FALLOCATE", "false")),
        default_content_type=os.getenv("VOLSTORE_DEFAULT_CONTENT_TYPE", DEFAULT_CONTENT_TYPE),
    )
