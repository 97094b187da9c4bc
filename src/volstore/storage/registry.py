"""
Volume registry.

Builds the device -> Volume map once at startup. The registry is immutable
after construction and is injected into the operations facade, so no request
ever looks volumes up from global state.
"""
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..models import DeviceConfig
from ..settings import Settings
from .base import Volume
from .errors import DeviceUnavailable
from .local import LocalVolume

__all__ = ["VolumeRegistry", "build_registry"]

logger = logging.getLogger(__name__)


class VolumeRegistry(Mapping[str, Volume]):
    """
    Immutable mapping of device identifier to Volume.

    A Volume is shared by every request addressed to its device.
    """

    def __init__(self, volumes: Mapping[str, Volume]) -> None:
        self._volumes = MappingProxyType(dict(volumes))

    def __getitem__(self, device: str) -> Volume:
        try:
            return self._volumes[device]
        except KeyError:
            raise DeviceUnavailable(f"Device {device!r} is not served by this node") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._volumes)

    def __len__(self) -> int:
        return len(self._volumes)

    def __repr__(self) -> str:
        return f"VolumeRegistry({sorted(self._volumes)})"


def _wait_for_mount(volume: LocalVolume, *, mount_check: bool, attempts: int) -> None:
    """Check a device mount, retrying with backoff while it is not ready."""

    @retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(DeviceUnavailable),
        reraise=True,
    )
    def _check() -> None:
        volume.check_mount(mount_check)

    _check()


def build_registry(settings: Settings, config: Optional[DeviceConfig] = None) -> VolumeRegistry:
    """
    Create a LocalVolume for every configured device.

    Args:
        settings: Settings with devices_config, mount_check and mount_retry
        config: Pre-parsed device configuration (loaded from
            settings.devices_config when omitted)

    Returns:
        Immutable registry keyed by device name

    Raises:
        ValueError: If no device configuration is available
        DeviceUnavailable: If a device is not mounted after all retries
    """
    if config is None:
        if not settings.devices_config:
            raise ValueError("No device configuration: set VOLSTORE_DEVICES_CONFIG")
        config = DeviceConfig.from_yaml_file(settings.devices_config)

    volumes: Dict[str, Volume] = {}
    for device in config.devices:
        volume = LocalVolume(device.path, name=device.name)
        _wait_for_mount(volume, mount_check=settings.mount_check, attempts=settings.mount_retry + 1)
        volumes[device.name] = volume
        logger.info(f"Volume {device.name} ready at {device.path}")

    return VolumeRegistry(volumes)
