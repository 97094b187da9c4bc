"""
CLI Context for managing application dependencies.

Provides a clean way to manage CLI-level dependencies like settings and the
volume registry, avoiding global state and enabling proper dependency
injection.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Optional

from .settings import Settings, create_settings_from_env
from .storage.registry import VolumeRegistry, build_registry


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Manages application-level dependencies (settings, registry) that are
    initialized once and shared across a CLI command execution.
    """
    settings: Settings
    _registry: Optional[VolumeRegistry] = None

    @classmethod
    def from_env(cls, devices_config: Optional[str] = None) -> CLIContext:
        """
        Create CLI context from environment variables.

        Args:
            devices_config: Device file overriding VOLSTORE_DEVICES_CONFIG

        Returns:
            CLIContext with settings loaded from environment
        """
        settings = create_settings_from_env()
        if devices_config:
            settings = dataclasses.replace(settings, devices_config=devices_config)
        return cls(settings=settings)

    @property
    def registry(self) -> VolumeRegistry:
        """
        Get or create the volume registry (lazy initialization).

        The registry is built on first access, which is when device mounts
        are checked, and reused for the rest of the command.

        Returns:
            VolumeRegistry instance
        """
        if self._registry is None:
            self._registry = build_registry(self.settings)
        return self._registry
