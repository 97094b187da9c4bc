"""
Human-readable output formatting.

Centralizes all CLI output formatting so commands stay thin and focused.
"""
from __future__ import annotations

import os
from typing import List, Mapping, Tuple

import typer
from rich.console import Console
from rich.table import Table

from ..object_types import X_CONTENT_LENGTH, X_CONTENT_TYPE, X_ETAG, X_OBJECT_META_PREFIX, X_TIMESTAMP
from ..storage.base import Volume

_console = Console()


def _format_bytes(size: int) -> str:
    """Format byte count in human-readable form."""
    value = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if value < 1024.0:
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024.0
    return f"{value:.1f} PB"


def print_devices(devices: List[Tuple[str, Volume]]) -> None:
    """
    Print the devices served by this node.

    Args:
        devices: (name, volume) pairs
    """
    if not devices:
        _console.print("[dim]No devices configured[/]")
        return

    table = Table(title="Devices")
    table.add_column("Device", style="cyan")
    table.add_column("Root", style="yellow")
    table.add_column("Mounted")

    for name, volume in devices:
        root = getattr(volume, "root", None)
        if root is None:
            table.add_row(name, "-", "-")
        else:
            table.add_row(name, root, "yes" if os.path.ismount(root) else "no")

    _console.print(table)


def print_object_summary(path: str, metadata: Mapping[str, str]) -> None:
    """
    Print the headline fields of an object's metadata.

    Args:
        path: Logical object path
        metadata: Object metadata record
    """
    size = metadata.get(X_CONTENT_LENGTH)
    _console.print(f"[bold]Object:[/] {path}")
    if size is not None and size.isdigit():
        _console.print(f"[bold]Size:[/] {_format_bytes(int(size))} ({size} bytes)")
    _console.print(f"[bold]ETag:[/] {metadata.get(X_ETAG, '-')}")
    _console.print(f"[bold]Content-Type:[/] {metadata.get(X_CONTENT_TYPE, '-')}")
    _console.print(f"[bold]Timestamp:[/] [dim]{metadata.get(X_TIMESTAMP, '-')}[/]")

    user = sorted((k, v) for k, v in metadata.items() if k.startswith(X_OBJECT_META_PREFIX))
    for key, value in user:
        _console.print(f"  {key[len(X_OBJECT_META_PREFIX):]}: {value}")


def print_metadata(metadata: Mapping[str, str]) -> None:
    """
    Print every key of a metadata record.

    Args:
        metadata: Object metadata record
    """
    table = Table(title="Metadata")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="yellow", overflow="fold")

    for key, value in sorted(metadata.items()):
        table.add_row(key, value)

    _console.print(table)


def print_put_summary(path: str, metadata: Mapping[str, str]) -> None:
    """Print the result of a stored object."""
    typer.echo(f"Stored {path}")
    typer.echo(f"Size: {metadata.get(X_CONTENT_LENGTH, '0')} bytes")
    typer.echo(f"ETag: {metadata.get(X_ETAG, '-')}")


def print_delete_summary(path: str) -> None:
    """Print the result of a removed object."""
    typer.echo(f"Deleted {path}")


def print_error(exc: BaseException) -> None:
    """
    Print a failed command's error to stderr.

    Args:
        exc: Exception that ended the command
    """
    typer.echo(f"Error: {exc}", err=True)
