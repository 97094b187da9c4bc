"""
volstore CLI

Object operations against the volumes configured on this node:
- devices: List configured devices and their mount state
- put: Store a file as an object (atomic publish)
- get: Stream an object's content to a file or stdout
- head: Show an object's headline metadata
- metadata: Show (or update X-Object-Meta-* items of) an object's metadata
- delete: Remove an object
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import typer

from .cli_context import CLIContext
from .operations import Operations, OpsConfig, run_and_exit
from .operations.printers import (
    print_delete_summary, print_devices, print_metadata, print_object_summary, print_put_summary
)

app = typer.Typer(name="volstore", help="Object storage over mounted POSIX volumes")


def _parse_meta(items: Optional[List[str]]) -> Dict[str, str]:
    """
    Parse repeated KEY=VALUE options.

    Raises:
        ValueError: If an item has no '=' or an empty key
    """
    result = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid metadata item {item!r}. Expected KEY=VALUE")
        result[key.strip()] = value
    return result


def _operations(ctx: typer.Context) -> Operations:
    context: CLIContext = ctx.obj
    return Operations(config=OpsConfig(), registry=context.registry, settings=context.settings)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Device file (overrides VOLSTORE_DEVICES_CONFIG)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Object storage over mounted POSIX volumes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = run_and_exit(lambda: CLIContext.from_env(devices_config=config))


@app.command()
def devices(ctx: typer.Context) -> None:
    """List devices served by this node."""

    def _devices() -> None:
        ops = _operations(ctx)
        print_devices(ops.devices())

    run_and_exit(_devices)


@app.command()
def put(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device identifier"),
    path: str = typer.Argument(..., help="Object path: account/container/object"),
    source: Optional[Path] = typer.Argument(None, help="File to upload (default: stdin)"),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="Content-Type to record"),
    etag: Optional[str] = typer.Option(None, "--etag", help="Expected MD5 of the content"),
    meta: Optional[List[str]] = typer.Option(None, "--meta", help="X-Object-Meta item as KEY=VALUE (repeatable)"),
) -> None:
    """Store a file as an object."""

    def _put() -> None:
        ops = _operations(ctx)
        user_metadata = _parse_meta(meta)

        if source is None or str(source) == "-":
            stream = typer.get_binary_stream("stdin")
            response = ops.put(device, path, stream, content_type=content_type,
                               etag=etag, user_metadata=user_metadata)
        else:
            with open(source, "rb") as f:
                response = ops.put(device, path, f, content_length=os.fstat(f.fileno()).st_size,
                                   content_type=content_type, etag=etag, user_metadata=user_metadata)

        print_put_summary(path, response.metadata)

    run_and_exit(_put)


@app.command()
def get(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device identifier"),
    path: str = typer.Argument(..., help="Object path: account/container/object"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write content here (default: stdout)"),
) -> None:
    """Stream an object's content."""

    def _get() -> None:
        ops = _operations(ctx)
        response = ops.get(device, path)
        with response.body as body:
            if output is None:
                out = typer.get_binary_stream("stdout")
                for chunk in body:
                    out.write(chunk)
                out.flush()
            else:
                with open(output, "wb") as f:
                    for chunk in body:
                        f.write(chunk)

    run_and_exit(_get)


@app.command()
def head(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device identifier"),
    path: str = typer.Argument(..., help="Object path: account/container/object"),
) -> None:
    """Show an object's headline metadata."""

    def _head() -> None:
        ops = _operations(ctx)
        response = ops.head(device, path)
        print_object_summary(path, response.metadata)

    run_and_exit(_head)


@app.command()
def metadata(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device identifier"),
    path: str = typer.Argument(..., help="Object path: account/container/object"),
    set_meta: Optional[List[str]] = typer.Option(None, "--set", help="Replace X-Object-Meta items with KEY=VALUE (repeatable)"),
) -> None:
    """Show an object's full metadata record, or replace its X-Object-Meta items."""

    def _metadata() -> None:
        ops = _operations(ctx)
        if set_meta:
            response = ops.post(device, path, _parse_meta(set_meta))
        else:
            response = ops.head(device, path)
        print_metadata(response.metadata)

    run_and_exit(_metadata)


@app.command()
def delete(
    ctx: typer.Context,
    device: str = typer.Argument(..., help="Device identifier"),
    path: str = typer.Argument(..., help="Object path: account/container/object"),
) -> None:
    """Remove an object."""

    def _delete() -> None:
        ops = _operations(ctx)
        ops.delete(device, path)
        print_delete_summary(path)

    run_and_exit(_delete)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
