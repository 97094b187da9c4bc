"""
Error mapping and CLI utilities.

Provides centralized exception-to-status and exception-to-exit-code mapping
plus the CLI command wrapper, so every Typer command and every request
outcome is reported the same way.
"""
from __future__ import annotations

import typer
from typing import Callable, Dict, TypeVar

T = TypeVar('T')

# Request outcome per exception class (matched along the MRO)
STATUS_CODES = {
    "ValueError": 400,
    "LifecycleStateError": 500,
    "ObjectNotFound": 404,
    "EtagMismatch": 422,
    "IncompleteBody": 499,
    "SpaceExhausted": 507,
}

# CLI exit code per exception class (matched along the MRO)
EXIT_CODES = {
    "ObjectNotFound": 1,
    "ValidationError": 2,
    "ValueError": 2,
    "InternalError": 3,
    "SpaceExhausted": 7,
    "DeviceUnavailable": 8,
}


def _lookup(exc: BaseException, table: Dict[str, int], default: int) -> int:
    for cls in type(exc).__mro__:
        if cls.__name__ in table:
            return table[cls.__name__]
    return default


def status_for(exc: BaseException) -> int:
    """
    Map exception to an HTTP-like status code.

    - 400: Malformed request, e.g. an unsafe object path (ValueError)
    - 404: Object not found (ObjectNotFound, MetadataNotFound)
    - 422: Body MD5 differs from the client ETag (EtagMismatch)
    - 499: Body shorter or longer than declared (IncompleteBody)
    - 507: Insufficient storage (SpaceExhausted)
    - 500: Everything else, including DeviceUnavailable and
      LifecycleStateError

    Args:
        exc: Exception to map

    Returns:
        Status code
    """
    return _lookup(exc, STATUS_CODES, 500)


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns exit codes:
    - 0: Success
    - 1: Object not found (ObjectNotFound)
    - 2: Invalid input (ValueError, ValidationError)
    - 3: Storage failure (InternalError) or unknown error
    - 7: Insufficient storage (SpaceExhausted)
    - 8: Device not configured or not mounted (DeviceUnavailable)

    Args:
        exc: Exception to map

    Returns:
        Exit code (3 as fallback for unknown exceptions)
    """
    return _lookup(exc, EXIT_CODES, 3)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit. This centralizes error handling so
    CLI commands don't need individual try/except blocks.

    Args:
        func: Function to execute

    Returns:
        Function result if successful

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except typer.Exit:
        raise
    except Exception as e:
        from .printers import print_error
        print_error(e)
        raise typer.Exit(code=exit_code_for(e)) from e
