"""
Path safety utilities for volstore.

This module provides shared validation for account, container and object
names so that a logical path always maps to exactly one file inside the
volume and can never escape it.
"""
from __future__ import annotations

from pathlib import PurePosixPath

__all__ = ["safe_component", "safe_object_name"]


def safe_component(value: str, kind: str = "component") -> str:
    """
    Validate a single path segment (account or container name).

    Rules:
    - No empty strings, "." or ".."
    - No '/' (must be a single segment)
    - No NUL bytes

    Args:
        value: User-provided name
        kind: Label used in the error message

    Returns:
        The name unchanged

    Raises:
        ValueError: If the name violates safety rules

    Examples:
        >>> safe_component("AUTH_test", "account")
        'AUTH_test'

        >>> safe_component("..", "container")
        ValueError: unsafe container: ..
    """
    if not isinstance(value, str) or value in ("", ".", ".."):
        raise ValueError(f"unsafe {kind}: {value}")
    if "/" in value or "\x00" in value:
        raise ValueError(f"unsafe {kind}: {value}")
    return value


def safe_object_name(name: str) -> str:
    """
    Validate an object name.

    Object names may contain '/' (pseudo-directories), but every segment must
    be non-empty and neither "." nor "..", so the name normalizes to itself.

    Raises:
        ValueError: If the name violates safety rules

    Examples:
        >>> safe_object_name("2024/cat.jpg")
        '2024/cat.jpg'

        >>> safe_object_name("a//b")
        ValueError: unsafe object name: a//b

        >>> safe_object_name("../../etc/passwd")
        ValueError: unsafe object name: ../../etc/passwd
    """
    if not isinstance(name, str) or not name or "\x00" in name:
        raise ValueError(f"unsafe object name: {name}")
    segments = name.split("/")
    if any(seg in ("", ".", "..") for seg in segments):
        raise ValueError(f"unsafe object name: {name}")
    if PurePosixPath(name).is_absolute():
        raise ValueError(f"unsafe object name: {name}")
    return name
