"""
Volume error classes.

Provides the taxonomy of outcomes a storage operation can end in. Low-level
errno codes are translated into these classes in exactly one place
(``storage.classifier``); everything above it propagates them unchanged.
"""
from __future__ import annotations

from typing import Optional


class VolumeError(Exception):
    """
    Base class for all classified volume errors.

    Carries the operation and target that failed plus the original errno,
    so the diagnostic survives up to whatever logs it.
    """

    def __init__(self, message: str, *, op: Optional[str] = None,
                 target: Optional[str] = None, errno: Optional[int] = None):
        super().__init__(message)
        self.op = op
        self.target = target
        self.errno = errno


class ObjectNotFound(VolumeError):
    """
    Object (or its first metadata slot) does not exist.

    Raised when:
    - stat/open/unlink of the logical path reports ENOENT or ENOTDIR
    - the object vanished between initialize() and open_for_read()
    """
    pass


class MetadataNotFound(ObjectNotFound):
    """
    The object exists but carries no recorded metadata.

    Raised when the first metadata slot is absent (ENODATA/ENOATTR). This is
    never a format error; callers regenerate the metadata.
    """
    pass


class SpaceExhausted(VolumeError):
    """
    Device full or quota hit during an allocating operation.

    Raised when:
    - mkdir, create, write, preallocate, setxattr, flush or close report
      ENOSPC or EDQUOT
    """
    pass


class InternalError(VolumeError):
    """
    Any other storage-layer failure.

    The original OSError is chained as ``__cause__``.
    """
    pass


class MetadataCorrupt(InternalError):
    """
    Stored metadata bytes do not decode to a string-to-string mapping.

    Local to the codec; callers beyond the core treat it as InternalError.
    """
    pass


class LifecycleStateError(ValueError):
    """Operation invoked in a lifecycle state that does not allow it."""
    pass


class DeviceUnavailable(KeyError):
    """Device is not configured on this node or its mount is not ready."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "device unavailable"


__all__ = [
    "VolumeError",
    "ObjectNotFound",
    "MetadataNotFound",
    "SpaceExhausted",
    "InternalError",
    "MetadataCorrupt",
    "LifecycleStateError",
    "DeviceUnavailable",
]
