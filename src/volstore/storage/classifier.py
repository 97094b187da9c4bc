"""
Error classification for volume calls.

The single place where raw errno codes are inspected. Every volume call made
by the core runs inside ``classified()`` so callers only ever see the
``storage.errors`` taxonomy.
"""
from __future__ import annotations

import errno
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import InternalError, MetadataNotFound, ObjectNotFound, SpaceExhausted, VolumeError

__all__ = [
    "classify",
    "classified",
    "READ_OPS",
    "ALLOCATING_OPS",
    "NO_SPACE_ERRNOS",
    "NO_ATTR_ERRNOS",
]

logger = logging.getLogger(__name__)

# ENODATA on Linux, ENOATTR on BSD/macOS
NO_ATTR_ERRNOS = frozenset(
    code for code in (getattr(errno, "ENODATA", None), getattr(errno, "ENOATTR", None))
    if code is not None
)

NO_SPACE_ERRNOS = frozenset(
    code for code in (errno.ENOSPC, getattr(errno, "EDQUOT", None)) if code is not None
)

NO_ENTRY_ERRNOS = frozenset({errno.ENOENT, errno.ENOTDIR})

# Operations where a missing path means "object not found"
READ_OPS = frozenset({"stat", "open", "unlink"})

# Operations that may allocate blocks or inodes on the volume
ALLOCATING_OPS = frozenset({"mkdir", "create", "write", "preallocate", "setxattr", "flush", "close"})

# getxattr of the first metadata slot; absence means "no metadata yet"
METADATA_HEAD_OP = "getxattr-head"


def classify(err: OSError, *, op: str, target: Optional[str] = None) -> VolumeError:
    """
    Map a low-level OSError to an outcome.

    Args:
        err: The error raised by the volume
        op: Operation name (see READ_OPS / ALLOCATING_OPS)
        target: Path or handle description for diagnostics

    Returns:
        ObjectNotFound, MetadataNotFound, SpaceExhausted or InternalError
        (never raised here; the caller raises it chained to ``err``)
    """
    code = err.errno
    detail = err.strerror or str(err)

    if op == METADATA_HEAD_OP and code in NO_ATTR_ERRNOS:
        return MetadataNotFound(f"No metadata on {target}", op=op, target=target, errno=code)

    if code in NO_ENTRY_ERRNOS and (op in READ_OPS or op == METADATA_HEAD_OP):
        return ObjectNotFound(f"No such object: {target}", op=op, target=target, errno=code)

    if code in NO_SPACE_ERRNOS and op in ALLOCATING_OPS:
        return SpaceExhausted(f"No space left for {op} on {target}: {detail}",
                              op=op, target=target, errno=code)

    return InternalError(f"{op} failed on {target}: {detail}", op=op, target=target, errno=code)


@contextmanager
def classified(op: str, target: Optional[str] = None) -> Iterator[None]:
    """
    Translate any OSError raised inside the block into the error taxonomy.

    Already-classified VolumeErrors pass through untouched.

    Example:
        >>> with classified("mkdir", "/a/c"):
        ...     volume.mkdir_all("/a/c")
    """
    try:
        yield
    except OSError as err:
        classified_err = classify(err, op=op, target=target)
        if isinstance(classified_err, InternalError):
            logger.debug(f"{op} on {target} failed with errno {err.errno}: {err}")
        raise classified_err from err
