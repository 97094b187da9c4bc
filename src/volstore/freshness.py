"""
Metadata freshness verification and regeneration.

Objects on a shared volume can be rewritten by other interfaces (NFS, FUSE,
SMB clients) without going through the object server. Stored metadata is
therefore checked against the live file size and modification time before
it is served, and regenerated from the file content when it no longer
matches.
"""
from __future__ import annotations

import hashlib
import logging
from typing import Mapping, Optional

from .object_types import (
    Freshness,
    MetadataRecord,
    X_CONTENT_LENGTH,
    X_CONTENT_TYPE,
    X_ETAG,
    X_NAME,
    X_PUT_MTIME,
    X_TIMESTAMP,
)
from .settings import DEFAULT_CONTENT_TYPE
from .storage.base import FileStat, VolumeFile
from .storage.classifier import classified

__all__ = ["normalize_timestamp", "verify", "generate_metadata", "HASH_CHUNK_SIZE"]

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 65536


def normalize_timestamp(timestamp: float) -> str:
    """
    Format a timestamp the way Swift records it: 16 chars, 5 decimal places.

    Examples:
        >>> normalize_timestamp(1700000000.123456)
        '1700000000.12346'
        >>> normalize_timestamp(1.5)
        '0000000001.50000'
    """
    return "%016.05f" % float(timestamp)


def verify(stat: FileStat, metadata: Mapping[str, str]) -> Freshness:
    """
    Decide whether metadata still describes the file behind stat.

    Stale when the recorded Content-Length differs from the live size, or
    when sizes match but the recorded X-Object-PUT-Mtime differs from the
    live mtime at 5-decimal precision. Without a recorded mtime only the
    size can be checked.
    """
    try:
        recorded_length = int(metadata[X_CONTENT_LENGTH])
    except (KeyError, ValueError):
        return Freshness.STALE

    if recorded_length != stat.size:
        return Freshness.STALE

    recorded_mtime = metadata.get(X_PUT_MTIME)
    if recorded_mtime is None:
        return Freshness.FRESH

    try:
        recorded = normalize_timestamp(float(recorded_mtime))
    except ValueError:
        return Freshness.STALE

    if recorded != normalize_timestamp(stat.mtime):
        return Freshness.STALE
    return Freshness.FRESH


def generate_metadata(handle: VolumeFile, stat: FileStat, name: str, *,
                      content_type: Optional[str] = None,
                      chunk_size: int = HASH_CHUNK_SIZE) -> MetadataRecord:
    """
    Build a metadata record from file content and stat.

    Reads the handle once from its current position to compute the ETag;
    the caller is responsible for rewinding it afterwards.

    Args:
        handle: Open handle positioned at the start of the content
        stat: Size and mtime of the file
        name: Logical path recorded under "name"
        content_type: Known content type (defaults to application/octet-stream)
        chunk_size: Read block size

    Returns:
        Metadata record with name, X-Timestamp, X-Object-PUT-Mtime,
        Content-Type, Content-Length and ETag
    """
    md5 = hashlib.md5()
    with classified("read", handle.name):
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            md5.update(chunk)

    timestamp = normalize_timestamp(stat.mtime)
    metadata = {
        X_NAME: name,
        X_TIMESTAMP: timestamp,
        X_PUT_MTIME: timestamp,
        X_CONTENT_TYPE: content_type or DEFAULT_CONTENT_TYPE,
        X_CONTENT_LENGTH: str(stat.size),
        X_ETAG: md5.hexdigest(),
    }
    logger.debug(f"Generated metadata for {name}: size={stat.size} etag={metadata[X_ETAG]}")
    return metadata
