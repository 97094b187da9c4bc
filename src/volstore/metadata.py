"""
Object metadata codec.

Metadata records are pickled (protocol 2) and spread across extended
attributes named ``user.swift.metadata``, ``user.swift.metadata1``,
``user.swift.metadata2``... so that records larger than a single attribute
can be stored. The format is shared with the Swift and gluster-swift object
servers that read the same volumes, so it must not change.
"""
from __future__ import annotations

import codecs
import errno
import io
import logging
import pickle
from typing import Dict, Mapping

from .settings import METADATA_CHUNK_SIZE
from .storage.base import AttrTarget
from .storage.classifier import METADATA_HEAD_OP, NO_ATTR_ERRNOS, classified, classify
from .storage.errors import MetadataCorrupt

__all__ = [
    "METADATA_KEY",
    "PICKLE_PROTOCOL",
    "slot_name",
    "encode_metadata",
    "decode_metadata",
    "write_chunked",
    "read_chunked",
    "read_metadata",
    "write_metadata",
]

logger = logging.getLogger(__name__)

METADATA_KEY = "user.swift.metadata"
PICKLE_PROTOCOL = 2

_NOT_SUPPORTED = frozenset(
    code for code in (getattr(errno, "ENOTSUP", None), getattr(errno, "EOPNOTSUPP", None))
    if code is not None
)


def slot_name(index: int) -> str:
    """Name of the extended attribute holding chunk ``index``."""
    return METADATA_KEY if index == 0 else f"{METADATA_KEY}{index}"


class _MetadataUnpickler(pickle.Unpickler):
    """
    Unpickler that only understands plain containers and strings.

    Python 3 writers pickle byte strings at protocol 2 as
    ``_codecs.encode(text, 'latin1')``; that single callable is allowed,
    every other global lookup is refused.
    """

    def find_class(self, module, name):
        if (module, name) == ("_codecs", "encode"):
            return codecs.encode
        raise pickle.UnpicklingError(f"global '{module}.{name}' is forbidden in metadata")


def _to_str(item) -> str:
    if isinstance(item, bytes):
        return item.decode("utf-8", "surrogateescape")
    if isinstance(item, str):
        return item
    raise MetadataCorrupt(f"Metadata item not a string: {item!r}")


def encode_metadata(record: Mapping[str, str]) -> bytes:
    """
    Serialize a metadata record.

    Raises:
        ValueError: If a key or value is not a string
    """
    for key, value in record.items():
        if not isinstance(key, str):
            raise ValueError(f"Metadata key not string: {key!r}")
        if not isinstance(value, str):
            raise ValueError(f"Metadata value for {key!r} not string: {value!r}")
    return pickle.dumps(dict(record), PICKLE_PROTOCOL)


def decode_metadata(data: bytes) -> Dict[str, str]:
    """
    Deserialize a metadata record.

    Raises:
        MetadataCorrupt: If data is not a pickled string-to-string mapping
    """
    try:
        value = _MetadataUnpickler(io.BytesIO(data), encoding="bytes").load()
    except Exception as e:
        raise MetadataCorrupt(f"Unreadable metadata: {e}") from e

    if not isinstance(value, dict):
        raise MetadataCorrupt(f"Unpickled metadata not a mapping: {type(value).__name__}")

    return {_to_str(k): _to_str(v) for k, v in value.items()}


def write_chunked(target: AttrTarget, data: bytes, *, chunk_size: int = METADATA_CHUNK_SIZE) -> int:
    """
    Write data across as many metadata slots as needed.

    Full-size chunks go first in ascending slot order, then the final
    partial chunk. Empty data writes nothing.

    Returns:
        Number of slots written

    Raises:
        SpaceExhausted: If the volume is out of space or quota
        InternalError: For any other failure
    """
    index = 0
    while data:
        name = slot_name(index)
        with classified("setxattr", target.describe()):
            try:
                target.set(name, data[:chunk_size])
            except OSError as e:
                if e.errno in _NOT_SUPPORTED:
                    logger.error(f"Filesystem at {target.describe()} does not support xattr")
                raise
        data = data[chunk_size:]
        index += 1
    return index


def read_chunked(target: AttrTarget, *, chunk_size: int = METADATA_CHUNK_SIZE) -> bytes:
    """
    Read and concatenate metadata slots.

    Returns:
        Raw serialized metadata

    Raises:
        MetadataNotFound: If the first slot is absent
        ObjectNotFound: If the target itself does not exist
        InternalError: On any failure of a continuation slot other than absence
    """
    with classified(METADATA_HEAD_OP, target.describe()):
        head = target.get(slot_name(0))

    if len(head) < chunk_size:
        return head

    parts = [head]
    index = 1
    while True:
        try:
            chunk = target.get(slot_name(index))
        except OSError as e:
            if e.errno in NO_ATTR_ERRNOS:
                break
            raise classify(e, op="getxattr", target=target.describe()) from e
        if not chunk:
            break
        parts.append(chunk)
        index += 1
    return b"".join(parts)


def read_metadata(target: AttrTarget, *, chunk_size: int = METADATA_CHUNK_SIZE) -> Dict[str, str]:
    """Read and decode the metadata record stored on target."""
    return decode_metadata(read_chunked(target, chunk_size=chunk_size))


def write_metadata(target: AttrTarget, record: Mapping[str, str], *,
                   chunk_size: int = METADATA_CHUNK_SIZE) -> None:
    """Encode record and store it on target."""
    write_chunked(target, encode_metadata(record), chunk_size=chunk_size)
