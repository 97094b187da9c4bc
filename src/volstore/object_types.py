"""
Object types for volstore.

These types define the interface between the protocol layer and the object
lifecycle controller, so callers hold an ``ObjectHandle`` rather than a
concrete controller class.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Protocol

from .path_safety import safe_component, safe_object_name
from .storage.base import FileStat, VolumeFile

__all__ = [
    "LogicalObjectPath",
    "ObjectState",
    "LifecycleState",
    "Freshness",
    "ObjectHandle",
    "MetadataRecord",
    "X_NAME",
    "X_TIMESTAMP",
    "X_PUT_MTIME",
    "X_CONTENT_TYPE",
    "X_CONTENT_LENGTH",
    "X_ETAG",
    "X_OBJECT_META_PREFIX",
]

MetadataRecord = Dict[str, str]

# Metadata keys shared with Swift object servers
X_NAME = "name"
X_TIMESTAMP = "X-Timestamp"
X_PUT_MTIME = "X-Object-PUT-Mtime"
X_CONTENT_TYPE = "Content-Type"
X_CONTENT_LENGTH = "Content-Length"
X_ETAG = "ETag"
X_OBJECT_META_PREFIX = "X-Object-Meta-"


class ObjectState(str, Enum):
    """Whether the logical path held a file when the handle was initialized."""
    NOT_EXISTS = "not_exists"
    CONSUMABLE = "consumable"


class LifecycleState(str, Enum):
    """States of the object lifecycle controller."""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    READING = "reading"
    WRITING = "writing"
    COMMITTED = "committed"
    ABORTED = "aborted"
    CLOSED = "closed"


class Freshness(str, Enum):
    """Result of comparing stored metadata with live file state."""
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class LogicalObjectPath:
    """
    Account/container/object triple and its path inside a volume.

    One logical path names at most one live object at a time.
    """
    account: str
    container: str
    obj: str

    def __post_init__(self) -> None:
        safe_component(self.account, "account")
        safe_component(self.container, "container")
        safe_object_name(self.obj)

    @classmethod
    def parse(cls, path: str) -> LogicalObjectPath:
        """
        Parse "account/container/object" (leading slash optional).

        Examples:
            >>> LogicalObjectPath.parse("/AUTH_test/photos/2024/cat.jpg").obj
            '2024/cat.jpg'
        """
        parts = path.lstrip("/").split("/", 2)
        if len(parts) != 3:
            raise ValueError(f"Invalid object path: {path!r}. Expected account/container/object")
        return cls(*parts)

    @property
    def path(self) -> str:
        return f"/{self.account}/{self.container}/{self.obj}"

    @property
    def parent(self) -> str:
        return posixpath.dirname(self.path)

    @property
    def basename(self) -> str:
        return posixpath.basename(self.path)

    def __str__(self) -> str:
        return self.path


class ObjectHandle(Protocol):
    """
    Per-request handle on one object.

    The protocol layer drives it in a fixed order per verb:
    GET/HEAD: initialize, open_for_read, get_metadata, close
    PUT: initialize, open_for_write, write..., put_metadata, commit, close
    DELETE: initialize, delete, close
    """

    @property
    def state(self) -> LifecycleState:
        ...

    @property
    def object_state(self) -> ObjectState:
        ...

    @property
    def stat(self) -> Optional[FileStat]:
        ...

    def initialize(self) -> ObjectState:
        ...

    def open_for_read(self) -> VolumeFile:
        ...

    def get_metadata(self) -> MetadataRecord:
        ...

    def put_metadata(self, metadata: Mapping[str, str]) -> None:
        ...

    def open_for_write(self, content_length: Optional[int] = None) -> VolumeFile:
        ...

    def write(self, chunk: bytes) -> int:
        ...

    def staging_stat(self) -> FileStat:
        ...

    def commit(self) -> None:
        ...

    def abort(self) -> None:
        ...

    def delete(self) -> None:
        ...

    def quarantine(self, reason: str) -> None:
        ...

    def close(self) -> None:
        ...
