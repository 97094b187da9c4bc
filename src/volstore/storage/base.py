"""
Storage interfaces for volstore.

These protocols define the boundary between the object core and the mounted
volume driver, enabling clean dependency injection and testing with fakes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Union, runtime_checkable


@dataclass(frozen=True)
class FileStat:
    """
    Size and modification time of a file on a volume.

    Invariants:
    - size: exact byte length (>= 0)
    - mtime: seconds since the epoch as a float (sub-second precision kept)
    """
    size: int
    mtime: float


__all__ = [
    "FileStat",
    "VolumeFile",
    "Volume",
    "PathTarget",
    "HandleTarget",
    "DescriptorTarget",
    "AttrTarget",
]


@runtime_checkable
class VolumeFile(Protocol):
    """Open file handle on a volume."""

    name: str

    @property
    def closed(self) -> bool:
        ...

    def read(self, size: int = -1) -> bytes:
        ...

    def write(self, data: bytes) -> int:
        ...

    def seek(self, offset: int, whence: int = 0) -> int:
        ...

    def tell(self) -> int:
        ...

    def truncate(self, size: int) -> None:
        """Cut the file to size bytes (ftruncate)."""
        ...

    def flush(self) -> None:
        ...

    def sync(self) -> None:
        """Flush file data to stable storage (fsync)."""
        ...

    def close(self) -> None:
        ...

    def fstat(self) -> FileStat:
        ...

    def fileno(self) -> int:
        ...

    def getxattr(self, name: str) -> bytes:
        """
        Read an extended attribute through the handle.

        Raises:
            OSError: ENODATA/ENOATTR if the attribute is absent
        """
        ...

    def setxattr(self, name: str, value: bytes) -> None:
        ...


@runtime_checkable
class Volume(Protocol):
    """
    Protocol for a mounted POSIX-like volume.

    All paths are absolute within the volume ("/account/container/object").
    Every method reports failures as OSError with a meaningful errno; the
    core classifies them, implementations never do.
    """

    def stat(self, path: str) -> FileStat:
        """
        Raises:
            OSError: ENOENT if path does not exist
        """
        ...

    def open(self, path: str) -> VolumeFile:
        """Open an existing file for reading."""
        ...

    def open_exclusive(self, path: str) -> VolumeFile:
        """
        Create and open a new file for writing (O_CREAT | O_EXCL).

        Raises:
            OSError: EEXIST if path already exists
        """
        ...

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        """Create path and missing parents; existing directories are fine."""
        ...

    def rename(self, old: str, new: str) -> None:
        """Atomically rename old onto new, replacing new if present."""
        ...

    def unlink(self, path: str) -> None:
        ...

    def getxattr(self, path: str, name: str) -> bytes:
        ...

    def setxattr(self, path: str, name: str, value: bytes) -> None:
        ...

    def fgetxattr(self, fd: int, name: str) -> bytes:
        ...

    def fsetxattr(self, fd: int, name: str, value: bytes) -> None:
        ...

    @property
    def supports_preallocate(self) -> bool:
        ...

    def preallocate(self, handle: VolumeFile, offset: int, length: int) -> None:
        """
        Reserve space for a file.

        Raises:
            OSError: ENOSPC/EDQUOT if the space cannot be reserved
        """
        ...


@dataclass(frozen=True)
class PathTarget:
    """Extended attributes addressed by path on a volume."""
    volume: Volume
    path: str

    def get(self, name: str) -> bytes:
        return self.volume.getxattr(self.path, name)

    def set(self, name: str, value: bytes) -> None:
        self.volume.setxattr(self.path, name, value)

    def describe(self) -> str:
        return self.path


@dataclass(frozen=True)
class HandleTarget:
    """Extended attributes addressed through an open file handle."""
    handle: VolumeFile

    def get(self, name: str) -> bytes:
        return self.handle.getxattr(name)

    def set(self, name: str, value: bytes) -> None:
        self.handle.setxattr(name, value)

    def describe(self) -> str:
        return self.handle.name


@dataclass(frozen=True)
class DescriptorTarget:
    """Extended attributes addressed by raw file descriptor on a volume."""
    volume: Volume
    fd: int
    label: Optional[str] = None

    def get(self, name: str) -> bytes:
        return self.volume.fgetxattr(self.fd, name)

    def set(self, name: str, value: bytes) -> None:
        self.volume.fsetxattr(self.fd, name, value)

    def describe(self) -> str:
        return self.label or f"fd:{self.fd}"


AttrTarget = Union[PathTarget, HandleTarget, DescriptorTarget]
