"""
Volume adapter for a locally mounted filesystem.

Implements the Volume protocol over a directory tree, typically the mount
point of a FUSE/NFS/GlusterFS volume. File operations use ``os``, extended
attributes use the ``xattr`` package and preallocation uses
``os.posix_fallocate`` where the platform provides it.
"""
from __future__ import annotations

import logging
import os
import posixpath

import xattr

from .base import FileStat, Volume, VolumeFile
from .errors import DeviceUnavailable

__all__ = ["LocalVolume", "LocalVolumeFile"]

logger = logging.getLogger(__name__)


class LocalVolumeFile(VolumeFile):
    """Open file on a LocalVolume; ``name`` is the path inside the volume."""

    def __init__(self, fileobj, name: str) -> None:
        self._file = fileobj
        self.name = name

    @property
    def closed(self) -> bool:
        return self._file.closed

    def read(self, size: int = -1) -> bytes:
        return self._file.read(size)

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def seek(self, offset: int, whence: int = 0) -> int:
        return self._file.seek(offset, whence)

    def tell(self) -> int:
        return self._file.tell()

    def truncate(self, size: int) -> None:
        self._file.truncate(size)

    def flush(self) -> None:
        self._file.flush()

    def sync(self) -> None:
        self._file.flush()
        os.fsync(self._file.fileno())

    def close(self) -> None:
        self._file.close()

    def fstat(self) -> FileStat:
        st = os.fstat(self._file.fileno())
        return FileStat(size=st.st_size, mtime=st.st_mtime)

    def fileno(self) -> int:
        return self._file.fileno()

    def getxattr(self, name: str) -> bytes:
        return xattr.getxattr(self._file.fileno(), name)

    def setxattr(self, name: str, value: bytes) -> None:
        xattr.setxattr(self._file.fileno(), name, value)


class LocalVolume(Volume):
    """
    Volume rooted at a local directory.

    Volume paths ("/account/container/object") are resolved below ``root``;
    ".." segments are normalized against the volume root and never climb
    above it.
    """

    def __init__(self, root: str, *, name: str = "") -> None:
        self._root = os.path.abspath(root)
        self._name = name or os.path.basename(self._root)
        logger.debug(f"LocalVolume {self._name} rooted at {self._root}")

    def __repr__(self) -> str:
        return f"LocalVolume(name={self._name!r}, root={self._root!r})"

    @property
    def root(self) -> str:
        return self._root

    @property
    def name(self) -> str:
        return self._name

    def check_mount(self, mount_check: bool = True) -> None:
        """
        Verify the volume root is usable.

        Raises:
            DeviceUnavailable: If the root is missing, or not a mount point
                when mount_check is set
        """
        if not os.path.isdir(self._root):
            raise DeviceUnavailable(f"Device {self._name}: {self._root} is not a directory")
        if mount_check and not os.path.ismount(self._root):
            raise DeviceUnavailable(f"Device {self._name}: {self._root} is not mounted")

    def _real(self, path: str) -> str:
        rel = posixpath.normpath("/" + path).lstrip("/")
        return os.path.join(self._root, rel) if rel else self._root

    def stat(self, path: str) -> FileStat:
        st = os.stat(self._real(path))
        return FileStat(size=st.st_size, mtime=st.st_mtime)

    def open(self, path: str) -> LocalVolumeFile:
        return LocalVolumeFile(open(self._real(path), "rb"), path)

    def open_exclusive(self, path: str) -> LocalVolumeFile:
        fd = os.open(self._real(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o666)
        try:
            fileobj = os.fdopen(fd, "wb")
        except Exception:
            os.close(fd)
            raise
        return LocalVolumeFile(fileobj, path)

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        os.makedirs(self._real(path), mode, exist_ok=True)

    def rename(self, old: str, new: str) -> None:
        os.rename(self._real(old), self._real(new))

    def unlink(self, path: str) -> None:
        os.unlink(self._real(path))

    def getxattr(self, path: str, name: str) -> bytes:
        return xattr.getxattr(self._real(path), name)

    def setxattr(self, path: str, name: str, value: bytes) -> None:
        xattr.setxattr(self._real(path), name, value)

    def fgetxattr(self, fd: int, name: str) -> bytes:
        return xattr.getxattr(fd, name)

    def fsetxattr(self, fd: int, name: str, value: bytes) -> None:
        xattr.setxattr(fd, name, value)

    @property
    def supports_preallocate(self) -> bool:
        return hasattr(os, "posix_fallocate")

    def preallocate(self, handle: VolumeFile, offset: int, length: int) -> None:
        os.posix_fallocate(handle.fileno(), offset, length)
