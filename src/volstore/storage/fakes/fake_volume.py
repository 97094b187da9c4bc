"""
Fake volume implementation for testing.

This implementation explicitly subclasses Volume to ensure interface changes
break CI immediately, preventing silent drift.
"""
from __future__ import annotations

import errno
import itertools
import posixpath
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..base import FileStat, Volume, VolumeFile

__all__ = ["FakeVolume", "FakeVolumeFile"]


@dataclass
class _Inode:
    data: bytearray = field(default_factory=bytearray)
    xattrs: Dict[str, bytes] = field(default_factory=dict)
    mtime: float = 0.0


@dataclass
class _Fault:
    op: str
    errno: int
    path: Optional[str]
    name: Optional[str]
    remaining: int


def _oserror(code: int, path: str) -> OSError:
    return OSError(code, f"{errno.errorcode.get(code, code)}: {path}", path)


class FakeVolumeFile(VolumeFile):
    """
    Open handle on a FakeVolume inode.

    Like a POSIX descriptor, the handle keeps its inode after the path is
    renamed over or unlinked.
    """

    def __init__(self, volume: FakeVolume, inode: _Inode, name: str, fd: int, writable: bool) -> None:
        self._volume = volume
        self._inode = inode
        self.name = name
        self._fd = fd
        self._writable = writable
        self._pos = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed file")

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        with self._volume._lock:
            self._volume._check("read", self.name)
            data = self._inode.data
            end = len(data) if size is None or size < 0 else min(len(data), self._pos + size)
            chunk = bytes(data[self._pos:end])
            self._pos = max(self._pos, end)
            return chunk

    def write(self, data: bytes) -> int:
        self._check_open()
        if not self._writable:
            raise _oserror(errno.EBADF, self.name)
        data = bytes(data)
        with self._volume._lock:
            self._volume._check("write", self.name)
            buf = self._inode.data
            if self._pos > len(buf):
                buf.extend(b"\x00" * (self._pos - len(buf)))
            buf[self._pos:self._pos + len(data)] = data
            self._pos += len(data)
            self._inode.mtime = self._volume._clock()
            return len(data)

    def seek(self, offset: int, whence: int = 0) -> int:
        self._check_open()
        if whence == 0:
            self._pos = offset
        elif whence == 1:
            self._pos += offset
        elif whence == 2:
            self._pos = len(self._inode.data) + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        return self._pos

    def tell(self) -> int:
        self._check_open()
        return self._pos

    def truncate(self, size: int) -> None:
        self._check_open()
        if not self._writable:
            raise _oserror(errno.EBADF, self.name)
        with self._volume._lock:
            self._volume._check("truncate", self.name)
            buf = self._inode.data
            if len(buf) != size:
                if len(buf) > size:
                    del buf[size:]
                else:
                    buf.extend(b"\x00" * (size - len(buf)))
                self._inode.mtime = self._volume._clock()

    def flush(self) -> None:
        self._check_open()
        with self._volume._lock:
            self._volume._check("flush", self.name)

    def sync(self) -> None:
        self._check_open()
        with self._volume._lock:
            self._volume._check("sync", self.name)

    def close(self) -> None:
        if self._closed:
            return
        with self._volume._lock:
            self._closed = True
            self._volume._fds.pop(self._fd, None)
            self._volume._check("close", self.name)

    def fstat(self) -> FileStat:
        self._check_open()
        with self._volume._lock:
            self._volume._check("fstat", self.name)
            return FileStat(size=len(self._inode.data), mtime=self._inode.mtime)

    def fileno(self) -> int:
        self._check_open()
        return self._fd

    def getxattr(self, name: str) -> bytes:
        self._check_open()
        return self._volume._get_inode_xattr(self._inode, self.name, name)

    def setxattr(self, name: str, value: bytes) -> None:
        self._check_open()
        self._volume._set_inode_xattr(self._inode, self.name, name, value)


class FakeVolume(Volume):
    """
    In-memory volume implementation for testing.

    This is a test double; not for production use.
    Paths are absolute POSIX paths; directories are tracked explicitly.
    Errors can be injected per operation to exercise classification.
    """

    def __init__(self, *, supports_preallocate: bool = True, xattr_size_limit: int = 65536,
                 clock: Optional[Callable[[], float]] = None) -> None:
        self._files: Dict[str, _Inode] = {}
        self._dirs = {"/"}
        self._fds: Dict[int, FakeVolumeFile] = {}
        self._fd_counter = itertools.count(100)
        self._faults: List[_Fault] = []
        self._lock = threading.RLock()
        self._supports_preallocate = supports_preallocate
        self._xattr_size_limit = xattr_size_limit
        self._clock = clock or time.time
        self.calls: List[str] = []

    # -- fault injection -----------------------------------------------------

    def inject_error(self, op: str, code: int, *, path: Optional[str] = None,
                     name: Optional[str] = None, times: int = 1) -> None:
        """
        Make the next ``times`` calls of ``op`` fail with ``code``.

        Args:
            op: stat, open, create, mkdir, rename, unlink, getxattr, setxattr,
                preallocate, read, write, flush, sync, close or fstat
            code: errno to raise
            path: Only fail calls on this path (staging paths match by prefix
                when the value ends with '*')
            name: Only fail xattr calls for this attribute name
            times: Number of failures before the fault clears (-1 = forever)
        """
        with self._lock:
            self._faults.append(_Fault(op, code, path, name, times))

    def _check(self, op: str, path: str, name: Optional[str] = None) -> None:
        self.calls.append(op)
        for fault in self._faults:
            if fault.op != op or fault.remaining == 0:
                continue
            if fault.path is not None:
                if fault.path.endswith("*"):
                    if not path.startswith(fault.path[:-1]):
                        continue
                elif fault.path != path:
                    continue
            if fault.name is not None and fault.name != name:
                continue
            if fault.remaining > 0:
                fault.remaining -= 1
            raise _oserror(fault.errno, path)

    # -- path helpers --------------------------------------------------------

    @staticmethod
    def _norm(path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return posixpath.normpath(path)

    def _require_parent(self, path: str) -> None:
        parent = posixpath.dirname(path)
        if parent in self._files:
            raise _oserror(errno.ENOTDIR, path)
        if parent not in self._dirs:
            raise _oserror(errno.ENOENT, path)

    def _inode(self, path: str) -> _Inode:
        if path in self._dirs:
            raise _oserror(errno.EISDIR, path)
        inode = self._files.get(path)
        if inode is None:
            ancestor = posixpath.dirname(path)
            while ancestor != "/":
                if ancestor in self._files:
                    raise _oserror(errno.ENOTDIR, path)
                ancestor = posixpath.dirname(ancestor)
            raise _oserror(errno.ENOENT, path)
        return inode

    def _open_handle(self, inode: _Inode, path: str, writable: bool) -> FakeVolumeFile:
        fd = next(self._fd_counter)
        handle = FakeVolumeFile(self, inode, path, fd, writable)
        self._fds[fd] = handle
        return handle

    # -- Volume protocol -----------------------------------------------------

    def stat(self, path: str) -> FileStat:
        path = self._norm(path)
        with self._lock:
            self._check("stat", path)
            inode = self._inode(path)
            return FileStat(size=len(inode.data), mtime=inode.mtime)

    def open(self, path: str) -> FakeVolumeFile:
        path = self._norm(path)
        with self._lock:
            self._check("open", path)
            return self._open_handle(self._inode(path), path, writable=False)

    def open_exclusive(self, path: str) -> FakeVolumeFile:
        path = self._norm(path)
        with self._lock:
            self._check("create", path)
            self._require_parent(path)
            if path in self._files or path in self._dirs:
                raise _oserror(errno.EEXIST, path)
            inode = _Inode(mtime=self._clock())
            self._files[path] = inode
            return self._open_handle(inode, path, writable=True)

    def mkdir_all(self, path: str, mode: int = 0o755) -> None:
        path = self._norm(path)
        with self._lock:
            self._check("mkdir", path)
            current = "/"
            for part in [p for p in path.split("/") if p]:
                current = posixpath.join(current, part)
                if current in self._files:
                    raise _oserror(errno.ENOTDIR, current)
                self._dirs.add(current)

    def rename(self, old: str, new: str) -> None:
        old, new = self._norm(old), self._norm(new)
        with self._lock:
            self._check("rename", new)
            inode = self._inode(old)
            self._require_parent(new)
            if new in self._dirs:
                raise _oserror(errno.EISDIR, new)
            del self._files[old]
            self._files[new] = inode

    def unlink(self, path: str) -> None:
        path = self._norm(path)
        with self._lock:
            self._check("unlink", path)
            self._inode(path)
            del self._files[path]

    def getxattr(self, path: str, name: str) -> bytes:
        path = self._norm(path)
        with self._lock:
            return self._get_inode_xattr(self._inode(path), path, name)

    def setxattr(self, path: str, name: str, value: bytes) -> None:
        path = self._norm(path)
        with self._lock:
            self._set_inode_xattr(self._inode(path), path, name, value)

    def fgetxattr(self, fd: int, name: str) -> bytes:
        with self._lock:
            handle = self._fds.get(fd)
            if handle is None:
                raise _oserror(errno.EBADF, f"fd:{fd}")
            return self._get_inode_xattr(handle._inode, handle.name, name)

    def fsetxattr(self, fd: int, name: str, value: bytes) -> None:
        with self._lock:
            handle = self._fds.get(fd)
            if handle is None:
                raise _oserror(errno.EBADF, f"fd:{fd}")
            self._set_inode_xattr(handle._inode, handle.name, name, value)

    @property
    def supports_preallocate(self) -> bool:
        return self._supports_preallocate

    def preallocate(self, handle: VolumeFile, offset: int, length: int) -> None:
        with self._lock:
            self._check("preallocate", handle.name)
            inode = self._fds[handle.fileno()]._inode
            end = offset + length
            if len(inode.data) < end:
                inode.data.extend(b"\x00" * (end - len(inode.data)))

    def _get_inode_xattr(self, inode: _Inode, path: str, name: str) -> bytes:
        with self._lock:
            self._check("getxattr", path, name)
            if name not in inode.xattrs:
                raise _oserror(errno.ENODATA, path)
            return inode.xattrs[name]

    def _set_inode_xattr(self, inode: _Inode, path: str, name: str, value: bytes) -> None:
        with self._lock:
            self._check("setxattr", path, name)
            if len(value) > self._xattr_size_limit:
                raise _oserror(errno.E2BIG, path)
            inode.xattrs[name] = bytes(value)

    # -- test utilities ------------------------------------------------------

    def put_file(self, path: str, data: bytes, *, mtime: Optional[float] = None,
                 xattrs: Optional[Dict[str, bytes]] = None) -> None:
        """Create or replace a file out of band, creating parent directories."""
        path = self._norm(path)
        with self._lock:
            parent = posixpath.dirname(path)
            current = "/"
            for part in [p for p in parent.split("/") if p]:
                current = posixpath.join(current, part)
                self._dirs.add(current)
            self._files[path] = _Inode(
                data=bytearray(data),
                xattrs=dict(xattrs or {}),
                mtime=self._clock() if mtime is None else mtime,
            )

    def overwrite_in_place(self, path: str, data: bytes, *, mtime: Optional[float] = None) -> None:
        """Rewrite file content out of band, keeping its extended attributes."""
        path = self._norm(path)
        with self._lock:
            inode = self._inode(path)
            inode.data[:] = data
            inode.mtime = self._clock() if mtime is None else mtime

    def read_file(self, path: str) -> bytes:
        path = self._norm(path)
        with self._lock:
            return bytes(self._inode(path).data)

    def xattrs(self, path: str) -> Dict[str, bytes]:
        path = self._norm(path)
        with self._lock:
            return dict(self._inode(path).xattrs)

    def exists(self, path: str) -> bool:
        return self._norm(path) in self._files

    def listdir(self, path: str) -> List[str]:
        path = self._norm(path)
        with self._lock:
            entries = {
                posixpath.basename(p)
                for p in list(self._files) + list(self._dirs)
                if p != path and posixpath.dirname(p) == path
            }
            return sorted(entries)

    def open_fds(self) -> int:
        with self._lock:
            return len(self._fds)

    def clear(self) -> None:
        """Clear all stored data (test utility)."""
        with self._lock:
            self._files.clear()
            self._dirs = {"/"}
            self._fds.clear()
            self._faults.clear()
            self.calls.clear()
