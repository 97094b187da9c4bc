"""
Object lifecycle controller.

A ``DiskFile`` is created per request for one logical path on one volume and
walks an explicit state machine:

    UNINITIALIZED -> INITIALIZED -> {READING, WRITING} -> {COMMITTED, ABORTED} -> CLOSED

Writes go to a staging file with a random name in the object's directory
and become visible only through a single atomic rename, so readers see
either the previous object or the new one, never a partial file.
"""
from __future__ import annotations

import errno
import hashlib
import logging
import posixpath
import uuid
from typing import Mapping, Optional, Tuple

from .freshness import generate_metadata, verify
from .metadata import read_metadata, write_metadata
from .object_types import (
    Freshness,
    LifecycleState,
    LogicalObjectPath,
    MetadataRecord,
    ObjectState,
    X_CONTENT_TYPE,
    X_OBJECT_META_PREFIX,
)
from .settings import Settings
from .storage.base import AttrTarget, FileStat, HandleTarget, PathTarget, Volume, VolumeFile
from .storage.classifier import classified
from .storage.errors import LifecycleStateError, MetadataNotFound, ObjectNotFound, VolumeError

__all__ = ["DiskFile", "staging_name"]

logger = logging.getLogger(__name__)


def staging_name(data_file: str) -> str:
    """
    Unique staging path next to data_file.

    Examples:
        >>> staging_name("/a/c/photo.jpg")  # doctest: +SKIP
        '/a/c/.photo.jpg.9f0c2e4d8a7b4c1e8d3f6a5b4c3d2e1f'
    """
    parent, base = posixpath.split(data_file)
    return posixpath.join(parent, f".{base}.{uuid.uuid4().hex}")


class DiskFile:
    """
    Lifecycle controller for one object on one volume.

    Not thread-safe; one instance serves one request. The volume may be
    shared by any number of instances. Use as a context manager so the
    staging artifact of an unfinished write is always removed:

        >>> with DiskFile(volume, LogicalObjectPath("a", "c", "o")) as df:
        ...     df.initialize()
        ...     df.open_for_write(content_length=5)
        ...     df.write(b"hello")
        ...     df.put_metadata(metadata)
        ...     df.commit()
    """

    def __init__(self, volume: Volume, path: LogicalObjectPath, *,
                 settings: Optional[Settings] = None, device: Optional[str] = None) -> None:
        self._volume = volume
        self._path = path
        self._settings = settings or Settings()
        self._device = device

        self._state = LifecycleState.UNINITIALIZED
        self._object_state: Optional[ObjectState] = None
        self._stat: Optional[FileStat] = None
        self._reader: Optional[VolumeFile] = None

        # PUT
        self._writer: Optional[VolumeFile] = None
        self._staging_path: Optional[str] = None
        self._commit_succeeded = False
        self._upload_size = 0
        self._chunks_etag = hashlib.md5()

    def __repr__(self) -> str:
        return f"DiskFile(device={self._device!r}, path={self._path.path!r}, state={self._state.value})"

    def __enter__(self) -> DiskFile:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def device(self) -> Optional[str]:
        return self._device

    @property
    def logical_path(self) -> LogicalObjectPath:
        return self._path

    @property
    def data_file(self) -> str:
        return self._path.path

    @property
    def data_dir(self) -> str:
        return self._path.parent

    @property
    def staging_path(self) -> Optional[str]:
        return self._staging_path

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def object_state(self) -> ObjectState:
        if self._object_state is None:
            raise LifecycleStateError("object state unknown before initialize()")
        return self._object_state

    @property
    def stat(self) -> Optional[FileStat]:
        return self._stat

    @property
    def commit_succeeded(self) -> bool:
        return self._commit_succeeded

    def _require(self, op: str, *states: LifecycleState) -> None:
        if self._state not in states:
            raise LifecycleStateError(f"{op}() not allowed in state {self._state.value}")

    def _require_consumable(self) -> None:
        if self._object_state is not ObjectState.CONSUMABLE:
            raise ObjectNotFound(f"No such object: {self.data_file}", op="open", target=self.data_file)

    # -- initialization ------------------------------------------------------

    def initialize(self) -> ObjectState:
        """
        Stat the logical path and record whether the object exists.

        Does not open the file.

        Returns:
            ObjectState.CONSUMABLE or ObjectState.NOT_EXISTS

        Raises:
            InternalError: If stat fails for a reason other than absence
        """
        self._require("initialize", LifecycleState.UNINITIALIZED)
        try:
            with classified("stat", self.data_file):
                self._stat = self._volume.stat(self.data_file)
        except ObjectNotFound:
            self._stat = None

        self._object_state = ObjectState.CONSUMABLE if self._stat is not None else ObjectState.NOT_EXISTS
        self._state = LifecycleState.INITIALIZED
        logger.debug(f"Initialized {self.data_file}: {self._object_state.value}")
        return self._object_state

    # -- GET / HEAD ----------------------------------------------------------

    def open_for_read(self) -> VolumeFile:
        """
        Open the existing object for reading.

        Raises:
            ObjectNotFound: If the object did not exist at initialize() or was
                removed since (reported, not retried)
        """
        self._require("open_for_read", LifecycleState.INITIALIZED)
        self._require_consumable()
        with classified("open", self.data_file):
            self._reader = self._volume.open(self.data_file)
        self._state = LifecycleState.READING
        return self._reader

    def get_metadata(self) -> MetadataRecord:
        """
        Return the object's metadata, regenerating it when missing or stale.

        Regenerated metadata is persisted before it is returned and the open
        read handle (if any) is rewound to offset 0.

        Raises:
            ObjectNotFound: If the object does not exist
            MetadataCorrupt: If stored metadata cannot be decoded
            InternalError: For other storage failures
        """
        self._require("get_metadata", LifecycleState.INITIALIZED, LifecycleState.READING)
        self._require_consumable()

        try:
            metadata = read_metadata(self._attr_target(), chunk_size=self._settings.metadata_chunk_size)
        except MetadataNotFound:
            logger.info(f"No metadata recorded for {self.data_file}; generating")
            return self._regenerate_metadata(None)

        if verify(self._stat, metadata) is Freshness.STALE:
            logger.warning(f"Metadata for {self.data_file} is stale (modified outside the object server); regenerating")
            return self._regenerate_metadata(metadata)
        return metadata

    def _regenerate_metadata(self, previous: Optional[Mapping[str, str]]) -> MetadataRecord:
        owned = self._reader is None
        if owned:
            with classified("open", self.data_file):
                handle = self._volume.open(self.data_file)
        else:
            handle = self._reader

        try:
            content_type = (previous or {}).get(X_CONTENT_TYPE) or self._settings.default_content_type
            metadata = generate_metadata(
                handle, self._stat, self._path.path,
                content_type=content_type,
                chunk_size=self._settings.io_chunk_size,
            )
            for key, value in (previous or {}).items():
                if key.startswith(X_OBJECT_META_PREFIX):
                    metadata[key] = value
            write_metadata(HandleTarget(handle), metadata, chunk_size=self._settings.metadata_chunk_size)
        finally:
            if owned:
                try:
                    handle.close()
                except OSError:
                    logger.exception(f"Error closing {self.data_file}")
            else:
                with classified("seek", self.data_file):
                    handle.seek(0)
        return metadata

    def put_metadata(self, metadata: Mapping[str, str]) -> None:
        """
        Persist metadata on the staging file (while writing), the open read
        handle (while reading) or the logical path.

        Raises:
            SpaceExhausted: If the volume has no room for the attributes
            InternalError: For other storage failures
        """
        self._require("put_metadata", LifecycleState.INITIALIZED, LifecycleState.READING,
                      LifecycleState.WRITING)
        write_metadata(self._attr_target(), metadata, chunk_size=self._settings.metadata_chunk_size)

    def _attr_target(self) -> AttrTarget:
        if self._writer is not None:
            return HandleTarget(self._writer)
        if self._reader is not None:
            return HandleTarget(self._reader)
        return PathTarget(self._volume, self.data_file)

    # -- PUT -----------------------------------------------------------------

    def open_for_write(self, content_length: Optional[int] = None) -> VolumeFile:
        """
        Create the staging file that will become the object on commit().

        Args:
            content_length: Declared body size; used to preallocate when known

        Returns:
            Writable handle on the staging file

        Raises:
            SpaceExhausted: If mkdir, create or preallocate runs out of space/quota
            InternalError: For any other failure, including a staging name collision
        """
        self._require("open_for_write", LifecycleState.INITIALIZED)

        with classified("mkdir", self.data_dir):
            self._volume.mkdir_all(self.data_dir, 0o755)

        staging = staging_name(self.data_file)
        with classified("create", staging):
            self._writer = self._volume.open_exclusive(staging)
        self._staging_path = staging
        self._state = LifecycleState.WRITING
        logger.debug(f"Opened staging file {staging} for {self.data_file}")

        if (content_length is not None and content_length > 0
                and not self._settings.disable_fallocate
                and self._volume.supports_preallocate):
            try:
                with classified("preallocate", staging):
                    self._volume.preallocate(self._writer, 0, content_length)
            except VolumeError:
                self.abort()
                raise

        return self._writer

    def write(self, chunk: bytes) -> int:
        """
        Append a chunk to the staging file.

        Returns:
            Number of bytes written

        Raises:
            SpaceExhausted: If the volume is out of space or quota
            InternalError: For other write failures
        """
        self._require("write", LifecycleState.WRITING)
        self._chunks_etag.update(chunk)
        remaining = memoryview(chunk)
        with classified("write", self._staging_path):
            while remaining:
                written = self._writer.write(remaining)
                if written is None:
                    written = len(remaining)
                if written <= 0:
                    raise OSError(errno.EIO, "short write")
                remaining = remaining[written:]
        self._upload_size += len(chunk)
        return len(chunk)

    def chunks_finished(self) -> Tuple[int, str]:
        """
        Expose stats about written chunks.

        Returns:
            (upload_size, md5 hex of the written bytes)
        """
        return self._upload_size, self._chunks_etag.hexdigest()

    def staging_stat(self) -> FileStat:
        """Flush pending writes and stat the staging file."""
        self._require("staging_stat", LifecycleState.WRITING)
        with classified("flush", self._staging_path):
            self._writer.flush()
        return self._trim_preallocation()

    def _trim_preallocation(self) -> FileStat:
        # Preallocation may have grown the file past the bytes written
        with classified("fstat", self._staging_path):
            stat = self._writer.fstat()
        if stat.size > self._upload_size:
            logger.debug(f"Trimming {self._staging_path} from {stat.size} to {self._upload_size} bytes")
            with classified("truncate", self._staging_path):
                self._writer.truncate(self._upload_size)
            with classified("fstat", self._staging_path):
                stat = self._writer.fstat()
        return stat

    def commit(self) -> None:
        """
        Publish the staging file at the logical path.

        Flushes the staging file, trims any preallocated space beyond the
        bytes written, syncs and closes it, then renames it over the
        logical path in one filesystem operation. On any failure the staging
        file is removed (best effort) and the prior object, if any, is left
        untouched.

        Raises:
            SpaceExhausted: If flush/close runs out of space or quota
            InternalError: If close or rename fail for another reason
        """
        self._require("commit", LifecycleState.WRITING)
        staging = self._staging_path
        try:
            with classified("flush", staging):
                self._writer.flush()
            self._trim_preallocation()
            with classified("flush", staging):
                self._writer.sync()
            with classified("close", staging):
                self._writer.close()
            self._writer = None

            with classified("rename", self.data_file):
                self._volume.rename(staging, self.data_file)
        except VolumeError as e:
            logger.error(f"Error committing {staging} -> {self.data_file}: {e}")
            self._cleanup_staging()
            self._state = LifecycleState.ABORTED
            raise

        self._commit_succeeded = True
        self._staging_path = None
        self._state = LifecycleState.COMMITTED
        logger.debug(f"Committed {self.data_file}")

    def abort(self) -> None:
        """
        Discard an unfinished write.

        Closes the staging handle and removes the staging file, leaving no
        trace at the logical path. Cleanup failures are logged, never raised.
        """
        if self._state is LifecycleState.ABORTED:
            return
        self._require("abort", LifecycleState.WRITING)
        self._cleanup_staging()
        self._state = LifecycleState.ABORTED
        logger.debug(f"Aborted write of {self.data_file}")

    def _cleanup_staging(self) -> None:
        if self._writer is not None:
            try:
                self._writer.close()
            except OSError:
                logger.exception(f"Error closing staging file {self._staging_path}")
            self._writer = None

        if self._staging_path and not self._commit_succeeded:
            try:
                self._volume.unlink(self._staging_path)
            except FileNotFoundError:
                pass
            except OSError:
                logger.exception(f"Error removing staging file {self._staging_path}")
            self._staging_path = None

    # -- DELETE --------------------------------------------------------------

    def delete(self) -> None:
        """
        Unlink the object at the logical path.

        Raises:
            ObjectNotFound: If nothing was there (callers may treat as success)
            InternalError: If unlink fails for any other reason
        """
        if self._state in (LifecycleState.UNINITIALIZED, LifecycleState.CLOSED):
            raise LifecycleStateError(f"delete() not allowed in state {self._state.value}")
        with classified("unlink", self.data_file):
            self._volume.unlink(self.data_file)
        logger.debug(f"Deleted {self.data_file}")

    def quarantine(self, reason: str) -> None:
        """Reserved hook for marking the object corrupt; does nothing here."""
        logger.warning(f"Quarantine requested for {self.data_file}: {reason} (not supported, ignoring)")

    # -- teardown ------------------------------------------------------------

    def close(self) -> None:
        """
        Release handles and clean up any unfinished write. Idempotent.
        """
        if self._state is LifecycleState.CLOSED:
            return

        if self._state is LifecycleState.WRITING:
            logger.info(f"Write of {self.data_file} closed without commit; removing staging file")
            self._cleanup_staging()

        if self._reader is not None:
            try:
                self._reader.close()
            except OSError:
                logger.exception(f"Error closing {self.data_file}")
            self._reader = None

        self._state = LifecycleState.CLOSED
