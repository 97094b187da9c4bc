"""
Tests for the object lifecycle controller.

Validates atomic publication, abort and cleanup of staging files,
metadata regeneration on read, state machine enforcement and error
classification on every step.
"""
from __future__ import annotations

import errno
import hashlib

import pytest

from volstore.diskfile import DiskFile, staging_name
from volstore.metadata import METADATA_KEY, read_metadata, write_metadata
from volstore.object_types import LifecycleState, LogicalObjectPath, ObjectState
from volstore.settings import Settings
from volstore.storage.base import PathTarget
from volstore.storage.errors import (
    InternalError,
    LifecycleStateError,
    MetadataCorrupt,
    ObjectNotFound,
    SpaceExhausted,
)

DATA_FILE = "/AUTH_test/photos/2024/cat.jpg"
DATA_DIR = "/AUTH_test/photos/2024"


def _put(volume, object_path, data: bytes, *, settings=None, metadata=None, content_length=None):
    """Run a full PUT through a DiskFile and return it."""
    with DiskFile(volume, object_path, settings=settings) as df:
        df.initialize()
        df.open_for_write(content_length=content_length)
        df.write(data)
        st = df.staging_stat()
        record = {
            "name": object_path.path,
            "X-Timestamp": "1700000000.00000",
            "X-Object-PUT-Mtime": "%016.05f" % st.mtime,
            "Content-Type": "image/jpeg",
            "Content-Length": str(len(data)),
            "ETag": hashlib.md5(data).hexdigest(),
        }
        record.update(metadata or {})
        df.put_metadata(record)
        df.commit()
    return df


def _staging_files(volume):
    return [name for name in volume.listdir(DATA_DIR) if name.startswith(".")]


class TestStagingName:
    """Test staging path generation."""

    def test_hidden_sibling_of_data_file(self):
        """Staging files live in the same directory, hidden, with a random suffix."""
        name = staging_name(DATA_FILE)
        assert name.startswith(f"{DATA_DIR}/.cat.jpg.")
        assert len(name.rsplit(".", 1)[1]) == 32

    def test_unique(self):
        """Two staging names for the same object never collide."""
        assert staging_name(DATA_FILE) != staging_name(DATA_FILE)


class TestInitialize:
    """Test object state detection."""

    def test_missing_object(self, volume, object_path):
        """A missing file initializes as NOT_EXISTS."""
        df = DiskFile(volume, object_path)
        assert df.initialize() is ObjectState.NOT_EXISTS
        assert df.state is LifecycleState.INITIALIZED
        assert df.stat is None

    def test_existing_object(self, volume, object_path):
        """An existing file initializes as CONSUMABLE with its stat."""
        volume.put_file(DATA_FILE, b"meow", mtime=1700000000.5)
        df = DiskFile(volume, object_path)
        assert df.initialize() is ObjectState.CONSUMABLE
        assert df.stat.size == 4
        assert df.stat.mtime == 1700000000.5

    def test_object_under_file_is_missing(self, volume, object_path):
        """A path component that is a file (ENOTDIR) means NOT_EXISTS."""
        volume.put_file(DATA_DIR, b"not a directory")
        df = DiskFile(volume, object_path)
        assert df.initialize() is ObjectState.NOT_EXISTS

    def test_stat_failure_is_internal(self, volume, object_path):
        """Unexpected stat failures propagate as InternalError."""
        volume.inject_error("stat", errno.EIO)
        df = DiskFile(volume, object_path)
        with pytest.raises(InternalError):
            df.initialize()

    def test_initialize_twice_rejected(self, volume, object_path):
        """initialize() is valid only once."""
        df = DiskFile(volume, object_path)
        df.initialize()
        with pytest.raises(LifecycleStateError):
            df.initialize()

    def test_object_state_before_initialize(self, volume, object_path):
        """Object state is unknown until initialize()."""
        with pytest.raises(LifecycleStateError):
            DiskFile(volume, object_path).object_state


class TestPutLifecycle:
    """Test create -> write -> commit."""

    def test_commit_publishes_content_and_metadata(self, volume, object_path):
        """After commit the object and its metadata are at the logical path."""
        df = _put(volume, object_path, b"hello world")
        assert df.commit_succeeded
        assert df.state is LifecycleState.CLOSED
        assert volume.read_file(DATA_FILE) == b"hello world"
        metadata = read_metadata(PathTarget(volume, DATA_FILE))
        assert metadata["Content-Length"] == "11"
        assert metadata["ETag"] == hashlib.md5(b"hello world").hexdigest()
        assert _staging_files(volume) == []
        assert volume.open_fds() == 0

    def test_nothing_visible_before_commit(self, volume, object_path):
        """While writing, the logical path holds nothing."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write()
            df.write(b"partial")
            assert not volume.exists(DATA_FILE)
            assert volume.exists(df.staging_path)
            assert volume.read_file(df.staging_path) == b"partial"
            df.abort()

    def test_overwrite_replaces_previous_object(self, volume, object_path):
        """A committed write replaces the prior object in one step."""
        _put(volume, object_path, b"version one")
        _put(volume, object_path, b"v2")
        assert volume.read_file(DATA_FILE) == b"v2"
        assert read_metadata(PathTarget(volume, DATA_FILE))["Content-Length"] == "2"

    def test_creates_missing_directories(self, volume):
        """Deep object names get their directories created."""
        path = LogicalObjectPath("AUTH_test", "photos", "a/b/c/d.txt")
        _put(volume, path, b"deep")
        assert volume.read_file("/AUTH_test/photos/a/b/c/d.txt") == b"deep"

    def test_chunks_finished(self, volume, object_path):
        """Upload size and md5 cover every chunk written."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write()
            for chunk in (b"ab", b"", b"cde"):
                df.write(chunk)
            assert df.chunks_finished() == (5, hashlib.md5(b"abcde").hexdigest())
            df.abort()

    def test_empty_object(self, volume, object_path):
        """Zero-length objects commit normally."""
        _put(volume, object_path, b"", content_length=0)
        assert volume.read_file(DATA_FILE) == b""

    def test_preallocate_with_content_length(self, volume, object_path):
        """A known content length preallocates the staging file."""
        _put(volume, object_path, b"12345", content_length=5)
        assert "preallocate" in volume.calls

    def test_no_preallocate_without_support(self, clock, object_path):
        """Volumes without preallocation skip it."""
        from volstore.storage.fakes import FakeVolume
        volume = FakeVolume(supports_preallocate=False, clock=clock)
        _put(volume, object_path, b"12345", content_length=5)
        assert "preallocate" not in volume.calls

    def test_no_preallocate_when_disabled(self, volume, object_path):
        """disable_fallocate turns preallocation off."""
        _put(volume, object_path, b"12345", settings=Settings(disable_fallocate=True), content_length=5)
        assert "preallocate" not in volume.calls

    def test_short_write_publishes_only_written_bytes(self, volume, object_path):
        """Preallocated space beyond the written bytes is not published."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write(content_length=10)
            df.write(b"abc")
            df.commit()

        assert volume.read_file(DATA_FILE) == b"abc"
        assert "truncate" in volume.calls

    def test_staging_stat_excludes_preallocation(self, volume, object_path):
        """staging_stat reports the bytes written, not the reserved length."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write(content_length=10)
            df.write(b"abc")
            assert df.staging_stat().size == 3
            df.commit()

        assert volume.stat(DATA_FILE).size == 3

    def test_full_write_is_not_truncated(self, volume, object_path):
        """A body matching the preallocated length needs no trim."""
        _put(volume, object_path, b"12345", content_length=5)
        assert volume.read_file(DATA_FILE) == b"12345"
        assert "truncate" not in volume.calls

    def test_staging_stat_reflects_written_bytes(self, volume, object_path, clock):
        """staging_stat reports size and mtime of the staging file."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write()
            clock.advance(10)
            df.write(b"xyz")
            st = df.staging_stat()
            assert st.size == 3
            assert st.mtime == clock.now
            df.abort()


class TestAbort:
    """Test discarding unfinished writes."""

    def test_abort_removes_staging(self, volume, object_path):
        """Abort leaves no staging file and no object."""
        df = DiskFile(volume, object_path)
        df.initialize()
        df.open_for_write()
        df.write(b"doomed")
        staging = df.staging_path
        df.abort()
        assert df.state is LifecycleState.ABORTED
        assert not volume.exists(staging)
        assert not volume.exists(DATA_FILE)
        assert volume.open_fds() == 0

    def test_abort_keeps_previous_object(self, volume, object_path):
        """Aborting an overwrite leaves the old object untouched."""
        _put(volume, object_path, b"original")
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write()
            df.write(b"replacement")
            df.abort()
        assert volume.read_file(DATA_FILE) == b"original"

    def test_abort_is_idempotent(self, volume, object_path):
        """A second abort is a no-op."""
        df = DiskFile(volume, object_path)
        df.initialize()
        df.open_for_write()
        df.abort()
        df.abort()
        assert df.state is LifecycleState.ABORTED

    def test_abort_outside_write_rejected(self, volume, object_path):
        """abort() needs a write in progress."""
        df = DiskFile(volume, object_path)
        df.initialize()
        with pytest.raises(LifecycleStateError):
            df.abort()

    def test_close_without_commit_cleans_up(self, volume, object_path):
        """Leaving the context without commit removes the staging file."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write()
            df.write(b"abandoned")
            staging = df.staging_path
        assert not volume.exists(staging)
        assert not volume.exists(DATA_FILE)
        assert _staging_files(volume) == []

    def test_exception_inside_context_cleans_up(self, volume, object_path):
        """An exception during the body copy still removes the staging file."""
        with pytest.raises(RuntimeError):
            with DiskFile(volume, object_path) as df:
                df.initialize()
                df.open_for_write()
                df.write(b"half")
                raise RuntimeError("client went away")
        assert _staging_files(volume) == []

    def test_cleanup_failure_is_not_raised(self, volume, object_path):
        """A failing unlink during abort is logged, never raised."""
        df = DiskFile(volume, object_path)
        df.initialize()
        df.open_for_write()
        volume.inject_error("unlink", errno.EIO)
        df.abort()
        assert df.state is LifecycleState.ABORTED


class TestCommitFailures:
    """Test commit errors and their cleanup."""

    def test_rename_failure_removes_staging(self, volume, object_path):
        """A failed rename leaves no staging file and no object."""
        df = DiskFile(volume, object_path)
        df.initialize()
        df.open_for_write()
        df.write(b"data")
        staging = df.staging_path
        volume.inject_error("rename", errno.EIO)
        with pytest.raises(InternalError):
            df.commit()
        assert df.state is LifecycleState.ABORTED
        assert not df.commit_succeeded
        assert not volume.exists(staging)
        assert not volume.exists(DATA_FILE)

    def test_rename_failure_keeps_previous_object(self, volume, object_path):
        """A failed overwrite leaves the prior object and metadata intact."""
        _put(volume, object_path, b"original")
        before = volume.xattrs(DATA_FILE)
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write()
            df.write(b"replacement")
            volume.inject_error("rename", errno.EIO)
            with pytest.raises(InternalError):
                df.commit()
        assert volume.read_file(DATA_FILE) == b"original"
        assert volume.xattrs(DATA_FILE) == before

    @pytest.mark.parametrize("op", ["flush", "close"])
    def test_out_of_space_during_commit(self, volume, object_path, op):
        """ENOSPC while flushing or closing is SpaceExhausted and cleans up."""
        df = DiskFile(volume, object_path)
        df.initialize()
        df.open_for_write()
        df.write(b"data")
        volume.inject_error(op, errno.ENOSPC)
        with pytest.raises(SpaceExhausted):
            df.commit()
        assert _staging_files(volume) == []
        assert volume.open_fds() == 0

    def test_commit_twice_rejected(self, volume, object_path):
        """A committed DiskFile cannot commit again."""
        df = DiskFile(volume, object_path)
        df.initialize()
        df.open_for_write()
        df.commit()
        with pytest.raises(LifecycleStateError):
            df.commit()


class TestSpaceExhaustion:
    """Test out-of-space detection on each allocating step."""

    @pytest.mark.parametrize("code", [errno.ENOSPC, errno.EDQUOT])
    def test_mkdir(self, volume, object_path, code):
        """Directory creation out of space."""
        volume.inject_error("mkdir", code)
        df = DiskFile(volume, object_path)
        df.initialize()
        with pytest.raises(SpaceExhausted):
            df.open_for_write()

    def test_create(self, volume, object_path):
        """Staging file creation out of space."""
        volume.inject_error("create", errno.ENOSPC)
        df = DiskFile(volume, object_path)
        df.initialize()
        with pytest.raises(SpaceExhausted):
            df.open_for_write()
        assert _staging_files(volume) == []

    def test_preallocate(self, volume, object_path):
        """Preallocation failure aborts the write and removes the staging file."""
        volume.inject_error("preallocate", errno.ENOSPC)
        df = DiskFile(volume, object_path)
        df.initialize()
        with pytest.raises(SpaceExhausted):
            df.open_for_write(content_length=1024)
        assert df.state is LifecycleState.ABORTED
        assert _staging_files(volume) == []

    def test_write(self, volume, object_path):
        """Body write out of quota."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write()
            volume.inject_error("write", errno.EDQUOT)
            with pytest.raises(SpaceExhausted):
                df.write(b"too much")
        assert _staging_files(volume) == []

    def test_metadata(self, volume, object_path):
        """Metadata write out of space."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_write()
            df.write(b"data")
            volume.inject_error("setxattr", errno.ENOSPC)
            with pytest.raises(SpaceExhausted):
                df.put_metadata({"name": DATA_FILE})
        assert not volume.exists(DATA_FILE)

    def test_staging_collision_is_internal(self, volume, object_path):
        """An EEXIST on create is not retried and surfaces as InternalError."""
        volume.inject_error("create", errno.EEXIST)
        df = DiskFile(volume, object_path)
        df.initialize()
        with pytest.raises(InternalError):
            df.open_for_write()


class TestRead:
    """Test GET/HEAD steps."""

    def test_read_committed_object(self, volume, object_path):
        """A committed object reads back with its stored metadata."""
        _put(volume, object_path, b"hello", metadata={"X-Object-Meta-Color": "orange"})
        with DiskFile(volume, object_path) as df:
            assert df.initialize() is ObjectState.CONSUMABLE
            handle = df.open_for_read()
            metadata = df.get_metadata()
            assert handle.read() == b"hello"
        assert metadata["X-Object-Meta-Color"] == "orange"
        assert metadata["Content-Type"] == "image/jpeg"
        assert volume.open_fds() == 0

    def test_open_missing_object(self, volume, object_path):
        """Reading a NOT_EXISTS object raises ObjectNotFound."""
        df = DiskFile(volume, object_path)
        df.initialize()
        with pytest.raises(ObjectNotFound):
            df.open_for_read()

    def test_object_removed_after_initialize(self, volume, object_path):
        """A file that vanishes between stat and open is reported, not retried."""
        volume.put_file(DATA_FILE, b"x")
        df = DiskFile(volume, object_path)
        df.initialize()
        volume.unlink(DATA_FILE)
        with pytest.raises(ObjectNotFound):
            df.open_for_read()

    def test_open_before_initialize(self, volume, object_path):
        """open_for_read() requires initialize()."""
        with pytest.raises(LifecycleStateError):
            DiskFile(volume, object_path).open_for_read()

    def test_write_while_reading_rejected(self, volume, object_path):
        """Reading and writing are exclusive."""
        volume.put_file(DATA_FILE, b"x")
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_read()
            with pytest.raises(LifecycleStateError):
                df.open_for_write()
            with pytest.raises(LifecycleStateError):
                df.write(b"y")

    def test_corrupt_metadata(self, volume, object_path):
        """Undecodable stored metadata raises MetadataCorrupt."""
        volume.put_file(DATA_FILE, b"x", xattrs={METADATA_KEY: b"garbage"})
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_read()
            with pytest.raises(MetadataCorrupt):
                df.get_metadata()


class TestRegeneration:
    """Test metadata regeneration for files changed outside the object server."""

    def test_missing_metadata_is_generated_and_persisted(self, volume, object_path):
        """A file without metadata gets a record built from its content."""
        volume.put_file(DATA_FILE, b"from nfs", mtime=1700000000.5)
        with DiskFile(volume, object_path) as df:
            df.initialize()
            handle = df.open_for_read()
            metadata = df.get_metadata()
            assert handle.tell() == 0
            assert handle.read() == b"from nfs"

        assert metadata["name"] == DATA_FILE
        assert metadata["Content-Length"] == "8"
        assert metadata["ETag"] == hashlib.md5(b"from nfs").hexdigest()
        assert metadata["Content-Type"] == "application/octet-stream"
        assert metadata["X-Timestamp"] == "1700000000.50000"
        assert read_metadata(PathTarget(volume, DATA_FILE)) == metadata

    def test_missing_metadata_without_open_handle(self, volume, object_path):
        """Regeneration works before open_for_read() and closes its own handle."""
        volume.put_file(DATA_FILE, b"abc")
        with DiskFile(volume, object_path) as df:
            df.initialize()
            metadata = df.get_metadata()
            assert volume.open_fds() == 0
        assert metadata["Content-Length"] == "3"

    def test_size_change_regenerates(self, volume, object_path, clock):
        """Content rewritten out of band with a new size is detected."""
        _put(volume, object_path, b"old", metadata={"X-Object-Meta-Keep": "yes"})
        clock.advance(5)
        volume.overwrite_in_place(DATA_FILE, b"new and longer")

        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_read()
            metadata = df.get_metadata()

        assert metadata["Content-Length"] == "14"
        assert metadata["ETag"] == hashlib.md5(b"new and longer").hexdigest()
        assert metadata["Content-Type"] == "image/jpeg"
        assert metadata["X-Object-Meta-Keep"] == "yes"

    def test_same_size_new_mtime_regenerates(self, volume, object_path, clock):
        """Same-size rewrites are caught through the recorded mtime."""
        _put(volume, object_path, b"aaaa")
        clock.advance(5)
        volume.overwrite_in_place(DATA_FILE, b"bbbb")

        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_read()
            metadata = df.get_metadata()

        assert metadata["ETag"] == hashlib.md5(b"bbbb").hexdigest()

    def test_fresh_metadata_is_not_rewritten(self, volume, object_path):
        """Fresh metadata is served as stored, without a setxattr."""
        _put(volume, object_path, b"steady")
        volume.calls.clear()
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.open_for_read()
            df.get_metadata()
        assert "setxattr" not in volume.calls

    def test_put_metadata_by_path(self, volume, object_path):
        """Metadata can be replaced on an existing object without opening it."""
        volume.put_file(DATA_FILE, b"x")
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.put_metadata({"name": DATA_FILE, "Content-Length": "1"})
        assert read_metadata(PathTarget(volume, DATA_FILE))["Content-Length"] == "1"


class TestDelete:
    """Test object removal."""

    def test_delete_existing(self, volume, object_path):
        """delete() unlinks the logical path."""
        _put(volume, object_path, b"bye")
        with DiskFile(volume, object_path) as df:
            df.initialize()
            df.delete()
        assert not volume.exists(DATA_FILE)

    def test_delete_missing(self, volume, object_path):
        """Deleting nothing raises ObjectNotFound."""
        with DiskFile(volume, object_path) as df:
            df.initialize()
            with pytest.raises(ObjectNotFound):
                df.delete()

    def test_delete_failure_is_internal(self, volume, object_path):
        """Unexpected unlink failures are InternalError."""
        volume.put_file(DATA_FILE, b"x")
        volume.inject_error("unlink", errno.EACCES)
        with DiskFile(volume, object_path) as df:
            df.initialize()
            with pytest.raises(InternalError):
                df.delete()
        assert volume.exists(DATA_FILE)

    def test_delete_before_initialize(self, volume, object_path):
        """delete() requires initialize()."""
        with pytest.raises(LifecycleStateError):
            DiskFile(volume, object_path).delete()


class TestClose:
    """Test teardown."""

    def test_close_is_idempotent(self, volume, object_path):
        """close() twice is harmless."""
        df = DiskFile(volume, object_path)
        df.initialize()
        df.close()
        df.close()
        assert df.state is LifecycleState.CLOSED

    def test_operations_after_close_rejected(self, volume, object_path):
        """A closed DiskFile accepts no further operations."""
        df = DiskFile(volume, object_path)
        df.initialize()
        df.close()
        with pytest.raises(LifecycleStateError):
            df.open_for_write()

    def test_quarantine_is_a_no_op(self, volume, object_path):
        """quarantine() only logs."""
        volume.put_file(DATA_FILE, b"x")
        df = DiskFile(volume, object_path)
        df.initialize()
        df.quarantine("bad checksum")
        assert volume.exists(DATA_FILE)
