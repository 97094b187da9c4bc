"""
Operations Facade - Object protocol layer.

Drives one DiskFile per request through the fixed call order of each verb
and turns the outcome into an HTTP-like status code, keeping the CLI (or
any server front end) thin and testable.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from ..diskfile import DiskFile
from ..freshness import normalize_timestamp
from ..object_types import (
    LifecycleState,
    LogicalObjectPath,
    MetadataRecord,
    ObjectState,
    X_CONTENT_LENGTH,
    X_CONTENT_TYPE,
    X_ETAG,
    X_NAME,
    X_OBJECT_META_PREFIX,
    X_PUT_MTIME,
    X_TIMESTAMP,
)
from ..settings import Settings
from ..storage.base import Volume, VolumeFile
from ..storage.classifier import classified
from ..storage.errors import ObjectNotFound
from ..storage.registry import VolumeRegistry
from .mappers import status_for

__all__ = ["Operations", "OpsConfig", "ObjectResponse", "ObjectBody", "EtagMismatch", "IncompleteBody"]

logger = logging.getLogger(__name__)

Body = Union[bytes, BinaryIO, Iterable[bytes]]


class EtagMismatch(ValueError):
    """MD5 of the received body differs from the ETag the client sent."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"ETag mismatch: client sent {expected}, body hashes to {actual}")
        self.expected = expected
        self.actual = actual


class IncompleteBody(ValueError):
    """Fewer (or more) bytes arrived than the declared Content-Length."""

    def __init__(self, expected: int, received: int):
        super().__init__(f"Body length {received} does not match Content-Length {expected}")
        self.expected = expected
        self.received = received


class ObjectBody:
    """
    Streaming object content.

    Owns the DiskFile of a GET; the DiskFile is closed once the body is
    exhausted or close() is called, whichever comes first.
    """

    def __init__(self, diskfile: DiskFile, handle: VolumeFile, chunk_size: int) -> None:
        self._diskfile = diskfile
        self._handle = handle
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        if self._diskfile.state is LifecycleState.CLOSED:
            raise StopIteration
        try:
            with classified("read", self._diskfile.data_file):
                chunk = self._handle.read(self._chunk_size)
        except Exception:
            self.close()
            raise
        if not chunk:
            self.close()
            raise StopIteration
        return chunk

    def read_all(self) -> bytes:
        return b"".join(self)

    def close(self) -> None:
        self._diskfile.close()

    def __enter__(self) -> ObjectBody:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass
class ObjectResponse:
    """Outcome of one object request."""
    status: int
    metadata: MetadataRecord = field(default_factory=dict)
    body: Optional[ObjectBody] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class OpsConfig:
    """
    Configuration for Operations facade.

    Centralizes per-invocation policy so commands do not scatter it.
    """
    verify_etag: bool = True      # Reject PUT bodies whose MD5 differs from a client ETag


def _iter_body(body: Body, chunk_size: int) -> Iterator[bytes]:
    if isinstance(body, (bytes, bytearray, memoryview)):
        data = bytes(body)
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]
        return
    if hasattr(body, "read"):
        while True:
            chunk = body.read(chunk_size)
            if not chunk:
                return
            yield chunk
    for chunk in body:
        if chunk:
            yield chunk


def _user_metadata(user_metadata: Optional[Mapping[str, str]]) -> Dict[str, str]:
    result = {}
    for key, value in (user_metadata or {}).items():
        if not key.startswith(X_OBJECT_META_PREFIX):
            key = f"{X_OBJECT_META_PREFIX}{key}"
        result[key] = value
    return result


class Operations:
    """
    Object protocol facade.

    Design Notes: Operations Facade

    One method per verb, each creating a fresh DiskFile against the Volume
    the registry holds for the device:

    - head/get: initialize, open_for_read, get_metadata
    - put: initialize, open_for_write, write..., put_metadata, commit
    - post: initialize, get_metadata, put_metadata
    - delete: initialize, delete

    These methods raise the storage error taxonomy unchanged so the CLI can
    map it to exit codes. dispatch() is the server-style boundary that
    never raises and reports the outcome as a status code instead.
    """

    def __init__(self, config: OpsConfig, registry: VolumeRegistry, settings: Optional[Settings] = None):
        """
        Initialize Operations facade.

        Args:
            config: Configuration settings
            registry: Device -> Volume map (built once at startup)
            settings: Optional settings (if None, loaded from environment)
        """
        self.cfg = config
        self.registry = registry

        if settings is None:
            from ..settings import create_settings_from_env
            settings = create_settings_from_env()
        self.settings = settings

    def _diskfile(self, device: str, path: str) -> DiskFile:
        volume = self.registry[device]
        return DiskFile(volume, LogicalObjectPath.parse(path), settings=self.settings, device=device)

    @staticmethod
    def _require_exists(df: DiskFile) -> None:
        if df.initialize() is ObjectState.NOT_EXISTS:
            raise ObjectNotFound(f"No such object: {df.data_file}", op="stat", target=df.data_file)

    def devices(self) -> List[Tuple[str, Volume]]:
        """Devices served by this node, sorted by name."""
        return sorted(self.registry.items())

    def head(self, device: str, path: str) -> ObjectResponse:
        """
        Return an object's metadata without its content.

        Raises:
            ObjectNotFound: If the object does not exist
        """
        with self._diskfile(device, path) as df:
            self._require_exists(df)
            df.open_for_read()
            metadata = df.get_metadata()
        return ObjectResponse(status=200, metadata=metadata)

    def get(self, device: str, path: str) -> ObjectResponse:
        """
        Open an object for streaming.

        The returned response owns the open DiskFile through its body; the
        caller must exhaust or close the body.

        Raises:
            ObjectNotFound: If the object does not exist
        """
        df = self._diskfile(device, path)
        try:
            self._require_exists(df)
            handle = df.open_for_read()
            metadata = df.get_metadata()
        except BaseException:
            df.close()
            raise

        body = ObjectBody(df, handle, self.settings.io_chunk_size)
        return ObjectResponse(status=200, metadata=metadata, body=body)

    def put(self, device: str, path: str, body: Body, *,
            content_length: Optional[int] = None,
            content_type: Optional[str] = None,
            etag: Optional[str] = None,
            timestamp: Optional[float] = None,
            user_metadata: Optional[Mapping[str, str]] = None) -> ObjectResponse:
        """
        Store an object atomically.

        Args:
            device: Device identifier
            path: "account/container/object"
            body: bytes, a binary file object or an iterable of chunks
            content_length: Declared size; enables preallocation and is
                checked against the bytes received
            content_type: Content-Type to record (default from settings)
            etag: Client-computed MD5 to verify against the body
            timestamp: Request timestamp (default: now)
            user_metadata: X-Object-Meta-* items (prefix added if missing)

        Returns:
            201 response carrying the stored metadata

        Raises:
            IncompleteBody: If the body length differs from content_length
            EtagMismatch: If the body MD5 differs from etag
            SpaceExhausted: If the volume runs out of space or quota
            InternalError: For other storage failures
        """
        if content_length is not None and content_length < 0:
            raise ValueError(f"content_length must be non-negative, got {content_length}")

        with self._diskfile(device, path) as df:
            df.initialize()
            df.open_for_write(content_length=content_length)
            for chunk in _iter_body(body, self.settings.io_chunk_size):
                df.write(chunk)

            upload_size, body_etag = df.chunks_finished()
            if content_length is not None and upload_size != content_length:
                raise IncompleteBody(content_length, upload_size)
            if etag and self.cfg.verify_etag and etag.strip('"').lower() != body_etag:
                raise EtagMismatch(etag, body_etag)

            staged = df.staging_stat()
            metadata = {
                X_NAME: df.data_file,
                X_TIMESTAMP: normalize_timestamp(time.time() if timestamp is None else timestamp),
                X_PUT_MTIME: normalize_timestamp(staged.mtime),
                X_CONTENT_TYPE: content_type or self.settings.default_content_type,
                X_CONTENT_LENGTH: str(upload_size),
                X_ETAG: body_etag,
            }
            metadata.update(_user_metadata(user_metadata))

            df.put_metadata(metadata)
            df.commit()

        logger.info(f"PUT {device}{df.data_file} ({upload_size} bytes, etag {body_etag})")
        return ObjectResponse(status=201, metadata=metadata)

    def post(self, device: str, path: str, user_metadata: Mapping[str, str], *,
             timestamp: Optional[float] = None) -> ObjectResponse:
        """
        Replace an object's X-Object-Meta-* items, keeping its content.

        Raises:
            ObjectNotFound: If the object does not exist
        """
        with self._diskfile(device, path) as df:
            self._require_exists(df)
            current = df.get_metadata()
            metadata = {k: v for k, v in current.items() if not k.startswith(X_OBJECT_META_PREFIX)}
            metadata.update(_user_metadata(user_metadata))
            metadata[X_TIMESTAMP] = normalize_timestamp(time.time() if timestamp is None else timestamp)
            df.put_metadata(metadata)
        return ObjectResponse(status=202, metadata=metadata)

    def delete(self, device: str, path: str) -> ObjectResponse:
        """
        Remove an object.

        Raises:
            ObjectNotFound: If the object did not exist at initialization
            InternalError: If unlink fails for another reason
        """
        with self._diskfile(device, path) as df:
            self._require_exists(df)
            try:
                df.delete()
            except ObjectNotFound:
                logger.info(f"DELETE {device}{df.data_file}: already removed by a concurrent request")
        return ObjectResponse(status=204)

    def dispatch(self, method: str, device: str, path: str, **kwargs) -> ObjectResponse:
        """
        Run one verb and report the outcome as a status code.

        Args:
            method: GET, HEAD, PUT, POST or DELETE
            device: Device identifier
            path: "account/container/object"
            **kwargs: Verb-specific arguments (body, content_length...)

        Returns:
            ObjectResponse; failures carry the mapped status and the error text
        """
        handlers: Dict[str, Callable[..., ObjectResponse]] = {
            "GET": self.get,
            "HEAD": self.head,
            "PUT": self.put,
            "POST": self.post,
            "DELETE": self.delete,
        }
        handler = handlers.get(method.upper())
        if handler is None:
            return ObjectResponse(status=405, error=f"Method {method} not allowed")

        try:
            return handler(device, path, **kwargs)
        except Exception as e:
            status = status_for(e)
            if status >= 500:
                logger.error(f"{method} {device}/{path.lstrip('/')} failed: {e}")
            else:
                logger.debug(f"{method} {device}/{path.lstrip('/')} -> {status}: {e}")
            return ObjectResponse(status=status, error=str(e))
