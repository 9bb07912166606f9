"""
File-backed storage for apiary requests.

The whole collection lives in memory and is persisted to a single JSON
document (see apiary.store.codec). Every mutation rewrites the document.

Design Principles:
    - Load once: the file is read at construction and never re-read
    - Atomic: each mutation is one exclusive critical section that applies
      the change, re-encodes the collection and replaces the file
      (temp file in the same directory, fsync, os.replace)
    - All-or-nothing: if anything in the section fails, the in-memory map
      is restored and the file is left as it was
    - Copy-on-write: stored Requests are immutable and replaced wholesale

Hooks:
    Plugins customise create/update/create_response through hooks that run
    inside the exclusive section. Hooks call insert_record, replace_payload
    and append_response, which assume the lock is already held.
"""

import bisect
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Iterable

from apiary.errors import (
    DuplicateResponseError,
    KindMismatchError,
    RequestNotFoundError,
    StorageReadError,
    StorageWriteError,
    StoreClosedError,
)
from apiary.plugins import PluginContext, PluginRegistry, default_registry
from apiary.schema import EntryData, Request, Response, generate_id
from apiary.store.codec import VersionedCodec
from apiary.store.lock import ReadWriteLock

logger = logging.getLogger(__name__)


class RequestStore:
    """
    Request collection persisted to a JSON file.

    Usage:
        store = RequestStore("db.json")
        request_id = store.create("api/users", "http", {"url": "https://example.com/users"})
        store.rename(request_id, "api/users/list")
        store.close()

    Or use as context manager:
        with RequestStore("db.json") as store:
            ...
    """

    def __init__(
        self,
        path: str | Path,
        registry: PluginRegistry | None = None,
        codec: VersionedCodec | None = None,
    ) -> None:
        """
        Load the collection from path.

        A missing file is an empty collection; it is created on the first
        mutation.

        Raises:
            StorageReadError: If the file exists but cannot be read
            CodecError/UnknownKindError: If the file cannot be decoded
        """
        self.path = Path(path)
        self.registry = registry or default_registry
        self.codec = codec or VersionedCodec(self.registry)
        self._lock = ReadWriteLock()
        self._closed = False
        self._requests: dict[str, Request] = self._load()

    def _load(self) -> dict[str, Request]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("no document at %s, starting empty", self.path)
            return {}
        except OSError as e:
            raise StorageReadError(
                operation="load",
                path=str(self.path),
                underlying_error=str(e),
            ) from e
        requests = self.codec.loads(text)
        logger.debug("loaded %d requests from %s", len(requests), self.path)
        return requests

    def _flush(self) -> None:
        """Atomically replace the backing file with the current collection."""
        text = self.codec.dumps(self._requests)
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=str(directory),
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            finally:
                if tmp_path.exists():
                    tmp_path.unlink()
        except OSError as e:
            raise StorageWriteError(
                operation="flush",
                path=str(self.path),
                underlying_error=str(e),
            ) from e
        logger.debug("flushed %d requests to %s", len(self._requests), self.path)

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError(operation="use", path=str(self.path))

    @contextmanager
    def _transaction(self) -> Generator[None, None, None]:
        """Exclusive section that flushes on success and rolls back on failure."""
        with self._lock.write():
            self._check_open()
            snapshot = dict(self._requests)
            try:
                yield
                self._flush()
            except BaseException:
                self._requests = snapshot
                raise

    def _require(self, request_id: str, operation: str) -> Request:
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFoundError(request_id=request_id, operation=operation)
        return request

    def close(self) -> None:
        """Flush and close the store. Further calls raise StoreClosedError."""
        with self._lock.write():
            if self._closed:
                return
            self._flush()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "RequestStore":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Hook primitives (caller holds the exclusive lock)
    # =========================================================================

    def insert_record(self, request: Request) -> None:
        """Add a new request."""
        if request.id in self._requests:
            msg = f"Request id {request.id!r} already exists"
            raise ValueError(msg)
        self._requests[request.id] = request

    def replace_payload(self, request_id: str, payload: EntryData) -> None:
        """Swap a request's payload, keeping its path and history."""
        current = self._require(request_id, "update")
        self._requests[request_id] = current.model_copy(update={"data": payload})

    def append_response(self, request_id: str, response: Response) -> None:
        """
        Insert a response into a request's history, keeping sent_at order.

        Raises:
            DuplicateResponseError: If a response with the same sent_at exists
        """
        current = self._require(request_id, "create_response")
        sent = [r.sent_at for r in current.responses]
        i = bisect.bisect_left(sent, response.sent_at)
        if i < len(sent) and sent[i] == response.sent_at:
            raise DuplicateResponseError(
                request_id=request_id,
                operation="create_response",
                sent_at=response.sent_at.isoformat(),
            )
        responses = current.responses[:i] + (response,) + current.responses[i:]
        self._requests[request_id] = current.model_copy(update={"responses": responses})

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(
        self,
        path: str,
        kind: str,
        payload: EntryData | dict[str, Any] | None = None,
    ) -> str:
        """
        Create a request and return its new id.

        Args:
            path: Display path
            kind: Registered kind tag
            payload: Request payload (instance or dict); defaults to the kind's empty request

        Raises:
            UnknownKindError: If kind is not registered
            KindMismatchError: If payload belongs to another kind
            InvalidPayloadError: If a dict payload does not validate
        """
        plugin = self.registry.lookup(kind)
        data = plugin.parse_request(payload)

        with self._transaction():
            request_id = generate_id()
            while request_id in self._requests:
                request_id = generate_id()
            context = PluginContext(operation="create", request_id=request_id)
            plugin.create_hook(self, context, request_id, path, data)

        logger.info("created %s request %s at %r", kind, request_id, path)
        return request_id

    def update(self, request_id: str, payload: EntryData | dict[str, Any]) -> None:
        """
        Replace a request's payload. The kind of a request never changes.

        Raises:
            RequestNotFoundError: If the id is unknown
            UnknownKindError: If the payload's kind is not registered
            KindMismatchError: If the payload's kind differs from the request's
            InvalidPayloadError: If a dict payload does not validate
        """
        with self._transaction():
            current = self._require(request_id, "update")
            if isinstance(payload, EntryData):
                self.registry.lookup(payload.kind())
                if payload.kind() != current.kind:
                    raise KindMismatchError(
                        request_id=request_id,
                        operation="update",
                        expected=current.kind,
                        actual=payload.kind(),
                    )
            plugin = self.registry.lookup(current.kind)
            data = plugin.parse_request(payload)
            context = PluginContext(operation="update", request_id=request_id)
            plugin.update_hook(self, context, request_id, data)

        logger.info("updated request %s", request_id)

    def delete(self, request_id: str) -> None:
        """
        Remove a request and its history.

        Raises:
            RequestNotFoundError: If the id is unknown
        """
        with self._transaction():
            self._require(request_id, "delete")
            del self._requests[request_id]

        logger.info("deleted request %s", request_id)

    def rename(self, request_id: str, new_path: str) -> None:
        """
        Move a request to a new path. Paths need not be unique.

        Raises:
            RequestNotFoundError: If the id is unknown
        """
        with self._transaction():
            current = self._require(request_id, "rename")
            self._requests[request_id] = current.model_copy(update={"path": new_path})

        logger.info("renamed request %s to %r", request_id, new_path)

    def duplicate(self, request_id: str) -> str:
        """
        Copy a request's payload into a new request and return its id.

        The copy is placed at "<path> (n)" for the smallest free n and starts
        with an empty history.

        Raises:
            RequestNotFoundError: If the id is unknown
        """
        with self._transaction():
            original = self._require(request_id, "duplicate")
            plugin = self.registry.lookup(original.kind)

            taken = {r.path for r in self._requests.values()}
            n = 1
            while f"{original.path} ({n})" in taken:
                n += 1
            new_path = f"{original.path} ({n})"

            new_id = generate_id()
            while new_id in self._requests:
                new_id = generate_id()
            context = PluginContext(operation="duplicate", request_id=new_id)
            plugin.create_hook(self, context, new_id, new_path, original.data)

        logger.info("duplicated request %s as %s", request_id, new_id)
        return new_id

    def create_response(self, request_id: str, response: Response) -> None:
        """
        Record an execution result through the kind's record_response hook.

        Raises:
            RequestNotFoundError: If the id is unknown
            UnknownKindError: If the request's kind is not registered
            KindMismatchError: If the response belongs to another kind
            DuplicateResponseError: If a response with the same sent_at exists
        """
        with self._transaction():
            current = self._require(request_id, "create_response")
            plugin = self.registry.lookup(current.kind)
            if response.kind() != current.kind:
                raise KindMismatchError(
                    request_id=request_id,
                    operation="create_response",
                    expected=current.kind,
                    actual=response.kind(),
                )
            if any(r.sent_at == response.sent_at for r in current.responses):
                raise DuplicateResponseError(
                    request_id=request_id,
                    operation="create_response",
                    sent_at=response.sent_at.isoformat(),
                )
            context = PluginContext(operation="create_response", request_id=request_id)
            plugin.record_response_hook(self, context, request_id, response)

        logger.debug("recorded response for %s sent at %s", request_id, response.sent_at.isoformat())

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, request_id: str) -> Request:
        """
        Return one request.

        Raises:
            RequestNotFoundError: If the id is unknown
        """
        with self._lock.read():
            self._check_open()
            return self._require(request_id, "get")

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._requests)

    def __contains__(self, request_id: object) -> bool:
        with self._lock.read():
            return request_id in self._requests

    def list(self, ids: Iterable[str] | None = None) -> "list[Request]":
        """
        Return all requests sorted by id, or exactly the given ids in order.

        Raises:
            RequestNotFoundError: If any given id is unknown
        """
        with self._lock.read():
            self._check_open()
            if ids is None:
                return [self._requests[k] for k in sorted(self._requests)]
            return [self._require(request_id, "list") for request_id in ids]
