"""Deterministic in-memory document store.

Reference implementation of :class:`~pyfieldinstall.store.base.DocumentStore`
running on the asyncio loop. Every read and write is a coroutine that yields
once before touching data, so concurrent callers interleave the way they do
against a remote database. Listener callbacks are always scheduled with
``loop.call_soon`` and never run inline with the write that caused them.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pyfieldinstall.exceptions import ConcurrentModification, NotFoundError
from pyfieldinstall.store.base import (
    CollectionSnapshot,
    DocumentCallback,
    DocumentSnapshot,
    ErrorCallback,
    ListenerRegistration,
    SnapshotCallback,
)

_logger = logging.getLogger(__name__)

_MISSING = object()


def _generate_id() -> str:
    return secrets.token_hex(10)


def _apply_patch(target: dict[str, Any], patch: Mapping[str, Any]) -> None:
    """Apply a patch; ``None`` values delete the field."""
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        else:
            target[key] = copy.deepcopy(value)


def _sort_key(order_by: str) -> Callable[[DocumentSnapshot], tuple[Any, ...]]:
    def key(doc: DocumentSnapshot) -> tuple[Any, ...]:
        value = doc.data.get(order_by)
        if value is None:
            return (1, "", doc.id)
        if isinstance(value, str):
            return (0, value.casefold(), doc.id)
        return (0, value, doc.id)

    return key


@dataclass(eq=False)
class _Listener:
    path: str
    loop: asyncio.AbstractEventLoop
    on_error: ErrorCallback | None
    on_snapshot: SnapshotCallback | None = None
    on_document: DocumentCallback | None = None
    doc_id: str | None = None
    field: str | None = None
    value: Any = None
    order_by: str | None = None
    active: bool = True


@dataclass
class _Collection:
    documents: dict[str, dict[str, Any]] = field(default_factory=dict)
    version: int = 0


class InMemoryDocumentStore:
    """In-memory schema-less document store with live listeners.

    Parameters
    ----------
    latency : float
        Seconds each operation sleeps before running. ``0`` still yields
        to the event loop once.
    """

    def __init__(self, *, latency: float = 0.0) -> None:
        self._latency = latency
        self._collections: dict[str, _Collection] = {}
        self._listeners: dict[str, list[_Listener]] = {}
        self._write_failures: dict[str, list[Exception]] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _suspend(self) -> None:
        await asyncio.sleep(self._latency)

    def _collection(self, path: str) -> _Collection:
        coll = self._collections.get(path)
        if coll is None:
            coll = _Collection()
            self._collections[path] = coll
        return coll

    def _check_write_failure(self, path: str) -> None:
        pending = self._write_failures.get(path)
        if pending:
            exc = pending.pop(0)
            if not pending:
                self._write_failures.pop(path, None)
            raise exc

    def _build_snapshot(
        self,
        path: str,
        *,
        field: str | None = None,
        value: Any = None,
        order_by: str | None = None,
    ) -> CollectionSnapshot:
        coll = self._collection(path)
        docs = [
            DocumentSnapshot(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in coll.documents.items()
            if field is None or data.get(field, _MISSING) == value
        ]
        if order_by is not None:
            docs.sort(key=_sort_key(order_by))
        return CollectionSnapshot(path=path, documents=tuple(docs), version=coll.version)

    def _document(self, path: str, doc_id: str) -> DocumentSnapshot | None:
        data = self._collection(path).documents.get(doc_id)
        if data is None:
            return None
        return DocumentSnapshot(id=doc_id, data=copy.deepcopy(data))

    def _changed(self, path: str, doc_id: str) -> None:
        """Bump the collection version and schedule listener deliveries."""
        coll = self._collection(path)
        coll.version += 1
        for listener in list(self._listeners.get(path, ())):
            if not listener.active:
                continue
            if listener.doc_id is not None:
                if listener.doc_id == doc_id:
                    self._schedule_document(listener)
                continue
            self._schedule_snapshot(listener)

    def _schedule_snapshot(self, listener: _Listener) -> None:
        snapshot = self._build_snapshot(
            listener.path,
            field=listener.field,
            value=listener.value,
            order_by=listener.order_by,
        )
        listener.loop.call_soon(self._deliver, listener, snapshot)

    def _schedule_document(self, listener: _Listener) -> None:
        assert listener.doc_id is not None  # noqa: S101
        document = self._document(listener.path, listener.doc_id)
        listener.loop.call_soon(self._deliver, listener, document)

    @staticmethod
    def _deliver(listener: _Listener, payload: Any) -> None:
        if not listener.active:
            return
        callback: Callable[[Any], None] | None = (
            listener.on_document if listener.doc_id is not None else listener.on_snapshot
        )
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            _logger.warning("Snapshot listener for %s raised", listener.path, exc_info=True)

    @staticmethod
    def _deliver_error(listener: _Listener, exc: Exception) -> None:
        if not listener.active:
            return
        # A failed listener is terminated, like a real change feed.
        listener.active = False
        if listener.on_error is None:
            _logger.warning("Unhandled listener error on %s: %s", listener.path, exc)
            return
        try:
            listener.on_error(exc)
        except Exception:
            _logger.warning("Error callback for %s raised", listener.path, exc_info=True)

    def _register(self, listener: _Listener) -> ListenerRegistration:
        self._listeners.setdefault(listener.path, []).append(listener)

        def _remove() -> None:
            listener.active = False
            listeners = self._listeners.get(listener.path)
            if listeners and listener in listeners:
                listeners.remove(listener)

        return ListenerRegistration(_remove)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, path: str, doc_id: str) -> dict[str, Any] | None:
        await self._suspend()
        data = self._collection(path).documents.get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def query(
        self,
        path: str,
        field: str | None = None,
        value: Any = None,
        *,
        order_by: str | None = None,
    ) -> CollectionSnapshot:
        await self._suspend()
        return self._build_snapshot(path, field=field, value=value, order_by=order_by)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, path: str, data: Mapping[str, Any]) -> str:
        await self._suspend()
        self._check_write_failure(path)
        coll = self._collection(path)
        doc_id = _generate_id()
        while doc_id in coll.documents:
            doc_id = _generate_id()
        coll.documents[doc_id] = {k: copy.deepcopy(v) for k, v in data.items() if v is not None}
        self._changed(path, doc_id)
        return doc_id

    async def set(self, path: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        await self._suspend()
        self._check_write_failure(path)
        coll = self._collection(path)
        existing = coll.documents.get(doc_id)
        if merge and existing is not None:
            _apply_patch(existing, data)
        else:
            coll.documents[doc_id] = {k: copy.deepcopy(v) for k, v in data.items() if v is not None}
        self._changed(path, doc_id)

    async def update(self, path: str, doc_id: str, patch: Mapping[str, Any]) -> None:
        await self._suspend()
        self._check_write_failure(path)
        existing = self._collection(path).documents.get(doc_id)
        if existing is None:
            raise NotFoundError(f"{path}/{doc_id} does not exist", collection=path, doc_id=doc_id)
        _apply_patch(existing, patch)
        self._changed(path, doc_id)

    async def update_if(
        self,
        path: str,
        doc_id: str,
        expected: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Apply *patch* only if every ``expected`` field still matches.

        Check and write happen without suspending, so no other coroutine
        can interleave between them. Returns the updated document.
        """
        await self._suspend()
        self._check_write_failure(path)
        existing = self._collection(path).documents.get(doc_id)
        if existing is None:
            raise NotFoundError(f"{path}/{doc_id} does not exist", collection=path, doc_id=doc_id)
        actual = {key: existing.get(key) for key in expected}
        mismatched = {key: value for key, value in actual.items() if value != expected[key]}
        if mismatched:
            raise ConcurrentModification(
                f"{path}/{doc_id} changed concurrently: expected {dict(expected)}, found {actual}",
                collection=path,
                doc_id=doc_id,
                actual=actual,
            )
        _apply_patch(existing, patch)
        self._changed(path, doc_id)
        return copy.deepcopy(existing)

    async def delete(self, path: str, doc_id: str) -> None:
        await self._suspend()
        self._check_write_failure(path)
        if self._collection(path).documents.pop(doc_id, None) is not None:
            self._changed(path, doc_id)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def listen(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
        *,
        field: str | None = None,
        value: Any = None,
        order_by: str | None = None,
    ) -> ListenerRegistration:
        """Subscribe to full snapshots of a collection or equality query.

        The current content is delivered asynchronously right after
        registration, then again after every write to the collection.
        """
        listener = _Listener(
            path=path,
            loop=asyncio.get_running_loop(),
            on_snapshot=on_snapshot,
            on_error=on_error,
            field=field,
            value=value,
            order_by=order_by,
        )
        registration = self._register(listener)
        self._schedule_snapshot(listener)
        return registration

    def listen_document(
        self,
        path: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
        on_error: ErrorCallback | None = None,
    ) -> ListenerRegistration:
        """Subscribe to a single document (``None`` when it does not exist)."""
        listener = _Listener(
            path=path,
            loop=asyncio.get_running_loop(),
            on_document=on_snapshot,
            on_error=on_error,
            doc_id=doc_id,
        )
        registration = self._register(listener)
        self._schedule_document(listener)
        return registration

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def fail_listeners(self, path: str, exc: Exception) -> int:
        """Terminate every active listener on *path* with *exc*.

        Returns the number of listeners that were failed.
        """
        failed = 0
        for listener in list(self._listeners.get(path, ())):
            if listener.active:
                listener.loop.call_soon(self._deliver_error, listener, exc)
                failed += 1
        return failed

    def fail_next_write(self, path: str, exc: Exception) -> None:
        """Make the next write to *path* raise *exc*."""
        self._write_failures.setdefault(path, []).append(exc)

    def listener_count(self, path: str) -> int:
        """Number of active listeners on *path*."""
        return sum(1 for listener in self._listeners.get(path, ()) if listener.active)
