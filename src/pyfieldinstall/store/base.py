"""Document store boundary.

The store is schema-less: documents are plain dicts addressed by a
collection path (``"devices"``, ``"teams/T1/members"``) and a document id.
It supports point reads, single-field equality queries and live
subscriptions that deliver *full* snapshots, never deltas. There are no
joins and no multi-document transactions; the only atomic primitive is
:meth:`DocumentStore.update_if`, a compare-and-set on one document.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class DocumentSnapshot:
    """One document as observed at read time."""

    id: str
    data: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class CollectionSnapshot:
    """Full content of a collection (or equality query) at one point in time.

    ``version`` increases with every write to the collection and lets
    consumers detect replayed or out-of-date emissions.
    """

    path: str
    documents: tuple[DocumentSnapshot, ...] = ()
    version: int = 0
    read_time: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __iter__(self) -> Iterator[DocumentSnapshot]:
        return iter(self.documents)

    def __len__(self) -> int:
        return len(self.documents)

    def ids(self) -> list[str]:
        return [doc.id for doc in self.documents]


SnapshotCallback = Callable[[CollectionSnapshot], None]
DocumentCallback = Callable[[DocumentSnapshot | None], None]
ErrorCallback = Callable[[Exception], None]


class ListenerRegistration:
    """Handle returned by ``listen``; call :meth:`remove` to stop delivery."""

    def __init__(self, on_remove: Callable[[], None]) -> None:
        self._on_remove: Callable[[], None] | None = on_remove

    @property
    def active(self) -> bool:
        return self._on_remove is not None

    def remove(self) -> None:
        """Stop the subscription. Safe to call more than once."""
        on_remove = self._on_remove
        self._on_remove = None
        if on_remove is not None:
            on_remove()


class DocumentStore(Protocol):
    """Structural interface of the document database.

    Having a protocol here makes it easy to plug in a real backend while
    keeping :class:`~pyfieldinstall.store.memory.InMemoryDocumentStore`
    as the reference implementation.
    """

    async def get(self, path: str, doc_id: str) -> dict[str, Any] | None: ...

    async def query(
        self,
        path: str,
        field: str | None = None,
        value: Any = None,
        *,
        order_by: str | None = None,
    ) -> CollectionSnapshot: ...

    async def add(self, path: str, data: Mapping[str, Any]) -> str: ...

    async def set(self, path: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False) -> None: ...

    async def update(self, path: str, doc_id: str, patch: Mapping[str, Any]) -> None: ...

    async def update_if(
        self,
        path: str,
        doc_id: str,
        expected: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> dict[str, Any]: ...

    async def delete(self, path: str, doc_id: str) -> None: ...

    def listen(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
        *,
        field: str | None = None,
        value: Any = None,
        order_by: str | None = None,
    ) -> ListenerRegistration: ...

    def listen_document(
        self,
        path: str,
        doc_id: str,
        on_snapshot: DocumentCallback,
        on_error: ErrorCallback | None = None,
    ) -> ListenerRegistration: ...
