"""Typed accessors over the store collections.

Each adapter turns raw documents into frozen models. Documents that fail
validation are skipped with a warning: one bad record must never take a
whole view down.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from pyfieldinstall import _constants as C
from pyfieldinstall.exceptions import NotFoundError
from pyfieldinstall.models._base import FieldBaseModel
from pyfieldinstall.models.device import Device, DeviceStatus
from pyfieldinstall.models.installation import Installation
from pyfieldinstall.models.location import Location
from pyfieldinstall.models.team import Team, TeamMember, TeamMembership
from pyfieldinstall.models.telemetry import ServerData
from pyfieldinstall.store.base import (
    CollectionSnapshot,
    DocumentSnapshot,
    DocumentStore,
    ErrorCallback,
    ListenerRegistration,
)

_logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=FieldBaseModel)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CollectionAdapter(Generic[ModelT]):
    """Point reads, equality queries and subscriptions for one collection."""

    def __init__(self, store: DocumentStore, path: str, model: type[ModelT]) -> None:
        self._store = store
        self._path = path
        self._model = model

    @property
    def path(self) -> str:
        return self._path

    @property
    def store(self) -> DocumentStore:
        return self._store

    def document_field(self, name: str) -> str:
        """Translate a model field name into its document key."""
        if name in self._model.model_fields:
            return to_camel(name)
        return name

    def parse(self, doc_id: str, data: Mapping[str, Any]) -> ModelT | None:
        try:
            return self._model.from_document(doc_id, dict(data))
        except ValidationError as exc:
            _logger.warning(
                "Skipping malformed %s document %s: %d validation error(s)",
                self._path,
                doc_id,
                exc.error_count(),
            )
            return None

    def parse_snapshot(self, snapshot: CollectionSnapshot) -> tuple[ModelT, ...]:
        models: list[ModelT] = []
        for doc in snapshot.documents:
            model = self.parse(doc.id, doc.data)
            if model is not None:
                models.append(model)
        return tuple(models)

    async def find_by_id(self, doc_id: str) -> ModelT | None:
        data = await self._store.get(self._path, doc_id)
        if data is None:
            return None
        return self.parse(doc_id, data)

    async def get_by_id(self, doc_id: str) -> ModelT:
        """Read one document; raises :class:`NotFoundError` if absent or unreadable."""
        model = await self.find_by_id(doc_id)
        if model is None:
            raise NotFoundError(
                f"{self._path}/{doc_id} not found",
                collection=self._path,
                doc_id=doc_id,
            )
        return model

    async def query_by_equality(
        self,
        field: str,
        value: Any,
        *,
        order_by: str | None = None,
    ) -> list[ModelT]:
        snapshot = await self._store.query(
            self._path,
            self.document_field(field),
            value,
            order_by=self.document_field(order_by) if order_by else None,
        )
        return list(self.parse_snapshot(snapshot))

    async def update_fields(self, doc_id: str, **fields: Any) -> None:
        """Patch one document by model field names and stamp ``updatedAt``."""
        patch = {self.document_field(k): v for k, v in fields.items()}
        patch["updatedAt"] = _utcnow()
        await self._store.update(self._path, doc_id, patch)

    async def snapshot(self, *, order_by: str | None = None) -> list[ModelT]:
        """One-shot read of the whole collection."""
        snapshot = await self._store.query(
            self._path,
            order_by=self.document_field(order_by) if order_by else None,
        )
        return list(self.parse_snapshot(snapshot))

    def subscribe(
        self,
        on_snapshot: Callable[[tuple[ModelT, ...]], None],
        on_error: ErrorCallback | None = None,
        *,
        predicate: Callable[[ModelT], bool] | None = None,
        where: tuple[str, Any] | None = None,
        order_by: str | None = None,
    ) -> ListenerRegistration:
        """Subscribe to full-collection snapshots.

        ``where`` is pushed down to the store as an equality filter;
        ``predicate`` is applied client-side afterwards.
        """

        def _on_snapshot(snapshot: CollectionSnapshot) -> None:
            models = self.parse_snapshot(snapshot)
            if predicate is not None:
                models = tuple(m for m in models if predicate(m))
            on_snapshot(models)

        field: str | None = None
        value: Any = None
        if where is not None:
            field, value = self.document_field(where[0]), where[1]
        return self._store.listen(
            self._path,
            _on_snapshot,
            on_error,
            field=field,
            value=value,
            order_by=self.document_field(order_by) if order_by else None,
        )

    def watch(
        self,
        doc_id: str,
        on_change: Callable[[ModelT | None], None],
        on_error: ErrorCallback | None = None,
    ) -> ListenerRegistration:
        """Subscribe to a single document's change feed."""

        def _on_document(doc: DocumentSnapshot | None) -> None:
            on_change(self.parse(doc.id, doc.data) if doc is not None else None)

        return self._store.listen_document(self._path, doc_id, _on_document, on_error)


class DeviceStore(CollectionAdapter[Device]):
    def __init__(self, store: DocumentStore) -> None:
        super().__init__(store, C.DEVICES, Device)

    async def put(self, device: Device) -> None:
        """Create or replace a device document."""
        await self._store.set(self._path, device.id, device.to_document())

    async def update_status(self, device_id: str, status: DeviceStatus) -> None:
        await self.update_fields(device_id, status=status.value)


class LocationStore(CollectionAdapter[Location]):
    def __init__(self, store: DocumentStore) -> None:
        super().__init__(store, C.LOCATIONS, Location)

    async def get_by_location_id(self, location_id: str) -> Location:
        """Look a location up by its natural key rather than its document id."""
        matches = await self.query_by_equality("location_id", location_id)
        if not matches:
            raise NotFoundError(
                f"location {location_id!r} not found",
                collection=self._path,
                doc_id=location_id,
            )
        return min(matches, key=lambda loc: loc.id)


class TeamStore(CollectionAdapter[Team]):
    def __init__(self, store: DocumentStore) -> None:
        super().__init__(store, C.TEAMS, Team)

    def members_adapter(self, team_id: str) -> CollectionAdapter[TeamMember]:
        return CollectionAdapter(self._store, C.team_members_path(team_id), TeamMember)

    async def members(self, team_id: str) -> list[TeamMember]:
        return await self.members_adapter(team_id).snapshot()

    def subscribe_members(
        self,
        team_id: str,
        on_snapshot: Callable[[tuple[TeamMember, ...]], None],
        on_error: ErrorCallback | None = None,
    ) -> ListenerRegistration:
        return self.members_adapter(team_id).subscribe(on_snapshot, on_error)


class MembershipStore(CollectionAdapter[TeamMembership]):
    def __init__(self, store: DocumentStore) -> None:
        super().__init__(store, C.TEAM_MEMBERSHIPS, TeamMembership)


class InstallationStore(CollectionAdapter[Installation]):
    def __init__(self, store: DocumentStore) -> None:
        super().__init__(store, C.INSTALLATIONS, Installation)

    async def create(self, document: Mapping[str, Any]) -> Installation:
        doc_id = await self._store.add(self._path, document)
        return await self.get_by_id(doc_id)

    async def update_if(
        self,
        installation_id: str,
        expected: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> Installation:
        """Compare-and-set on one installation (keys are model field names)."""
        data = await self._store.update_if(
            self._path,
            installation_id,
            {self.document_field(k): v for k, v in expected.items()},
            {self.document_field(k): v for k, v in patch.items()},
        )
        model = self.parse(installation_id, data)
        if model is None:
            raise NotFoundError(
                f"{self._path}/{installation_id} is unreadable after update",
                collection=self._path,
                doc_id=installation_id,
            )
        return model


class ServerDataStore:
    """Read-only access to the ``serverData`` telemetry feed."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._path = C.SERVER_DATA

    def _parse(self, doc_id: str, data: Mapping[str, Any]) -> ServerData | None:
        try:
            return ServerData.model_validate({"deviceId": doc_id, **data})
        except ValidationError:
            _logger.warning("Skipping malformed %s document %s", self._path, doc_id)
            return None

    async def get_by_id(self, device_id: str) -> ServerData:
        data = await self._store.get(self._path, device_id)
        model = self._parse(device_id, data) if data is not None else None
        if model is None:
            raise NotFoundError(
                f"{self._path}/{device_id} not found",
                collection=self._path,
                doc_id=device_id,
            )
        return model

    async def query_by_equality(self, field: str, value: Any) -> list[ServerData]:
        snapshot = await self._store.query(self._path, field, value)
        return [m for doc in snapshot if (m := self._parse(doc.id, doc.data)) is not None]

    def subscribe(
        self,
        on_snapshot: Callable[[tuple[ServerData, ...]], None],
        on_error: ErrorCallback | None = None,
    ) -> ListenerRegistration:
        def _on_snapshot(snapshot: CollectionSnapshot) -> None:
            on_snapshot(tuple(m for doc in snapshot if (m := self._parse(doc.id, doc.data)) is not None))

        return self._store.listen(self._path, _on_snapshot, on_error)


@dataclass(frozen=True)
class EntityStores:
    """The typed adapters bound to one document store."""

    devices: DeviceStore
    locations: LocationStore
    teams: TeamStore
    installations: InstallationStore
    server_data: ServerDataStore
    memberships: MembershipStore

    @classmethod
    def from_store(cls, store: DocumentStore) -> EntityStores:
        return cls(
            devices=DeviceStore(store),
            locations=LocationStore(store),
            teams=TeamStore(store),
            installations=InstallationStore(store),
            server_data=ServerDataStore(store),
            memberships=MembershipStore(store),
        )
