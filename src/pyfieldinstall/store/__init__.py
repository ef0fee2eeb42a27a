"""Document store layer.

This package is the only place that talks to the document database. It
exposes the schema-less store boundary, an in-memory reference store and
typed adapters that turn documents into models.
"""

from pyfieldinstall.store.adapters import (
    CollectionAdapter,
    DeviceStore,
    EntityStores,
    InstallationStore,
    LocationStore,
    MembershipStore,
    ServerDataStore,
    TeamStore,
)
from pyfieldinstall.store.base import (
    CollectionSnapshot,
    DocumentSnapshot,
    DocumentStore,
    ListenerRegistration,
)
from pyfieldinstall.store.memory import InMemoryDocumentStore

__all__ = [
    "CollectionAdapter",
    "CollectionSnapshot",
    "DeviceStore",
    "DocumentSnapshot",
    "DocumentStore",
    "EntityStores",
    "InMemoryDocumentStore",
    "InstallationStore",
    "ListenerRegistration",
    "LocationStore",
    "MembershipStore",
    "ServerDataStore",
    "TeamStore",
]
