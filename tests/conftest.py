from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from pyfieldinstall.store import EntityStores, InMemoryDocumentStore


async def _settle(rounds: int = 10) -> None:
    """Let scheduled listener deliveries run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def stores(store: InMemoryDocumentStore) -> EntityStores:
    return EntityStores.from_store(store)


@pytest.fixture
def settle() -> Callable[..., Awaitable[None]]:
    return _settle


@pytest.fixture
def seed(store: InMemoryDocumentStore) -> Callable[[str, str, dict[str, Any]], Awaitable[None]]:
    async def _seed(path: str, doc_id: str, data: dict[str, Any]) -> None:
        await store.set(path, doc_id, data)

    return _seed
