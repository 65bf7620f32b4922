"""Shared pytest fixtures."""

import asyncio
import copy
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from idassigner.config import Config
from idassigner.core.core import Core
from idassigner.core.modules.schema.models import Schema

_MISSING = object()


def _get(document: dict[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set(document: dict[str, Any], path: str, value: Any) -> None:
    *parents, last = path.split(".")
    for part in parents:
        document = document.setdefault(part, {})
    document[last] = value


def _matches(document: dict[str, Any], query: dict[str, Any]) -> bool:
    for path, condition in query.items():
        value = _get(document, path)
        if isinstance(condition, dict) and "$exists" in condition:
            if (value is not _MISSING) != condition["$exists"]:
                return False
        elif condition is None:
            if value is not _MISSING and value is not None:
                return False
        elif value is _MISSING or value != condition:
            return False
    return True


def _apply(document: dict[str, Any], update: dict[str, Any], inserting: bool) -> None:
    for path, value in update.get("$set", {}).items():
        _set(document, path, copy.deepcopy(value))
    if inserting:
        for path, value in update.get("$setOnInsert", {}).items():
            _set(document, path, copy.deepcopy(value))
    for path, amount in update.get("$inc", {}).items():
        current = _get(document, path)
        _set(document, path, amount if current is _MISSING else current + amount)


class InMemoryCollection:
    """Async collection keeping documents in a list.

    Every operation yields to the event loop once before running atomically,
    so concurrent tasks interleave between reads and conditional writes the way
    separate clients of one server do.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.unique_indexes: list[tuple[str, ...]] = [("_id",)]

    async def create_index(self, keys: list[tuple[str, int]], unique: bool = False, **kwargs: Any) -> str:
        await asyncio.sleep(0)
        fields = tuple(name for name, _ in keys)
        if unique and fields not in self.unique_indexes:
            self.unique_indexes.append(fields)
        return "_".join(f"{name}_{direction}" for name, direction in keys)

    async def find_one(self, filter: dict[str, Any] | None = None) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        for document in self.documents:
            if _matches(document, filter or {}):
                return copy.deepcopy(document)
        return None

    async def count_documents(self, filter: dict[str, Any]) -> int:
        await asyncio.sleep(0)
        return sum(1 for document in self.documents if _matches(document, filter))

    async def insert_one(self, document: dict[str, Any]) -> SimpleNamespace:
        await asyncio.sleep(0)
        document.setdefault("_id", ObjectId())
        self._check_unique(document)
        self.documents.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document["_id"])

    async def update_one(self, filter: dict[str, Any], update: dict[str, Any], upsert: bool = False) -> SimpleNamespace:
        await asyncio.sleep(0)
        for index, document in enumerate(self.documents):
            if _matches(document, filter):
                updated = copy.deepcopy(document)
                _apply(updated, update, inserting=False)
                self._check_unique(updated, exclude=document)
                self.documents[index] = updated
                return SimpleNamespace(matched_count=1, modified_count=int(updated != document), upserted_id=None)

        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

        created = {
            path: value for path, value in filter.items() if not path.startswith("$") and not isinstance(value, dict)
        }
        _apply(created, update, inserting=True)
        created.setdefault("_id", ObjectId())
        self._check_unique(created)
        self.documents.append(created)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=created["_id"])

    def _check_unique(self, document: dict[str, Any], exclude: dict[str, Any] | None = None) -> None:
        for fields in self.unique_indexes:
            key = tuple(_get(document, name) for name in fields)
            key = tuple(None if value is _MISSING else value for value in key)
            for other in self.documents:
                if other is exclude:
                    continue
                other_key = tuple(_get(other, name) for name in fields)
                if tuple(None if value is _MISSING else value for value in other_key) == key:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {fields}", 11000)


class InMemoryDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, InMemoryCollection] = {}

    def get_collection(self, name: str) -> InMemoryCollection:
        return self.collections.setdefault(name, InMemoryCollection(name))

    def __getitem__(self, name: str) -> InMemoryCollection:
        return self.get_collection(name)


@pytest.fixture
def config():
    """Engine config with retry delays removed."""
    return Config(
        _env_file=None,
        database_url="mongodb://localhost:27017/idassigner_test",
        save_retry_delay_ms=0,
        counter_retry_count=500,
        counter_retry_delay_ms=0,
    )


@pytest.fixture
def database():
    return InMemoryDatabase()


@pytest.fixture
async def core(config, database):
    """Started core over the in-memory database; the registry is cleared on exit."""
    core = Core(config, database=database)
    async with core.lifespan():
        yield core


@pytest.fixture
def schema():
    return Schema()


@pytest.fixture
def counters(database, config):
    """Raw documents of the counters collection."""
    return database.get_collection(config.counters_collection)
