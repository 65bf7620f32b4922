from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from idassigner.config import Config
from idassigner.core.modules.assigner.service import IdAssigner
from idassigner.core.modules.schema.models import Model, Schema
from idassigner.core.modules.state.registry import StateRegistry
from idassigner.logging import setup_logging

if TYPE_CHECKING:
    from idassigner.core.modules.counter.service import CounterService


class Service:
    """Base class for services with direct database access."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]], config: Config) -> None:
        self.database = database
        self.config = config

    async def on_start(self) -> None:
        """Initialize service on application startup."""

    async def on_stop(self) -> None:
        """Cleanup service on application shutdown."""


class Services:
    """Service registry holding every database-backed service."""

    counter: CounterService

    def __init__(self, database: AsyncDatabase[dict[str, Any]], config: Config) -> None:
        from idassigner.core.modules.counter.service import CounterService  # noqa: PLC0415

        self.counter = CounterService(database, config)
        self._services: list[Service] = [self.counter]

    async def start_all(self) -> None:
        for service in self._services:
            await service.on_start()

    async def stop_all(self) -> None:
        for service in self._services:
            await service.on_stop()


class Core:
    """Container providing config, database, the schema state registry and all services."""

    config: Config
    mongo_client: AsyncMongoClient[dict[str, Any]] | None
    database: AsyncDatabase[dict[str, Any]]
    registry: StateRegistry
    services: Services

    def __init__(self, config: Config, database: AsyncDatabase[dict[str, Any]] | None = None) -> None:
        """Initialize core with config and MongoDB, unless a database is handed in."""
        self.config = config
        if database is None:
            self.mongo_client = AsyncMongoClient(config.database_url, uuidRepresentation="standard")
            database = self.mongo_client.get_database(urlparse(config.database_url).path[1:])
        else:
            self.mongo_client = None
        self.database = database
        self.registry = StateRegistry()
        self.services = Services(self.database, config)

    @classmethod
    def from_env(cls) -> Core:
        """Build a core from environment configuration with logging set up."""
        config = Config()  # type: ignore[call-arg]
        setup_logging(config.debug)
        return cls(config)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Manage the engine lifecycle - startup and shutdown."""
        await self.on_start()
        try:
            yield
        finally:
            await self.on_stop()

    async def on_start(self) -> None:
        await self.services.start_all()

    async def on_stop(self) -> None:
        """Stop services, forget attached schemas and close the MongoDB connection."""
        await self.services.stop_all()
        self.registry.clear()
        if self.mongo_client is not None:
            await self.mongo_client.aclose()

    def plugin(self, schema: Schema, options: Mapping[str, Any]) -> IdAssigner:
        """Attach an id assigner to a schema."""
        return IdAssigner.plugin(schema, options, core=self)

    def model(self, name: str, schema: Schema, collection: str | None = None) -> Model:
        """Bind a schema to a collection of this database."""
        return Model(name, schema, self.database.get_collection(collection or name))
