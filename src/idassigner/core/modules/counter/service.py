import asyncio
from typing import Any

import structlog
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from idassigner.config import Config
from idassigner.core.core import Service
from idassigner.core.modules.counter.models import CounterRecord
from idassigner.core.modules.field.generators import advance
from idassigner.core.modules.field.models import NormalizedOptions, SequenceFieldConfig, SequenceValue
from idassigner.errors import ConfigurationError, CounterContention
from idassigner.utils import now

logger = structlog.get_logger(__name__)


class CounterService(Service):
    """Persisted sequence counters, one record per model and discriminator.

    Values are never cached in process: every reservation reads the record and
    writes the following value back only if nobody changed the field meanwhile,
    so several processes can share one counters collection.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]], config: Config) -> None:
        super().__init__(database, config)
        self._collection = database.get_collection(config.counters_collection)

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self._collection.create_index([("model_name", 1), ("discriminator", 1)], unique=True)

    async def get_record(self, model_name: str, discriminator: str | None = None) -> CounterRecord | None:
        """Get the counter record of a model or one of its discriminators."""
        return CounterRecord.from_mongo(await self._collection.find_one(CounterRecord.key(model_name, discriminator)))

    async def ensure_initialized(self, options: NormalizedOptions) -> None:
        """Create or complete the counter records of a model and its discriminators."""
        owners: list[str | None] = [None, *options.discriminators]
        for discriminator in owners:
            seeds = options.sequence_seeds(discriminator)
            if seeds:
                await self._ensure_record(options.model_name, discriminator, seeds, options.timestamp)

    async def reserve_next(
        self,
        model_name: str,
        field: str,
        config: SequenceFieldConfig,
        discriminator: str | None = None,
    ) -> SequenceValue:
        """Hand out the current value of a sequence field and store the one after it.

        Raises:
            ConfigurationError: If the stored value does not fit the field config
            CounterContention: If every conditional write lost to another writer
        """
        key = CounterRecord.key(model_name, discriminator)
        path = f"fields.{field}"

        for attempt in range(1, self.config.counter_retry_count + 1):
            record = await self.get_record(model_name, discriminator)
            if record is None or field not in record.fields:
                await self._ensure_record(model_name, discriminator, {field: config.next_id}, None)
                continue

            current = record.fields[field]
            try:
                candidate = advance(current, config)
            except ValueError as e:
                # Stored value left over from a config with another field type
                raise ConfigurationError(str(e), model_name, field) from e
            result = await self._collection.update_one(
                {**key, path: current},
                {"$set": {path: candidate, "updated_at": now()}, "$inc": {"version": 1}},
            )
            if result.modified_count == 1:
                logger.debug("counter_reserved", model=model_name, field=field, value=current, attempt=attempt)
                return current

            await asyncio.sleep(self.config.counter_retry_delay_ms / 1000)

        logger.warning("counter_contention", model=model_name, field=field, attempts=self.config.counter_retry_count)
        raise CounterContention(
            f"Counter update lost to concurrent writers {self.config.counter_retry_count} times", model_name, field
        )

    async def _ensure_record(
        self,
        model_name: str,
        discriminator: str | None,
        seeds: dict[str, SequenceValue],
        timestamp: int | None,
    ) -> None:
        key = CounterRecord.key(model_name, discriminator)
        record = CounterRecord(model_name=model_name, discriminator=discriminator, fields=seeds, timestamp=timestamp)
        document = record.to_mongo()

        try:
            result = await self._collection.update_one(
                key,
                {"$setOnInsert": {k: v for k, v in document.items() if k not in key}},
                upsert=True,
            )
        except DuplicateKeyError:
            # Another process created the record between our lookup and insert
            logger.debug("counter_record_exists", model=model_name, discriminator=discriminator)
        else:
            if result.upserted_id is not None:
                logger.info("counter_record_created", model=model_name, discriminator=discriminator, seeds=seeds)
                return

        # Existing record: add seeds only for fields it does not track yet
        for field, seed in seeds.items():
            path = f"fields.{field}"
            await self._collection.update_one(
                {**key, path: {"$exists": False}},
                {"$set": {path: seed, "updated_at": now()}, "$inc": {"version": 1}},
            )

        if timestamp is not None:
            await self._reseed(model_name, discriminator, seeds, timestamp)

    async def _reseed(
        self, model_name: str, discriminator: str | None, seeds: dict[str, SequenceValue], timestamp: int
    ) -> None:
        """Reset stored values to the seeds when the configuration epoch is newer."""
        key = CounterRecord.key(model_name, discriminator)
        for _ in range(self.config.counter_retry_count):
            record = await self.get_record(model_name, discriminator)
            if record is None or (record.timestamp is not None and record.timestamp >= timestamp):
                return

            update = {f"fields.{field}": seed for field, seed in seeds.items()}
            result = await self._collection.update_one(
                {**key, "version": record.version},
                {"$set": {**update, "timestamp": timestamp, "updated_at": now()}, "$inc": {"version": 1}},
            )
            if result.modified_count == 1:
                logger.info("counter_record_reseeded", model=model_name, discriminator=discriminator, timestamp=timestamp)
                return

            await asyncio.sleep(self.config.counter_retry_delay_ms / 1000)

        raise CounterContention("Counter reseed lost to concurrent writers", model_name)
