from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import structlog
from pymongo.errors import DuplicateKeyError

from idassigner.core.modules.field.generators import next_object_id, next_uuid
from idassigner.core.modules.field.models import (
    FieldConfig,
    IdValue,
    NormalizedOptions,
    ObjectIdFieldConfig,
    UUIDFieldConfig,
)
from idassigner.core.modules.field.normalizer import normalize_options
from idassigner.core.modules.schema.models import Document, Model, Persist, Schema
from idassigner.core.modules.state.models import ReadyState, SchemaState
from idassigner.errors import ConfigurationError, DuplicateKeyOnSave, InitializationFailure, UnknownFieldConfiguration

if TYPE_CHECKING:
    from idassigner.core.core import Core

logger = structlog.get_logger(__name__)

PLUGIN_OPTION_KEYS = frozenset({"model_name", "fields", "discriminators", "timestamp"})


class IdAssigner:
    """Assigns ids to configured fields of a schema's documents before they are saved.

    Plugin options:
        model_name: Name the counters are stored under (required)
        fields: Field specs of the base model
        discriminators: Field specs per discriminator name
        timestamp: Configuration epoch; a newer value reseeds the stored counters
    """

    def __init__(self, schema: Schema, options: Mapping[str, Any], *, core: Core) -> None:
        if schema is None:
            raise ConfigurationError("Schema for the assigner must be provided")
        if not options or not options.get("model_name"):
            raise ConfigurationError("Plugin options must be specified, with the schema model_name")

        model_name = str(options["model_name"])
        if schema in core.registry:
            raise ConfigurationError("Provided schema already has an assigner instance", model_name)
        unknown = set(options) - PLUGIN_OPTION_KEYS
        if unknown:
            raise ConfigurationError(f"Unknown plugin options: {', '.join(sorted(unknown))}", model_name)

        self.schema = schema
        self.model_name = model_name
        self.plugin_options: dict[str, Any] = dict(options)
        self._registry = core.registry
        self._counters = core.services.counter
        self._config = core.config
        self.options: NormalizedOptions = self._normalize()

        self._registry.register(schema, model_name, self)
        schema.pre_save(self._on_save)
        logger.debug("assigner_attached", model=model_name, network=self.options.network)

    @classmethod
    def plugin(cls, schema: Schema, options: Mapping[str, Any], *, core: Core) -> IdAssigner:
        return cls(schema, options, core=core)

    @property
    def state(self) -> SchemaState:
        state = self._registry.get(self.schema)
        if state is None:
            raise InitializationFailure("Schema state was cleared from the registry", self.model_name)
        return state

    @property
    def ready_state(self) -> ReadyState:
        return self.state.ready_state

    def _normalize(self) -> NormalizedOptions:
        discriminators = self.plugin_options.get("discriminators") if self.schema.discriminator_key else None
        return normalize_options(
            self.model_name,
            self.plugin_options.get("fields"),
            discriminators,
            self.plugin_options.get("timestamp"),
        )

    async def refresh_options(self) -> None:
        """Re-read the plugin options and seed counters for fields added since."""
        self.options = self._normalize()
        if self.ready_state == ReadyState.READY and self.options.network:
            await self._counters.ensure_initialized(self.options)
        logger.debug("assigner_options_refreshed", model=self.model_name, network=self.options.network)

    async def initialise(self, model: Model) -> ReadyState:
        """Bind the model and warm up its counters, once.

        Concurrent callers share the in-flight initialization.

        Raises:
            InitializationFailure: If warm-up failed, now or on an earlier call
        """
        state = self.state
        if state.ready_state == ReadyState.READY:
            return ReadyState.READY
        if state.ready_state != ReadyState.UNREADY:
            return await self._wait_until_ready()

        self._registry.transition(self.schema, ReadyState.INITIALIZING, model=model.root)
        try:
            if self.options.network:
                await self._counters.ensure_initialized(self.options)
        except Exception as e:
            logger.exception("assigner_initialization_failed", model=self.model_name)
            self._registry.transition(self.schema, ReadyState.ERROR, error=e)
            raise InitializationFailure(f"Counter warm-up failed: {e}", self.model_name) from e

        self._registry.transition(self.schema, ReadyState.READY)
        logger.info("assigner_ready", model=self.model_name, network=self.options.network)
        return ReadyState.READY

    async def _wait_until_ready(self) -> ReadyState:
        state = self.state
        await state.settled.wait()
        if state.ready_state == ReadyState.ERROR:
            raise InitializationFailure(f"Assigner failed to initialise: {state.error}", self.model_name)
        return ReadyState.READY

    def get_field_config(self, field: str, discriminator: str | None = None) -> FieldConfig | None:
        """Field config of a discriminator, falling back to the base model's."""
        resolved = self._resolve(field, discriminator)
        return resolved[0] if resolved else None

    def _resolve(self, field: str, discriminator: str | None) -> tuple[FieldConfig, str | None] | None:
        # The owner decides which counter record a sequence field lives in
        if discriminator is not None:
            config = self.options.discriminators.get(discriminator, {}).get(field)
            if config is not None:
                return config, discriminator
        config = self.options.fields.get(field)
        return (config, None) if config is not None else None

    def configured_fields(self, discriminator: str | None = None) -> list[str]:
        """Names of all fields the assigner fills for the base model or a discriminator."""
        fields = list(self.options.fields)
        if discriminator is not None:
            fields.extend(f for f in self.options.discriminators.get(discriminator, {}) if f not in self.options.fields)
        return fields

    async def _generate(self, field: str, config: FieldConfig, owner: str | None) -> IdValue:
        match config:
            case ObjectIdFieldConfig():
                return next_object_id()
            case UUIDFieldConfig():
                return next_uuid(config)
            case _:
                return await self._counters.reserve_next(self.model_name, field, config, owner)

    async def get_next_id(self, field: str, discriminator: str | None = None) -> IdValue:
        """Produce one id outside of the save pipeline.

        Raises:
            UnknownFieldConfiguration: If the field is not configured
        """
        resolved = self._resolve(field, discriminator)
        if resolved is None:
            raise UnknownFieldConfiguration(self.model_name, field)
        await self._wait_until_ready()
        return await self._generate(field, *resolved)

    async def assign(
        self,
        document: Mapping[str, Any],
        discriminator: str | None = None,
        fields: Iterable[str] | None = None,
    ) -> dict[str, IdValue]:
        """Produce values for configured fields the document has no value for.

        Args:
            document: The document about to be saved (left untouched)
            discriminator: Discriminator the document belongs to, if any
            fields: Restrict assignment to these fields (default: all configured)

        Raises:
            UnknownFieldConfiguration: If a requested field is not configured
        """
        names = list(fields) if fields is not None else self.configured_fields(discriminator)
        targets: list[tuple[str, FieldConfig, str | None]] = []
        for name in names:
            resolved = self._resolve(name, discriminator)
            if resolved is None:
                raise UnknownFieldConfiguration(self.model_name, name)
            if document.get(name) is None:
                targets.append((name, *resolved))

        await self._wait_until_ready()
        return {name: await self._generate(name, config, owner) for name, config, owner in targets}

    async def _on_save(self, model: Model, document: Document, persist: Persist) -> None:
        await self.initialise(model.root)

        attempts = self._config.save_retry_count
        with structlog.contextvars.bound_contextvars(discriminator=model.discriminator_name):
            for attempt in range(1, attempts + 1):
                values = await self.assign(document, model.discriminator_name)
                document.update(values)
                try:
                    await persist(document)
                    return
                except DuplicateKeyError as e:
                    # Drop what we assigned so the next attempt draws fresh values
                    for field in values:
                        document.pop(field, None)
                    logger.warning("duplicate_key_on_save", model=self.model_name, attempt=attempt, error=str(e))
                    if attempt == attempts:
                        raise DuplicateKeyOnSave(f"Document still collides after {attempts} attempts", self.model_name) from e
                await asyncio.sleep(self._config.save_retry_delay_ms / 1000)
