"""Minimal document mapping: schemas with pre-save hooks, bound to collections."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pymongo.asynchronous.collection import AsyncCollection

Document = dict[str, Any]
Persist = Callable[[Document], Awaitable[None]]
# hook(model, document, persist): must call persist(document) to continue the save
PreSaveHook = Callable[["Model", Document, Persist], Awaitable[None]]

DEFAULT_DISCRIMINATOR_KEY = "__t"


class Schema:
    """Document shape shared by a model and its discriminators."""

    def __init__(self, discriminator_key: str | None = DEFAULT_DISCRIMINATOR_KEY) -> None:
        self.discriminator_key = discriminator_key
        self.pre_save_hooks: list[PreSaveHook] = []

    def pre_save(self, hook: PreSaveHook) -> PreSaveHook:
        """Register a hook run before every insert, in registration order."""
        self.pre_save_hooks.append(hook)
        return hook

    def plugin(self, plugin: Callable[..., Any], options: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        """Apply a plugin to this schema and return whatever it returns."""
        return plugin(self, options or {}, **kwargs)


class Model:
    """A schema bound to a collection, optionally as one of its discriminators."""

    def __init__(
        self,
        name: str,
        schema: Schema,
        collection: AsyncCollection[Document],
        discriminator_name: str | None = None,
        base: Model | None = None,
        discriminator_schema: Schema | None = None,
    ) -> None:
        self.name = name
        self.schema = schema
        self.collection = collection
        self.discriminator_name = discriminator_name
        self.base = base
        self._discriminator_schema = discriminator_schema
        self.discriminators: dict[str, Model] = {}

    @property
    def root(self) -> Model:
        """The base model, for discriminators; the model itself otherwise."""
        return self.base or self

    def discriminator(self, name: str, schema: Schema | None = None) -> Model:
        """Register a sub-type stored in the same collection."""
        if self.base is not None:
            raise ValueError("Discriminators can only be registered on a base model")
        if not self.schema.discriminator_key:
            raise ValueError(f"Model {self.name} has no discriminator key")
        if name in self.discriminators:
            raise ValueError(f"Discriminator {name} already registered on {self.name}")

        model = Model(self.name, self.schema, self.collection, name, self, schema)
        self.discriminators[name] = model
        return model

    @property
    def hooks(self) -> list[PreSaveHook]:
        hooks = list(self.schema.pre_save_hooks)
        if self._discriminator_schema is not None:
            hooks.extend(self._discriminator_schema.pre_save_hooks)
        return hooks

    async def create(self, document: Mapping[str, Any]) -> Document:
        """Run the pre-save hooks and insert the document."""
        doc = dict(document)
        if self.discriminator_name is not None and self.schema.discriminator_key:
            doc[self.schema.discriminator_key] = self.discriminator_name
        await self._chain(self.hooks, 0)(doc)
        return doc

    def _chain(self, hooks: list[PreSaveHook], index: int) -> Persist:
        async def step(doc: Document) -> None:
            if index == len(hooks):
                await self.collection.insert_one(doc)
                return
            await hooks[index](self, doc, self._chain(hooks, index + 1))

        return step
