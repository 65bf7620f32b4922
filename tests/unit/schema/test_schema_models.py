"""Tests for schemas, models and the pre-save hook chain."""

import pytest

from idassigner.core.modules.schema.models import Model, Schema


@pytest.fixture
def collection(database):
    return database.get_collection("things")


class TestPreSaveHooks:
    """Tests for the save pipeline."""

    async def test_hooks_run_in_order_before_insert(self, schema, collection):
        calls = []

        @schema.pre_save
        async def first(model, document, persist):
            calls.append("first")
            document["first"] = True
            await persist(document)
            calls.append("first-done")

        @schema.pre_save
        async def second(model, document, persist):
            calls.append("second")
            assert document["first"] is True
            await persist(document)

        model = Model("things", schema, collection)
        doc = await model.create({"name": "a"})

        assert calls == ["first", "second", "first-done"]
        assert doc["first"] is True
        assert await collection.count_documents({"name": "a", "first": True}) == 1

    async def test_hook_can_stop_save(self, schema, collection):
        async def refuse(model, document, persist):
            return None

        schema.pre_save(refuse)
        await Model("things", schema, collection).create({"name": "a"})

        assert collection.documents == []

    async def test_create_copies_input(self, schema, collection):
        source = {"name": "a"}
        doc = await Model("things", schema, collection).create(source)

        assert "_id" in doc
        assert source == {"name": "a"}

    async def test_plugin_receives_schema_and_options(self, schema):
        def plugin(target, options, **kwargs):
            return target, options, kwargs

        assert schema.plugin(plugin, {"a": 1}, extra=2) == (schema, {"a": 1}, {"extra": 2})


class TestDiscriminators:
    """Tests for sub-type models."""

    async def test_discriminator_sets_key_and_shares_collection(self, schema, collection):
        base = Model("things", schema, collection)
        gadget = base.discriminator("Gadget")

        doc = await gadget.create({"name": "g"})

        assert doc["__t"] == "Gadget"
        assert gadget.collection is collection
        assert gadget.root is base
        assert base.root is base
        assert base.discriminators == {"Gadget": gadget}

    async def test_discriminator_schema_hooks_run_after_base(self, schema, collection):
        calls = []
        child_schema = Schema()

        async def base_hook(model, document, persist):
            calls.append("base")
            await persist(document)

        async def child_hook(model, document, persist):
            calls.append("child")
            await persist(document)

        schema.pre_save(base_hook)
        child_schema.pre_save(child_hook)
        base = Model("things", schema, collection)

        await base.discriminator("Gadget", child_schema).create({})
        await base.create({})

        assert calls == ["base", "child", "base"]

    def test_duplicate_discriminator_rejected(self, schema, collection):
        base = Model("things", schema, collection)
        base.discriminator("Gadget")
        with pytest.raises(ValueError, match="already registered"):
            base.discriminator("Gadget")

    def test_nested_discriminator_rejected(self, schema, collection):
        gadget = Model("things", schema, collection).discriminator("Gadget")
        with pytest.raises(ValueError, match="base model"):
            gadget.discriminator("Widget")

    def test_discriminator_needs_key(self, collection):
        base = Model("things", Schema(discriminator_key=None), collection)
        with pytest.raises(ValueError, match="no discriminator key"):
            base.discriminator("Gadget")
