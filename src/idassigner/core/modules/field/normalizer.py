"""Turn user field specs into canonical field configs.

A field spec may be given as:

- ``True``/``False``: ObjectId
- a number: Number sequence seeded with it
- a string: a type tag (``"ObjectId"``, ``"UUID"``, ``"GUID"``) or a String sequence seed
- a mapping with a ``type`` key, or an already built field config
"""

from collections.abc import Mapping
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from idassigner.core.modules.field.generators import advance, call_next_id_function
from idassigner.core.modules.field.models import (
    FIELD_OPTION_KEYS,
    TYPE_ALIASES,
    BaseFieldConfig,
    FieldConfig,
    FieldType,
    NormalizedOptions,
    ObjectIdFieldConfig,
    StringFieldConfig,
)
from idassigner.errors import ConfigurationError

PRIMARY_KEY = "_id"

_field_config_adapter: TypeAdapter[FieldConfig] = TypeAdapter(FieldConfig)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _resolve_type(model_name: str, field: str, raw_type: Any) -> FieldType:
    if isinstance(raw_type, FieldType):
        return raw_type
    if isinstance(raw_type, str):
        if raw_type in TYPE_ALIASES:
            return TYPE_ALIASES[raw_type]
        try:
            return FieldType(raw_type)
        except ValueError:
            pass
    raise ConfigurationError(f"Unknown field type {raw_type!r}", model_name, field)


def _expand_shorthand(model_name: str, field: str, spec: Any) -> dict[str, Any]:
    """Resolve a shorthand spec into a mapping with an explicit type."""
    if isinstance(spec, bool):
        return {"type": FieldType.OBJECT_ID}

    if _is_number(spec):
        return {"type": FieldType.NUMBER, "next_id": spec}

    if isinstance(spec, str):
        if spec in TYPE_ALIASES or spec in FieldType:
            field_type = _resolve_type(model_name, field, spec)
            if field_type in (FieldType.NUMBER, FieldType.STRING):
                raise ConfigurationError(f"next_id not provided for field type {field_type}", model_name, field)
            return {"type": field_type}
        return {"type": FieldType.STRING, "next_id": spec}

    if isinstance(spec, BaseFieldConfig):
        return spec.model_dump()

    if isinstance(spec, Mapping):
        if "type" not in spec:
            raise ConfigurationError("Field config must define a type", model_name, field)
        return dict(spec)

    raise ConfigurationError(f"Unsupported field spec {spec!r}", model_name, field)


def _check_number(model_name: str, field: str, spec: dict[str, Any]) -> None:
    if not _is_number(spec.get("next_id")):
        raise ConfigurationError("next_id is required and must be a number", model_name, field)
    increment_by = spec.get("increment_by", 1)
    if not _is_number(increment_by):
        raise ConfigurationError("increment_by must be a number", model_name, field)

    function = spec.get("next_id_function")
    if function is None:
        return
    if not callable(function):
        raise ConfigurationError("next_id_function must be callable", model_name, field)
    try:
        probe = call_next_id_function(function, spec["next_id"], increment_by)
    except Exception as e:
        raise ConfigurationError(f"next_id_function failed on next_id: {e}", model_name, field) from e
    if not _is_number(probe):
        raise ConfigurationError("next_id_function must return a number", model_name, field)


def _check_string(model_name: str, field: str, spec: dict[str, Any]) -> None:
    next_id = spec.get("next_id")
    if not isinstance(next_id, str) or not next_id:
        raise ConfigurationError("next_id is required and must be a non-empty string", model_name, field)
    separator = spec.get("separator")
    if separator is not None and (not isinstance(separator, str) or not separator):
        raise ConfigurationError("separator must be a non-empty string", model_name, field)

    function = spec.get("next_id_function")
    if function is not None:
        if not callable(function):
            raise ConfigurationError("next_id_function must be callable", model_name, field)
        try:
            probe = function(next_id)
        except Exception as e:
            raise ConfigurationError(f"next_id_function failed on next_id: {e}", model_name, field) from e
        if not isinstance(probe, str):
            raise ConfigurationError("next_id_function must return a string", model_name, field)
        return

    try:
        advance(next_id, StringFieldConfig(next_id=next_id, separator=separator))
    except ValueError as e:
        raise ConfigurationError(f"next_id cannot be incremented: {e}", model_name, field) from e


def _check_uuid(model_name: str, field: str, spec: dict[str, Any]) -> None:
    spec.setdefault("version", 1)
    spec.setdefault("as_binary", False)
    if isinstance(spec["version"], bool) or spec["version"] not in (1, 4):
        raise ConfigurationError("UUID version must be either 1 or 4", model_name, field)
    if not isinstance(spec["as_binary"], bool):
        raise ConfigurationError("as_binary must be a boolean", model_name, field)


def normalize_field(model_name: str, field: str, spec: Any) -> FieldConfig:
    """Validate one field spec and build its canonical config.

    Raises:
        ConfigurationError: If the spec does not match any accepted shape
    """
    expanded = _expand_shorthand(model_name, field, spec)
    field_type = _resolve_type(model_name, field, expanded["type"])
    expanded["type"] = field_type

    unknown = set(expanded) - FIELD_OPTION_KEYS[field_type]
    if unknown:
        raise ConfigurationError(f"Unknown options for {field_type}: {', '.join(sorted(unknown))}", model_name, field)

    match field_type:
        case FieldType.NUMBER:
            _check_number(model_name, field, expanded)
        case FieldType.STRING:
            _check_string(model_name, field, expanded)
        case FieldType.UUID:
            _check_uuid(model_name, field, expanded)

    try:
        return _field_config_adapter.validate_python(expanded)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid field config: {e.errors()[0]['msg']}", model_name, field) from e


def normalize_fields(
    model_name: str, raw_fields: Mapping[str, Any] | None, is_discriminator: bool = False
) -> tuple[bool, dict[str, FieldConfig]]:
    """Normalize a field spec map.

    Base models get an implicit ObjectId ``_id`` unless one is configured.
    Discriminators inherit the base ``_id`` config instead.

    Returns:
        Whether any field needs a persisted counter, and the normalized map
    """
    raw_fields = dict(raw_fields or {})
    if PRIMARY_KEY not in raw_fields and not is_discriminator:
        raw_fields[PRIMARY_KEY] = ObjectIdFieldConfig()

    fields: dict[str, FieldConfig] = {}
    for field, spec in raw_fields.items():
        if not isinstance(field, str) or not field:
            raise ConfigurationError(f"Invalid field name {field!r}", model_name)
        # Counter records store values under fields.<name>, which must stay a single path segment
        if "." in field or field.startswith("$"):
            raise ConfigurationError(f"Invalid field name {field!r}: must not contain '.' or start with '$'", model_name, field)
        fields[field] = normalize_field(model_name, field, spec)

    network = any(config.is_sequence for config in fields.values())
    return network, fields


def normalize_options(
    model_name: str,
    fields: Mapping[str, Any] | None = None,
    discriminators: Mapping[str, Mapping[str, Any]] | None = None,
    timestamp: int | None = None,
) -> NormalizedOptions:
    """Normalize the plugin options of one model, including its discriminators."""
    if not model_name:
        raise ConfigurationError("Plugin model_name must be defined")
    if timestamp is not None and (isinstance(timestamp, bool) or not isinstance(timestamp, int)):
        raise ConfigurationError("timestamp must be an integer", model_name)

    network, base_fields = normalize_fields(model_name, fields)

    discriminator_fields: dict[str, dict[str, FieldConfig]] = {}
    for name, raw in (discriminators or {}).items():
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"Discriminator {name!r} config must be a mapping", model_name)
        d_network, d_fields = normalize_fields(f"{model_name}:{name}", raw, is_discriminator=True)
        if not d_fields:
            continue
        network = network or d_network
        discriminator_fields[name] = d_fields

    return NormalizedOptions(
        model_name=model_name,
        network=network,
        timestamp=timestamp,
        fields=base_fields,
        discriminators=discriminator_fields,
    )

