"""Stateless id generation strategies, one per field type."""

import inspect
import uuid
from collections.abc import Callable
from typing import Any

from bson import Binary, ObjectId

from idassigner.core.modules.field.models import (
    NumberFieldConfig,
    SequenceFieldConfig,
    SequenceValue,
    StringFieldConfig,
    UUIDFieldConfig,
)
from idassigner.utils import split_numeric_suffix


def next_object_id() -> ObjectId:
    return ObjectId()


def next_uuid(config: UUIDFieldConfig) -> str | Binary:
    """Generate a time based (v1) or random (v4) UUID."""
    value = uuid.uuid4() if config.version == 4 else uuid.uuid1()
    if config.as_binary:
        return Binary.from_uuid(value)
    return str(value)


def _accepts_step(function: Callable[..., Any]) -> bool:
    try:
        inspect.signature(function).bind(0, 0)
    except TypeError:
        return False
    except ValueError:
        # No introspectable signature (some builtins); assume the full form
        return True
    return True


def call_next_id_function(function: Callable[..., Any], current: Any, increment_by: int | float) -> Any:
    """Call a Number ``next_id_function`` as ``f(current, step)`` or ``f(current)``."""
    if _accepts_step(function):
        return function(current, increment_by)
    return function(current)


def next_number(current: int | float, config: NumberFieldConfig) -> int | float:
    if config.next_id_function is not None:
        return call_next_id_function(config.next_id_function, current, config.increment_by)
    return current + config.increment_by


def next_string(current: str, config: StringFieldConfig) -> str:
    """Step a string id by incrementing its numeric suffix.

    Zero padding is kept as long as the number fits the original width:
    ``"000" -> "001"`` and ``"099" -> "100"``, while ``"999" -> "1000"`` grows.

    Raises:
        ValueError: If the value has no numeric suffix
    """
    if config.next_id_function is not None:
        return config.next_id_function(current)

    prefix, suffix = split_numeric_suffix(current, config.separator)
    return prefix + str(int(suffix) + 1).zfill(len(suffix))


def advance(current: SequenceValue, config: SequenceFieldConfig) -> SequenceValue:
    """Compute the value following ``current`` for a sequence field."""
    if isinstance(config, NumberFieldConfig):
        if isinstance(current, str):
            raise ValueError(f"Number sequence holds a string value {current!r}")
        return next_number(current, config)
    if not isinstance(current, str):
        raise ValueError(f"String sequence holds a non-string value {current!r}")
    return next_string(current, config)
