"""Canonical field configuration for id assignment."""

from collections.abc import Callable
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Values the engine can hand out
IdValue = Any  # ObjectId | Binary | str | int | float

# Values stored in a counter record
SequenceValue = int | float | str


class FieldType(StrEnum):
    """Id generation strategies."""

    OBJECT_ID = "ObjectId"
    UUID = "UUID"
    NUMBER = "Number"
    STRING = "String"


# Extra spelling accepted in shorthand and full configs
TYPE_ALIASES: dict[str, FieldType] = {"GUID": FieldType.UUID}


class BaseFieldConfig(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def is_sequence(self) -> bool:
        """Whether values come from a persisted counter."""
        return False


class ObjectIdFieldConfig(BaseFieldConfig):
    type: Literal[FieldType.OBJECT_ID] = FieldType.OBJECT_ID


class UUIDFieldConfig(BaseFieldConfig):
    type: Literal[FieldType.UUID] = FieldType.UUID
    version: Literal[1, 4] = 1
    as_binary: bool = False  # 16-byte BSON binary instead of the hyphenated string


class NumberFieldConfig(BaseFieldConfig):
    type: Literal[FieldType.NUMBER] = FieldType.NUMBER
    next_id: int | float  # First value handed out
    increment_by: int | float = 1
    next_id_function: Callable[..., int | float] | None = None  # (current, increment_by) -> next

    @property
    def is_sequence(self) -> bool:
        return True


class StringFieldConfig(BaseFieldConfig):
    type: Literal[FieldType.STRING] = FieldType.STRING
    next_id: str  # First value handed out
    separator: str | None = None  # Numeric suffix follows its last occurrence
    next_id_function: Callable[[str], str] | None = None  # current -> next, replaces suffix stepping

    @property
    def is_sequence(self) -> bool:
        return True


FieldConfig = Annotated[
    ObjectIdFieldConfig | UUIDFieldConfig | NumberFieldConfig | StringFieldConfig,
    Field(discriminator="type"),
]

SequenceFieldConfig = NumberFieldConfig | StringFieldConfig

# Allowed keys of a full (mapping) field spec, per type
FIELD_OPTION_KEYS: dict[FieldType, frozenset[str]] = {
    FieldType.OBJECT_ID: frozenset({"type"}),
    FieldType.UUID: frozenset({"type", "version", "as_binary"}),
    FieldType.NUMBER: frozenset({"type", "next_id", "increment_by", "next_id_function"}),
    FieldType.STRING: frozenset({"type", "next_id", "separator", "next_id_function"}),
}


class NormalizedOptions(BaseModel):
    """Plugin options after normalization, per model."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_name: str
    network: bool = False  # Any field needs a persisted counter
    timestamp: int | None = None  # Configuration epoch; a newer one reseeds stored counters
    fields: dict[str, FieldConfig] = Field(default_factory=dict)
    discriminators: dict[str, dict[str, FieldConfig]] = Field(default_factory=dict)

    def sequence_seeds(self, discriminator: str | None = None) -> dict[str, SequenceValue]:
        """Seed values of sequence fields owned by the base model or one discriminator."""
        fields = self.fields if discriminator is None else self.discriminators.get(discriminator, {})
        return {name: config.next_id for name, config in fields.items() if config.is_sequence}
