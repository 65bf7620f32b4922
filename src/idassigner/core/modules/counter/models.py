"""Persisted counters for sequence fields."""

from datetime import datetime

from pydantic import ConfigDict, Field

from idassigner.core.db import MongoModel
from idassigner.core.modules.field.models import SequenceValue
from idassigner.utils import now


class CounterRecord(MongoModel):
    """Next values of every sequence field owned by a model or one of its discriminators.

    Indexed on (model_name, discriminator) - unique.
    Updated only through conditional writes; ``version`` grows on every write.
    """

    model_config = ConfigDict(protected_namespaces=())

    model_name: str
    discriminator: str | None = None  # None for the base model
    fields: dict[str, SequenceValue] = Field(default_factory=dict)  # Next value to hand out, per field
    version: int = 0
    timestamp: int | None = None  # Configuration epoch the seeds came from
    updated_at: datetime = Field(default_factory=now)

    @staticmethod
    def key(model_name: str, discriminator: str | None = None) -> dict[str, str | None]:
        """Query selecting the record of a model or discriminator."""
        return {"model_name": model_name, "discriminator": discriminator}
