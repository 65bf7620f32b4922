"""Readiness state of schemas carrying an id assigner."""

import asyncio
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ReadyState(StrEnum):
    """Lifecycle of an assigner: unready -> initializing -> ready | error."""

    UNREADY = "unready"  # No model bound yet
    INITIALIZING = "initializing"  # Counter warm-up in flight
    READY = "ready"
    ERROR = "error"  # Terminal


class SchemaState(BaseModel):
    """What the registry knows about one schema."""

    model_config = ConfigDict(arbitrary_types_allowed=True, protected_namespaces=())

    model_name: str
    ready_state: ReadyState = ReadyState.UNREADY
    assigner: Any  # IdAssigner owning the schema
    model: Any = None  # Model bound by initialise()
    error: BaseException | None = None
    # Set once the state settles on READY or ERROR
    settled: asyncio.Event = Field(default_factory=asyncio.Event)
