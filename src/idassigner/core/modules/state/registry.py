from typing import Any

import structlog

from idassigner.core.modules.state.models import ReadyState, SchemaState
from idassigner.errors import ConfigurationError

logger = structlog.get_logger(__name__)

# Transitions allowed by the lifecycle; ERROR is terminal
_TRANSITIONS: dict[ReadyState, frozenset[ReadyState]] = {
    ReadyState.UNREADY: frozenset({ReadyState.INITIALIZING}),
    ReadyState.INITIALIZING: frozenset({ReadyState.READY, ReadyState.ERROR}),
    ReadyState.READY: frozenset(),
    ReadyState.ERROR: frozenset(),
}


class StateRegistry:
    """Schema states keyed by schema identity.

    One registry is created per Core and handed to every assigner; clearing it
    forgets all attached schemas (used between test runs and on shutdown).
    """

    def __init__(self) -> None:
        self._states: dict[int, tuple[object, SchemaState]] = {}

    def __contains__(self, schema: object) -> bool:
        return id(schema) in self._states

    def __len__(self) -> int:
        return len(self._states)

    def register(self, schema: object, model_name: str, assigner: Any) -> SchemaState:
        """Record a new assigner for a schema.

        Raises:
            ConfigurationError: If the schema already has an assigner
        """
        if schema in self:
            raise ConfigurationError("Provided schema already has an assigner instance", model_name)
        state = SchemaState(model_name=model_name, assigner=assigner)
        # The schema is kept alongside its state so its id() cannot be reused
        self._states[id(schema)] = (schema, state)
        logger.debug("schema_registered", model=model_name)
        return state

    def get(self, schema: object) -> SchemaState | None:
        entry = self._states.get(id(schema))
        return entry[1] if entry else None

    def transition(self, schema: object, ready_state: ReadyState, **changes: Any) -> SchemaState:
        """Move a schema to a new ready state, updating other state fields along."""
        state = self.get(schema)
        if state is None:
            raise KeyError("Schema is not registered")
        if ready_state not in _TRANSITIONS[state.ready_state]:
            raise RuntimeError(f"Invalid transition {state.ready_state} -> {ready_state} for {state.model_name}")

        state.ready_state = ready_state
        for name, value in changes.items():
            setattr(state, name, value)
        if ready_state in (ReadyState.READY, ReadyState.ERROR):
            state.settled.set()

        logger.debug("schema_state_changed", model=state.model_name, ready_state=ready_state)
        return state

    def clear(self) -> None:
        self._states.clear()
