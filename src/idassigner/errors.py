from abc import ABC


class AssignerError(ABC, Exception):
    """Base class for id assignment errors.

    Every error carries the model name and, where it applies, the field
    name, so failures can be traced back to a plugin configuration.
    """

    def __init__(self, message: str, model_name: str | None = None, field: str | None = None) -> None:
        self.reason = message
        self.model_name = model_name
        self.field = field
        super().__init__(self._format(message, model_name, field))

    @staticmethod
    def _format(message: str, model_name: str | None, field: str | None) -> str:
        context = ", ".join(
            part for part in (f"model={model_name}" if model_name else "", f"field={field}" if field else "") if part
        )
        return f"{message} ({context})" if context else message


class ConfigurationError(AssignerError):
    """Raised when a field specification or plugin setup is invalid."""


class UnknownFieldConfiguration(AssignerError):
    """Raised when an id is requested for a field without a configuration."""

    def __init__(self, model_name: str, field: str) -> None:
        super().__init__("Requested field does not have a field configuration", model_name, field)


class CounterContention(AssignerError):
    """Raised when the counter update keeps losing to concurrent writers."""


class DuplicateKeyOnSave(AssignerError):
    """Raised when a document still collides with an existing one after all save retries."""


class InitializationFailure(AssignerError):
    """Raised when counter warm-up failed; the assigner stays unusable afterwards."""
