"""Custom exceptions for the automation engine."""

from __future__ import annotations


class AutomationError(Exception):
    """Base exception for automation-related errors."""

    pass


class ConfigurationError(AutomationError):
    """Raised when a rule, condition or action is malformed at authoring time."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            field: Name of the offending field, when known
        """
        self.field = field
        super().__init__(message)


class StoreError(AutomationError):
    """Raised when the tabular store fails to serve a request."""

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            collection: Collection the failing call targeted
            original_error: Underlying exception raised by the backend
        """
        self.collection = collection
        self.original_error = original_error
        super().__init__(message)


class EntityNotFoundError(AutomationError):
    """Raised when a referenced row does not exist."""

    def __init__(self, collection: str, entity_id: str) -> None:
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection} row not found: {entity_id}")


class ReminderError(AutomationError):
    """Raised when a reminder cannot be delivered."""

    pass


__all__ = [
    "AutomationError",
    "ConfigurationError",
    "StoreError",
    "EntityNotFoundError",
    "ReminderError",
]
