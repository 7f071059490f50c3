"""Exceptions raised by the ingestion pipeline."""
from typing import Any, Optional


class SalesmailError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SalesmailError, ValueError):
    """Sink or source identity is unset or still a placeholder."""


class SourceUnavailable(SalesmailError):
    """The candidate query could not be executed."""


class SinkUnavailable(SalesmailError):
    """The sink could not be opened or read."""


class SinkWriteError(SalesmailError):
    """A row write failed after the sink was opened."""
