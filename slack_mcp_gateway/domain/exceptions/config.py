"""Configuration exceptions."""

from typing import Any


class ConfigError(Exception):
    """Raised when configuration is missing, unreadable or invalid.

    Fatal at startup; during a reload the previous configuration stays active.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
