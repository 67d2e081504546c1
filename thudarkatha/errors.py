"""Exception hierarchy shared by the service layer and the web views."""
from __future__ import annotations


class ThudarkathaError(RuntimeError):
    """Base class for application errors."""


class ConfigurationError(ThudarkathaError):
    """Raised when the text-generation backend is missing credentials or is unknown."""


class ClientError(ThudarkathaError):
    """Raised when a single call to the text-generation backend fails."""


class GenerationError(ThudarkathaError):
    """Raised when a generation operation cannot be started or its output is unusable."""


class StorageError(ThudarkathaError):
    """Raised when a story part cannot be persisted."""


__all__ = [
    "ClientError",
    "ConfigurationError",
    "GenerationError",
    "StorageError",
    "ThudarkathaError",
]
