from __future__ import annotations

from typing import Any


class ConfigurationError(RuntimeError):
    """Raised when no candidate has a usable credential or endpoint."""


class ModelTimeoutError(TimeoutError):
    code = "MODEL_TIMEOUT"

    def __init__(self, message: str, *, label: str | None = None) -> None:
        super().__init__(message)
        self.label = label


class ProviderError(Exception):
    """Normalized upstream failure carrying the fields the classifier reads."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, status_code={self.status_code!r}, "
            f"error_code={self.error_code!r})"
        )


class EmptyReplyError(ProviderError):
    pass


__all__ = [
    "ConfigurationError",
    "EmptyReplyError",
    "ModelTimeoutError",
    "ProviderError",
]
