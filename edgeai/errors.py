from __future__ import annotations


class EdgeAIError(RuntimeError):
    """Base exception for runtime inference failures."""


class InvalidImageError(EdgeAIError, ValueError):
    """Raised when an image source cannot be decoded or has zero area."""


class TensorShapeError(EdgeAIError, ValueError):
    """Raised when a tensor does not have the layout an operation expects."""


class UninitializedError(EdgeAIError):
    """Raised when an operation is invoked before the required setup."""


class SessionLoadError(EdgeAIError):
    """Raised when a required named artifact or session is missing."""

    def __init__(self, message: str, *, missing: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.missing = tuple(missing)


class UnknownRoleError(EdgeAIError, KeyError):
    """Raised when a requested role is not present in the loaded session set."""

    def __init__(self, role: str, available: tuple[str, ...] = ()) -> None:
        super().__init__(role)
        self.role = role
        self.available = tuple(available)

    def __str__(self) -> str:
        return f"unknown session role {self.role!r}; loaded roles: {list(self.available)}"


class InferenceError(EdgeAIError):
    """Raised when an underlying forward pass fails."""

    def __init__(self, message: str, *, role: str | None = None) -> None:
        super().__init__(message)
        self.role = role


class CancelledError(EdgeAIError):
    """Raised when a consumer touches a streaming operation it abandoned."""
