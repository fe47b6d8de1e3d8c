"""Exception hierarchy shared by the patch engine components."""

from __future__ import annotations

from typing import Any, Mapping


class PatchEngineError(RuntimeError):
    """Base error carrying optional structured details."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class BaselineNotFound(PatchEngineError):
    """Raised when no baseline row exists for a store/file pair."""


class PatchNotFound(PatchEngineError):
    """Raised when a patch id does not resolve to a stored patch."""


class DiffCreationFailure(PatchEngineError):
    """Raised when neither the provider nor the fallback can express a difference."""


class DiffApplyError(PatchEngineError):
    """Raised when a diff cannot be applied (malformed hunks, parse mismatch)."""


class DiffProviderError(PatchEngineError):
    """Raised by a diff provider to signal failure distinctly from "no difference"."""


class StructuralParseError(PatchEngineError):
    """Raised when a structured source file cannot be parsed."""


class ValidationFailure(PatchEngineError):
    """Raised when a composed candidate fails validation."""


class NoChangesDetected(PatchEngineError):
    """Raised when an edit does not differ from the current baseline."""


class PersistenceFailure(PatchEngineError):
    """Raised when the backing store fails to read or write."""


class ReleaseNotFound(PatchEngineError):
    """Raised when a release id does not resolve to a stored release."""


class ReleaseStateError(PatchEngineError):
    """Raised when a release transition is not allowed from its current state."""


__all__ = [
    "BaselineNotFound",
    "DiffApplyError",
    "DiffCreationFailure",
    "DiffProviderError",
    "NoChangesDetected",
    "PatchEngineError",
    "PatchNotFound",
    "PersistenceFailure",
    "ReleaseNotFound",
    "ReleaseStateError",
    "StructuralParseError",
    "ValidationFailure",
]
