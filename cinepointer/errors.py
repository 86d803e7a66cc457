from __future__ import annotations
from typing import Any, Dict, Optional


class CinePointerError(Exception):
    """Base class for every error raised by cinepointer.

    Attributes:
        code (str): Stable machine-readable error code.
        context (dict): Extra key/values useful when logging the failure.
    """

    code = "CINEPOINTER_ERROR"

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context: Dict[str, Any] = dict(context or {})

    def to_log_dict(self) -> Dict[str, Any]:
        """Return a flat dict describing the error for structured logging."""
        cause = self.__cause__
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": str(self),
            "context": self.context,
            "cause": str(cause) if cause is not None else None,
        }


class ValidationError(CinePointerError):
    """Malformed or missing metadata / event fields."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context=context)
        self.field = field


class InitializationError(ValidationError):
    """A timeline store could not build its canonical header."""

    code = "INITIALIZATION_ERROR"


class AlreadyInitializedError(CinePointerError):
    """init() was called a second time on the same store."""

    code = "ALREADY_INITIALIZED"


class RecorderStateError(CinePointerError):
    """A lifecycle call was made in a state that does not allow it."""

    code = "RECORDER_STATE_ERROR"


class ArtifactUnavailable(CinePointerError):
    """A video or screenshot path could not be resolved (e.g. page closed)."""

    code = "ARTIFACT_UNAVAILABLE"


class DependencyError(CinePointerError):
    """A required external tool is not installed."""

    code = "DEPENDENCY_ERROR"

    def __init__(self, dependency: str, message: Optional[str] = None):
        super().__init__(
            message or f"Required dependency not found: {dependency}",
            context={"dependency": dependency},
        )
        self.dependency = dependency


class DurabilityWarning(RuntimeWarning):
    """A durable append failed; the in-memory timeline is still intact.

    Recorded on the store and logged, never raised.
    """

    def __init__(self, message: str, *, line: Optional[str] = None):
        super().__init__(message)
        self.line = line
