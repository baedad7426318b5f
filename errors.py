from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    unauthenticated = "unauthenticated"
    not_found = "not_found"
    validation_failed = "validation_failed"
    rate_limited = "rate_limited"
    conflict = "conflict"
    unknown = "unknown"


class FinanceError(Exception):
    kind = ErrorKind.unknown


class UnauthenticatedError(FinanceError):
    kind = ErrorKind.unauthenticated


class NotFoundError(FinanceError, ValueError):
    kind = ErrorKind.not_found


class ValidationFailedError(FinanceError, ValueError):
    kind = ErrorKind.validation_failed


class RateLimitedError(FinanceError):
    kind = ErrorKind.rate_limited

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ConflictError(FinanceError):
    """Concurrent write detected; the caller may retry the whole operation."""

    kind = ErrorKind.conflict


@dataclass(frozen=True)
class ActionError:
    kind: ErrorKind
    message: str
    retry_after: Optional[float] = None

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.conflict, ErrorKind.rate_limited)


@dataclass(frozen=True)
class ActionResult:
    success: bool
    data: Any = None
    error: Optional[ActionError] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls, kind: ErrorKind, message: str, *, retry_after: Optional[float] = None
    ) -> "ActionResult":
        return cls(
            success=False,
            error=ActionError(kind=kind, message=message, retry_after=retry_after),
        )

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        assert self.error is not None
        error: dict[str, Any] = {
            "kind": self.error.kind.value,
            "message": self.error.message,
            "retryable": self.error.retryable,
        }
        if self.error.retry_after is not None:
            error["retry_after"] = self.error.retry_after
        return {"success": False, "error": error}
