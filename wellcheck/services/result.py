"""
Explicit result values for failures that are part of normal operation.

Push delivery and subject registry scans fail routinely (expired tokens,
database restarts). Callers get a ``Result`` back instead of an exception so
the failure path is visible at the call site.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


@dataclass(frozen=True)
class Result(Generic[ValueT, ErrorT]):
    """
    Either a value or the exception that prevented it.

    A ``None`` value is a valid success (a push service may answer with an
    empty body), so success is decided by ``error`` alone.
    """

    value: ValueT | None = None
    error: ErrorT | None = None

    def __post_init__(self) -> None:
        if self.value is not None and self.error is not None:
            raise ValueError("Result cannot hold both a value and an error")

    @classmethod
    def ok(cls, value: ValueT | None = None) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        if error is None:
            raise ValueError("Result.err() needs an exception")
        return cls(error=error)

    def is_ok(self) -> bool:
        return self.error is None

    def is_err(self) -> bool:
        return self.error is not None

    def unwrap(self) -> ValueT | None:
        """The value, or re-raise the stored exception."""
        if self.error is not None:
            raise self.error
        return self.value

    def unwrap_or(self, default: ValueT) -> ValueT | None:
        return default if self.error is not None else self.value

    def unwrap_err(self) -> ErrorT:
        if self.error is None:
            raise ValueError("Called unwrap_err() on a successful Result")
        return self.error
