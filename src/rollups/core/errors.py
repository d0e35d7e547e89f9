"""Exception types and typed failure reasons for the rollup engine."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import OperationalError, SQLAlchemyError

FAILURE_TRANSIENT = "transient"
FAILURE_STORE = "store"
FAILURE_UNEXPECTED = "unexpected"


class RollupError(Exception):
    """Base class for rollup engine errors."""


class InvariantViolation(RollupError):
    """A persisted rollup broke one of its structural invariants.

    These are never converted into failure results; they indicate the
    delete-then-insert contract was not honoured and must surface loudly.
    """


class TopKInvariantError(InvariantViolation):
    """More than ``TOP_K`` rows, or a broken rank sequence, for one key."""


class LeaseError(RollupError):
    """Raised when a lease is re-acquired by the thread already holding it."""


@dataclass(frozen=True)
class RollupFailure:
    """Typed failure reason attached to a routine or batch result."""

    kind: str
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind == FAILURE_TRANSIENT

    @classmethod
    def from_exception(cls, exc: BaseException) -> RollupFailure:
        if isinstance(exc, OperationalError):
            kind = FAILURE_TRANSIENT
        elif isinstance(exc, SQLAlchemyError):
            kind = FAILURE_STORE
        else:
            kind = FAILURE_UNEXPECTED
        return cls(kind=kind, message=f"{type(exc).__name__}: {exc}")


__all__ = [
    "FAILURE_STORE",
    "FAILURE_TRANSIENT",
    "FAILURE_UNEXPECTED",
    "InvariantViolation",
    "LeaseError",
    "RollupError",
    "RollupFailure",
    "TopKInvariantError",
]
