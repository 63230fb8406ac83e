"""
Typed results for engine operations.

Expected refusals (wrong state, compliance cap, funds, disputes, timing) are
returned as a Result with a Failure; callers branch on `failure.kind`.
Only unexpected errors (storage down, programming mistakes) are raised.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class FailureKind(str, Enum):
    INVALID_STATE = "invalid_state"
    COMPLIANCE_LIMIT_EXCEEDED = "compliance_limit_exceeded"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_CONTEXT = "insufficient_context"  # inactive (frozen) wallet
    ALREADY_DISPUTED = "already_disputed"
    NOT_YET_DUE = "not_yet_due"
    NOT_FOUND = "not_found"
    NOT_VERIFIED = "not_verified"


class Failure(BaseModel):
    kind: FailureKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class Result(BaseModel, Generic[T]):
    value: Any = None
    failure: Failure | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def kind(self) -> FailureKind | None:
        return self.failure.kind if self.failure else None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: FailureKind, message: str, **details: Any) -> "Result":
        return cls(failure=Failure(kind=kind, message=message, details=details))

    def unwrap(self) -> Any:
        """Return the value or raise; for call sites that already checked preconditions."""
        if self.failure is not None:
            raise RuntimeError(f"{self.failure.kind.value}: {self.failure.message}")
        return self.value
