"""Result values and error types shared by the negotiation core.

Business-rule outcomes (bad input, wrong status, wrong turn, unknown IDs) are
returned as :class:`Result` values so API and tool layers can render them.
Only broken invariants raise.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    VALIDATION = "validation_failed"
    INVALID_STATE = "invalid_state"
    NOT_YOUR_TURN = "not_your_turn"
    NOT_PARTICIPANT = "not_participant"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate_agreement"


@dataclass(frozen=True, slots=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    value: T | None = None
    code: ErrorCode | None = None
    message: str = ""
    errors: tuple[FieldError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.code is None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, code: ErrorCode, message: str, errors=()) -> Result[T]:
        return cls(code=code, message=message, errors=tuple(errors))

    def as_dict(self) -> dict[str, Any]:
        """Error payload; callers only use this on failures."""
        return {
            "error": self.message,
            "error_code": self.code.value if self.code else None,
            "errors": [e.as_dict() for e in self.errors],
        }


class TurnConsistencyError(RuntimeError):
    """Participants of one agreement disagree about whose turn it is."""

    def __init__(self, agreement_id: int, holders: list[int | None]):
        super().__init__(f"Agreement {agreement_id} has inconsistent turn holders: {holders}")
        self.agreement_id = agreement_id
        self.holders = holders
