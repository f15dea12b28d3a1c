"""Field validation for agreement drafts and their participant sets.

Validation is a pure function over a draft. Defaulting of ``status`` and
``agreement_type`` is a separate normalization step that only runs for new
records (see :func:`normalize_draft`).
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from accord.errors import FieldError
from accord.models import (
    AGREEMENT_TYPES, EQUITY_PAYMENTS, HOURLY_PAYMENTS, PAYMENT_TYPES, STATUSES,
    Agreement, AgreementStatus, AgreementType,
)
from accord.utils import parse_id_list

MAX_WEEKLY_HOURS = 40
MAX_EQUITY_PERCENTAGE = Decimal("100")


@dataclass
class AgreementDraft:
    """A possibly incomplete set of agreement terms."""

    agreement_type: str | None = None
    status: str | None = None
    payment_type: str | None = None
    hourly_rate: Decimal | None = None
    equity_percentage: Decimal | None = None
    weekly_hours: int | None = None
    milestone_ids: list[int] = field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None
    tasks: str | None = None
    terms: str | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> AgreementDraft:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "milestone_ids" in values:
            values["milestone_ids"] = parse_id_list(values["milestone_ids"])
        for key in ("hourly_rate", "equity_percentage"):
            if values.get(key) is not None:
                values[key] = _to_decimal(values[key])
        for key in ("start_date", "end_date"):
            if isinstance(values.get(key), str):
                values[key] = _to_date(values[key])
        return cls(**values)

    @classmethod
    def from_agreement(cls, agreement: Agreement) -> AgreementDraft:
        return cls(
            agreement_type=agreement.agreement_type, status=agreement.status,
            payment_type=agreement.payment_type, hourly_rate=agreement.hourly_rate,
            equity_percentage=agreement.equity_percentage, weekly_hours=agreement.weekly_hours,
            milestone_ids=list(agreement.milestone_ids), start_date=agreement.start_date,
            end_date=agreement.end_date, tasks=agreement.tasks, terms=agreement.terms,
        )

    def merged(self, overrides: dict[str, Any]) -> AgreementDraft:
        """Copy of this draft with the non-None entries of *overrides* applied."""
        given = {k: v for k, v in overrides.items() if v is not None}
        patch = AgreementDraft.from_mapping(given)
        return replace(self, **{f.name: getattr(patch, f.name) for f in fields(patch) if f.name in given})


@dataclass(frozen=True)
class ParticipantDraft:
    user_id: int | None
    user_role: str | None
    is_initiator: bool | None


def _to_decimal(value: Any) -> Any:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        # Left as-is so validation reports it as not a number
        return value


def _to_date(value: str) -> Any:
    if not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return value


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def normalize_draft(draft: AgreementDraft) -> AgreementDraft:
    """Fill in defaults for a brand-new agreement.

    A blank status becomes ``Pending``; a blank type is inferred from
    ``weekly_hours`` (present means Mentorship). Explicit values are kept.
    """
    status = draft.status
    agreement_type = draft.agreement_type
    if _blank(status):
        status = AgreementStatus.PENDING.value
    if _blank(agreement_type):
        agreement_type = (AgreementType.MENTORSHIP.value if draft.weekly_hours is not None
                          else AgreementType.CO_FOUNDER.value)
    return replace(draft, status=status, agreement_type=agreement_type)


def _check_number(errors: list[FieldError], name: str, value: Any, *, low: Decimal,
                  high: Decimal | None = None, low_inclusive: bool = True) -> None:
    if not isinstance(value, (int, Decimal, float)) or isinstance(value, bool):
        errors.append(FieldError(name, "is not a number"))
        return
    number = Decimal(str(value))
    if not number.is_finite():
        errors.append(FieldError(name, "is not a number"))
        return
    if low_inclusive and number < low:
        errors.append(FieldError(name, f"must be greater than or equal to {low}"))
    elif not low_inclusive and number <= low:
        errors.append(FieldError(name, f"must be greater than {low}"))
    if high is not None and number > high:
        errors.append(FieldError(name, f"must be less than or equal to {high}"))


def validate_agreement(draft: AgreementDraft) -> list[FieldError]:
    errors: list[FieldError] = []

    if _blank(draft.agreement_type):
        errors.append(FieldError("agreement_type", "can't be blank"))
    elif draft.agreement_type not in AGREEMENT_TYPES:
        errors.append(FieldError("agreement_type", "is not included in the list"))

    if _blank(draft.status):
        errors.append(FieldError("status", "can't be blank"))
    elif draft.status not in STATUSES:
        errors.append(FieldError("status", "is not included in the list"))

    if _blank(draft.payment_type):
        errors.append(FieldError("payment_type", "can't be blank"))
    elif draft.payment_type not in PAYMENT_TYPES:
        errors.append(FieldError("payment_type", "is not included in the list"))

    dates_ok = True
    for name in ("start_date", "end_date"):
        value = getattr(draft, name)
        if value is None:
            errors.append(FieldError(name, "can't be blank"))
            dates_ok = False
        elif not isinstance(value, date):
            errors.append(FieldError(name, "is not a valid date"))
            dates_ok = False
    if _blank(draft.tasks):
        errors.append(FieldError("tasks", "can't be blank"))

    if draft.payment_type in HOURLY_PAYMENTS:
        if draft.hourly_rate is None:
            errors.append(FieldError(
                "hourly_rate", f"must be present for {draft.payment_type.lower()} payment"))
        else:
            _check_number(errors, "hourly_rate", draft.hourly_rate, low=Decimal("0"))

    if draft.payment_type in EQUITY_PAYMENTS:
        if draft.equity_percentage is None:
            errors.append(FieldError(
                "equity_percentage", f"must be present for {draft.payment_type.lower()} payment"))
        else:
            _check_number(errors, "equity_percentage", draft.equity_percentage,
                          low=Decimal("0"), high=MAX_EQUITY_PERCENTAGE)

    if draft.agreement_type == AgreementType.MENTORSHIP.value:
        if draft.weekly_hours is None:
            errors.append(FieldError("weekly_hours", "can't be blank"))
        elif not isinstance(draft.weekly_hours, int) or isinstance(draft.weekly_hours, bool):
            errors.append(FieldError("weekly_hours", "must be an integer"))
        else:
            _check_number(errors, "weekly_hours", draft.weekly_hours, low=Decimal("0"),
                          high=Decimal(MAX_WEEKLY_HOURS), low_inclusive=False)
        if not draft.milestone_ids:
            errors.append(FieldError("milestone_ids", "can't be blank"))

    # Same-day agreements are allowed
    if dates_ok and draft.end_date < draft.start_date:
        errors.append(FieldError("end_date", "must be on or after the start date"))

    return errors


def validate_participants(participants: list[ParticipantDraft]) -> list[FieldError]:
    errors: list[FieldError] = []
    for idx, p in enumerate(participants):
        if p.user_id is None:
            errors.append(FieldError(f"participants[{idx}].user_id", "can't be blank"))
        if _blank(p.user_role):
            errors.append(FieldError(f"participants[{idx}].user_role", "can't be blank"))
        if not isinstance(p.is_initiator, bool):
            errors.append(FieldError(f"participants[{idx}].is_initiator", "must be true or false"))

    user_ids = [p.user_id for p in participants if p.user_id is not None]
    if len(participants) != 2:
        errors.append(FieldError("participants", "must contain exactly two parties"))
    elif len(set(user_ids)) != len(user_ids):
        errors.append(FieldError("participants", "initiator and other party cannot be the same person"))

    initiators = [p for p in participants if p.is_initiator is True]
    if len(initiators) != 1:
        errors.append(FieldError("participants", "must have exactly one initiator"))
    return errors
