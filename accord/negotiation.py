"""Turn passing and status transitions for a single agreement.

The turn pointer is denormalized onto every participant row. It is written
only by :func:`pass_turn_to`, as one bulk UPDATE, so the rows of an agreement
can never disagree inside a committed transaction.

Status changes are compare-and-set writes: the UPDATE only matches while the
row still carries one of the allowed source statuses.
"""
from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from accord.errors import ErrorCode, Result, TurnConsistencyError
from accord.models import Agreement, AgreementParticipant, AgreementStatus
from accord.participants import find_other_party
from accord.utils import utc_now

log = logging.getLogger(__name__)

_PENDING = AgreementStatus.PENDING.value
_ACCEPTED = AgreementStatus.ACCEPTED.value
_COUNTERED = AgreementStatus.COUNTERED.value

# event -> (allowed source statuses, target status, failure message)
TRANSITIONS: dict[str, tuple[frozenset[str], str, str]] = {
    "accept": (frozenset({_PENDING}), _ACCEPTED, "Agreement must be pending to accept"),
    "reject": (frozenset({_PENDING}), AgreementStatus.REJECTED.value, "Agreement must be pending to reject"),
    "complete": (frozenset({_ACCEPTED}), AgreementStatus.COMPLETED.value, "Agreement must be active to complete"),
    "cancel": (frozenset({_PENDING}), AgreementStatus.CANCELLED.value, "Agreement must be pending to cancel"),
    "counter": (frozenset({_PENDING, _COUNTERED}), _COUNTERED, "Agreement must be pending to counter"),
}


# ---------------------------------------------------------------------------
# Turn-passing protocol
# ---------------------------------------------------------------------------


def pass_turn_to(session: Session, agreement: Agreement, user_id: int) -> int:
    """Hand the turn to *user_id* on every participant row of *agreement*.

    Returns the number of rows updated. Raises :class:`TurnConsistencyError`
    if the rows do not all agree afterwards; the caller's transaction must then
    be rolled back.
    """
    session.flush()
    result = session.execute(
        update(AgreementParticipant)
        .where(AgreementParticipant.agreement_id == agreement.id)
        .values(accept_or_counter_turn_id=user_id)
    )
    if not result.rowcount:
        log.warning("Agreement %s has no participants; turn not assigned", agreement.id)
        return 0

    holders = turn_holders(session, agreement)
    if holders != [user_id]:
        log.error("Turn update for agreement %s left holders %s (expected %s)",
                  agreement.id, holders, user_id)
        raise TurnConsistencyError(agreement.id, holders)
    log.info("Agreement %s: turn passed to user %s", agreement.id, user_id)
    return result.rowcount


def turn_holders(session: Session, agreement: Agreement) -> list[int | None]:
    """Distinct turn pointers across the agreement's rows (one entry when consistent)."""
    return list(session.execute(
        select(AgreementParticipant.accept_or_counter_turn_id)
        .where(AgreementParticipant.agreement_id == agreement.id)
        .distinct()
    ).scalars().all())


def whose_turn(session: Session, agreement: Agreement) -> int | None:
    holders = turn_holders(session, agreement)
    if len(holders) > 1:
        log.error("Agreement %s has inconsistent turn holders %s", agreement.id, holders)
        raise TurnConsistencyError(agreement.id, holders)
    return holders[0] if holders else None


def pass_turn_to_other_party(session: Session, agreement: Agreement, current_user_id: int) -> int | None:
    """Give the turn to whichever participant is not *current_user_id*."""
    other = find_other_party(agreement, current_user_id)
    if other is None:
        return None
    pass_turn_to(session, agreement, other.user_id)
    return other.user_id


def is_turn_to_act(participant: AgreementParticipant) -> bool:
    return participant.accept_or_counter_turn_id == participant.user_id


def can_accept_or_counter(participant: AgreementParticipant) -> bool:
    return is_turn_to_act(participant) and participant.agreement.status == _PENDING


def can_make_counter_offer(participant: AgreementParticipant) -> bool:
    return is_turn_to_act(participant) and participant.agreement.status in TRANSITIONS["counter"][0]


# ---------------------------------------------------------------------------
# Status transition engine
# ---------------------------------------------------------------------------


def can_transition(agreement: Agreement, event: str) -> bool:
    return agreement.status in TRANSITIONS[event][0]


def _transition(session: Session, agreement: Agreement, event: str) -> Result[Agreement]:
    allowed, target, message = TRANSITIONS[event]
    if agreement.status not in allowed:
        return Result.failure(ErrorCode.INVALID_STATE, message)

    session.flush()
    result = session.execute(
        update(Agreement)
        .where(Agreement.id == agreement.id, Agreement.status.in_(allowed))
        .values(status=target, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    previous = agreement.status
    session.refresh(agreement, ["status", "updated_at"])
    if result.rowcount != 1:
        # Another writer moved the agreement first
        log.info("Agreement %s: %s lost race, status is now %s", agreement.id, event, agreement.status)
        return Result.failure(ErrorCode.INVALID_STATE, message)
    log.info("Agreement %s: %s -> %s", agreement.id, previous, target)
    return Result.success(agreement)


def accept(session: Session, agreement: Agreement) -> Result[Agreement]:
    return _transition(session, agreement, "accept")


def reject(session: Session, agreement: Agreement) -> Result[Agreement]:
    return _transition(session, agreement, "reject")


def complete(session: Session, agreement: Agreement) -> Result[Agreement]:
    return _transition(session, agreement, "complete")


def cancel(session: Session, agreement: Agreement) -> Result[Agreement]:
    return _transition(session, agreement, "cancel")


def mark_countered(session: Session, agreement: Agreement) -> Result[Agreement]:
    return _transition(session, agreement, "counter")
