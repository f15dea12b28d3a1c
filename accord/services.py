"""Shared business logic for the Accord API, MCP server and CLI.

Every operation flushes but never commits: the caller owns the transaction
and commits (or rolls back) once per request.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from accord import calculations, chain, negotiation
from accord.errors import ErrorCode, FieldError, Result
from accord.models import ACTIVE_STATUSES, Agreement, AgreementParticipant, AgreementStatus
from accord.participants import (
    can_view_full_project_details, find_initiator, find_other_party, participant_for, role_for,
)
from accord.validation import (
    AgreementDraft, ParticipantDraft, normalize_draft, validate_agreement, validate_participants,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

TERM_FIELDS = (
    "agreement_type", "payment_type", "hourly_rate", "equity_percentage", "weekly_hours",
    "milestone_ids", "start_date", "end_date", "tasks", "terms",
)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _num(value) -> float | None:
    return float(value) if value is not None else None


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _turn_holder(agreement: Agreement) -> int | None:
    return agreement.participants[0].accept_or_counter_turn_id if agreement.participants else None


def participant_summary(p: AgreementParticipant) -> dict:
    return {
        "id": p.id, "agreement_id": p.agreement_id, "user_id": p.user_id,
        "project_id": p.project_id, "user_role": p.user_role, "is_initiator": p.is_initiator,
        "counter_agreement_id": p.counter_agreement_id,
        "accept_or_counter_turn_id": p.accept_or_counter_turn_id,
        "is_turn_to_act": negotiation.is_turn_to_act(p),
    }


def agreement_summary(agreement: Agreement) -> dict:
    initiator = find_initiator(agreement)
    other = find_other_party(agreement, initiator.user_id) if initiator else None
    return {
        "id": agreement.id, "project_id": agreement.project_id,
        "agreement_type": agreement.agreement_type, "status": agreement.status,
        "payment_type": agreement.payment_type,
        "hourly_rate": _num(agreement.hourly_rate),
        "equity_percentage": _num(agreement.equity_percentage),
        "weekly_hours": agreement.weekly_hours, "milestone_ids": agreement.milestone_ids,
        "start_date": _iso(agreement.start_date), "end_date": _iso(agreement.end_date),
        "tasks": agreement.tasks, "terms": agreement.terms,
        "created_at": _iso(agreement.created_at), "updated_at": _iso(agreement.updated_at),
        "initiator_id": initiator.user_id if initiator else None,
        "other_party_id": other.user_id if other else None,
        "whose_turn": _turn_holder(agreement),
        "is_counter_offer": chain.is_counter_offer(agreement),
        "counter_to_id": chain.counter_to_id(agreement),
    }


def permissions_for(agreement: Agreement, user_id: int) -> dict[str, bool]:
    """What *user_id* may do with *agreement* right now."""
    p = participant_for(agreement, user_id)
    if p is None:
        return {k: False for k in ("can_accept", "can_reject", "can_counter", "can_complete",
                                   "can_cancel", "can_view_full_details")}
    return {
        "can_accept": negotiation.can_accept_or_counter(p),
        "can_reject": negotiation.can_accept_or_counter(p),
        "can_counter": negotiation.can_make_counter_offer(p),
        "can_complete": p.is_initiator and negotiation.can_transition(agreement, "complete"),
        "can_cancel": negotiation.can_transition(agreement, "cancel"),
        "can_view_full_details": can_view_full_project_details(agreement, user_id),
    }


def agreement_detail(session: Session, agreement: Agreement, viewer_id: int | None = None) -> dict:
    base = agreement_summary(agreement)
    offers = chain.counter_offers(session, agreement)
    cost = calculations.total_cost(agreement)
    base.update({
        "participants": [participant_summary(p) for p in agreement.participants],
        "counter_offer_ids": [a.id for a in offers],
        "most_recent_counter_offer_id": offers[-1].id if offers else None,
        "duration_in_weeks": calculations.duration_in_weeks(agreement),
        "total_cost": _num(cost),
        "payment_details": calculations.payment_details(agreement),
    })
    if viewer_id is not None:
        base["permissions"] = permissions_for(agreement, viewer_id)
    return base


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_agreement(session: Session, agreement_id: int) -> Result[Agreement]:
    agreement = session.execute(
        select(Agreement).where(Agreement.id == agreement_id)
    ).scalars().first()
    if agreement is None:
        return Result.failure(ErrorCode.NOT_FOUND, f"Agreement {agreement_id} not found")
    return Result.success(agreement)


def view_agreement(session: Session, agreement_id: int, viewer_id: int | None = None) -> Result[Agreement]:
    """Like :func:`get_agreement`, but a given *viewer_id* must be a participant."""
    found = get_agreement(session, agreement_id)
    if not found.ok or viewer_id is None:
        return found
    if not can_view_full_project_details(found.value, viewer_id):
        return Result.failure(ErrorCode.NOT_PARTICIPANT, "You are not authorized to view this agreement")
    return found


def find_duplicate(
    session: Session, project_id: int, user_a: int, user_b: int, exclude_id: int | None = None,
) -> Agreement | None:
    """An active (Pending or Accepted) agreement between the two users on this project."""
    session.flush()
    query = (
        select(Agreement.id)
        .join(AgreementParticipant, AgreementParticipant.agreement_id == Agreement.id)
        .where(
            Agreement.project_id == project_id,
            Agreement.status.in_(ACTIVE_STATUSES),
            AgreementParticipant.user_id.in_([user_a, user_b]),
        )
        .group_by(Agreement.id)
        .having(func.count(AgreementParticipant.id) == 2)
    )
    if exclude_id is not None:
        query = query.where(Agreement.id != exclude_id)
    found_id = session.execute(query.limit(1)).scalars().first()
    return session.get(Agreement, found_id) if found_id is not None else None


def list_agreements(
    session: Session, user_id: int, *, status: str | None = None, role: str | None = None,
) -> list[Agreement]:
    """Agreements *user_id* takes part in, newest first.

    ``status`` and ``role`` accept comma-separated values.
    """
    session.flush()
    query = (
        select(Agreement)
        .join(AgreementParticipant, AgreementParticipant.agreement_id == Agreement.id)
        .where(AgreementParticipant.user_id == user_id)
    )
    if status:
        query = query.where(Agreement.status.in_([s.strip() for s in status.split(",") if s.strip()]))
    if role:
        query = query.where(AgreementParticipant.user_role.in_([r.strip() for r in role.split(",") if r.strip()]))
    query = query.order_by(Agreement.created_at.desc(), Agreement.id.desc())
    return list(session.execute(query).scalars().unique().all())


def _as_draft(terms: AgreementDraft | dict[str, Any] | None) -> AgreementDraft:
    if isinstance(terms, AgreementDraft):
        return terms
    return AgreementDraft.from_mapping(terms or {})


def _acting(session: Session, agreement_id: int, user_id: int,
            ) -> Result[tuple[Agreement, AgreementParticipant]]:
    found = get_agreement(session, agreement_id)
    if not found.ok:
        return Result.failure(found.code, found.message)
    agreement = found.value
    participant = participant_for(agreement, user_id)
    if participant is None:
        log.warning("User %s is not a participant of agreement %s", user_id, agreement_id)
        return Result.failure(ErrorCode.NOT_PARTICIPANT, "You are not a participant of this agreement")
    return Result.success((agreement, participant))


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def create_agreement(
    session: Session, *, project_id: int, project_owner_id: int, initiator_id: int,
    other_party_id: int, terms: AgreementDraft | dict[str, Any] | None,
) -> Result[Agreement]:
    """Validate and persist a new proposal; the other party gets the first turn."""
    draft = normalize_draft(_as_draft(terms))
    errors: list[FieldError] = []
    if draft.status != AgreementStatus.PENDING.value:
        errors.append(FieldError("status", "new agreements must start as Pending"))
    errors += validate_agreement(draft)
    parties = [
        ParticipantDraft(initiator_id, role_for(initiator_id, project_owner_id, draft.agreement_type), True),
        ParticipantDraft(other_party_id, role_for(other_party_id, project_owner_id, draft.agreement_type), False),
    ]
    errors += validate_participants(parties)
    if errors:
        log.warning("Agreement for project %s rejected: %d validation errors", project_id, len(errors))
        return Result.failure(ErrorCode.VALIDATION, "Agreement is invalid", errors)

    existing = find_duplicate(session, project_id, initiator_id, other_party_id)
    if existing is not None:
        return Result.failure(
            ErrorCode.DUPLICATE,
            f"An agreement already exists between these parties for this project (#{existing.id})",
        )

    agreement = Agreement(project_id=project_id, status=draft.status)
    agreement.apply_terms(draft)
    for party in parties:
        agreement.participants.append(AgreementParticipant(
            user_id=party.user_id, project_id=project_id, user_role=party.user_role,
            is_initiator=party.is_initiator,
        ))
    session.add(agreement)
    session.flush()
    negotiation.pass_turn_to(session, agreement, other_party_id)
    log.info("Agreement %s created on project %s by user %s", agreement.id, project_id, initiator_id)
    return Result.success(agreement)


def _turn_guarded(session: Session, agreement_id: int, user_id: int, event: str) -> Result[Agreement]:
    acting = _acting(session, agreement_id, user_id)
    if not acting.ok:
        return Result.failure(acting.code, acting.message)
    agreement, participant = acting.value
    if not negotiation.is_turn_to_act(participant):
        log.warning("User %s tried to %s agreement %s out of turn", user_id, event, agreement_id)
        return Result.failure(ErrorCode.NOT_YOUR_TURN, f"It is not your turn to {event} this agreement")
    return getattr(negotiation, event)(session, agreement)


def accept_agreement(session: Session, agreement_id: int, user_id: int) -> Result[Agreement]:
    return _turn_guarded(session, agreement_id, user_id, "accept")


def reject_agreement(session: Session, agreement_id: int, user_id: int) -> Result[Agreement]:
    return _turn_guarded(session, agreement_id, user_id, "reject")


def complete_agreement(session: Session, agreement_id: int, user_id: int) -> Result[Agreement]:
    """Only the initiator marks an agreement as completed."""
    acting = _acting(session, agreement_id, user_id)
    if not acting.ok:
        return Result.failure(acting.code, acting.message)
    agreement, participant = acting.value
    if not participant.is_initiator:
        return Result.failure(ErrorCode.NOT_PARTICIPANT, "Only the initiator can complete this agreement")
    return negotiation.complete(session, agreement)


def cancel_agreement(session: Session, agreement_id: int, user_id: int) -> Result[Agreement]:
    acting = _acting(session, agreement_id, user_id)
    if not acting.ok:
        return Result.failure(acting.code, acting.message)
    return negotiation.cancel(session, acting.value[0])


def counter_agreement(
    session: Session, agreement_id: int, user_id: int, terms: dict[str, Any] | None,
) -> Result[Agreement]:
    found = get_agreement(session, agreement_id)
    if not found.ok:
        return found
    result = chain.create_counter_offer(session, found.value, user_id, terms)
    if not result.ok:
        log.warning("Counter offer by user %s on agreement %s refused: %s", user_id, agreement_id, result.message)
    return result


def hand_turn(session: Session, agreement_id: int, user_id: int) -> Result[Agreement]:
    """*user_id* gives up their turn on an open agreement to the other party."""
    acting = _acting(session, agreement_id, user_id)
    if not acting.ok:
        return Result.failure(acting.code, acting.message)
    agreement, participant = acting.value
    if not negotiation.can_transition(agreement, "counter"):
        return Result.failure(ErrorCode.INVALID_STATE, "The turn can only be passed on an open agreement")
    if not negotiation.is_turn_to_act(participant):
        log.warning("User %s tried to pass the turn on agreement %s out of turn", user_id, agreement_id)
        return Result.failure(ErrorCode.NOT_YOUR_TURN, "It is not your turn on this agreement")
    negotiation.pass_turn_to_other_party(session, agreement, user_id)
    return Result.success(agreement)


def revise_agreement(
    session: Session, agreement_id: int, user_id: int, terms: dict[str, Any],
) -> Result[Agreement]:
    """Initiator edits the terms of a pending agreement; the turn moves to the other party."""
    acting = _acting(session, agreement_id, user_id)
    if not acting.ok:
        return Result.failure(acting.code, acting.message)
    agreement, participant = acting.value
    if not participant.is_initiator:
        return Result.failure(ErrorCode.NOT_PARTICIPANT, "Only the initiator can modify this agreement")
    if not agreement.is_pending:
        message = ("This agreement has been countered. Please create a new counter offer instead of editing."
                   if agreement.is_countered else "You cannot modify this agreement")
        return Result.failure(ErrorCode.INVALID_STATE, message)

    draft = AgreementDraft.from_agreement(agreement).merged({k: terms.get(k) for k in TERM_FIELDS})
    errors = validate_agreement(replace(draft, status=agreement.status))
    if errors:
        return Result.failure(ErrorCode.VALIDATION, "Agreement is invalid", errors)
    agreement.apply_terms(draft)
    session.flush()
    negotiation.pass_turn_to_other_party(session, agreement, user_id)
    log.info("Agreement %s revised by user %s", agreement.id, user_id)
    return Result.success(agreement)


def delete_agreement(session: Session, agreement_id: int, user_id: int) -> Result[int]:
    acting = _acting(session, agreement_id, user_id)
    if not acting.ok:
        return Result.failure(acting.code, acting.message)
    agreement, participant = acting.value
    if not (participant.is_initiator and agreement.is_pending):
        return Result.failure(ErrorCode.INVALID_STATE, "Only the initiator can delete a pending agreement")
    if chain.has_counter_offers(session, agreement):
        return Result.failure(ErrorCode.INVALID_STATE, "Agreements with counter offers cannot be deleted")
    session.delete(agreement)
    session.flush()
    log.info("Agreement %s deleted by user %s", agreement_id, user_id)
    return Result.success(agreement_id)
