"""Counter-offer chains.

A counter offer is a complete new agreement whose participant rows point back
at the agreement it answers through ``counter_agreement_id``. Chains form a
forest rooted at original proposals; siblings are allowed.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from accord.errors import ErrorCode, Result
from accord.models import Agreement, AgreementParticipant, AgreementStatus
from accord.negotiation import can_make_counter_offer, is_turn_to_act, mark_countered, pass_turn_to
from accord.participants import find_other_party, participant_for
from accord.validation import (
    AgreementDraft, ParticipantDraft, normalize_draft, validate_agreement, validate_participants,
)

log = logging.getLogger(__name__)


def _chronological(agreements) -> list[Agreement]:
    return sorted(agreements, key=lambda a: (a.created_at, a.id))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def create_counter_offer(
    session: Session, original: Agreement, proposer_id: int, terms: dict[str, Any] | None = None,
) -> Result[Agreement]:
    """Answer *original* with a new proposal from *proposer_id* (caller must commit).

    Terms default to the original's and are overridden by the non-null entries
    of *terms*. Every check runs before the first write.
    """
    proposer = participant_for(original, proposer_id)
    if proposer is None:
        return Result.failure(ErrorCode.NOT_PARTICIPANT, "You can only make counter offers to your own agreements")
    if not is_turn_to_act(proposer):
        return Result.failure(ErrorCode.NOT_YOUR_TURN, "It is not your turn to counter this agreement")
    if not can_make_counter_offer(proposer):
        return Result.failure(
            ErrorCode.INVALID_STATE, "You can only make counter offers to pending or countered agreements",
        )
    other = find_other_party(original, proposer_id)
    if other is None:
        return Result.failure(ErrorCode.NOT_FOUND, "Other party not found")

    draft = AgreementDraft.from_agreement(original).merged(terms or {})
    draft = normalize_draft(replace(draft, status=None))
    errors = validate_agreement(draft)
    errors += validate_participants([
        ParticipantDraft(proposer.user_id, proposer.user_role, True),
        ParticipantDraft(other.user_id, other.user_role, False),
    ])
    if errors:
        return Result.failure(ErrorCode.VALIDATION, "Counter offer is invalid", errors)

    marked = mark_countered(session, original)
    if not marked.ok:
        return marked

    counter = Agreement(project_id=original.project_id, status=AgreementStatus.PENDING.value)
    counter.apply_terms(draft)
    for party, initiator in ((proposer, True), (other, False)):
        counter.participants.append(AgreementParticipant(
            user_id=party.user_id, project_id=original.project_id, user_role=party.user_role,
            is_initiator=initiator, counter_agreement_id=original.id,
        ))
    session.add(counter)
    session.flush()

    pass_turn_to(session, counter, other.user_id)
    pass_turn_to(session, original, other.user_id)
    log.info("Agreement %s countered by user %s with agreement %s", original.id, proposer_id, counter.id)
    return Result.success(counter)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def is_counter_offer(agreement: Agreement) -> bool:
    return any(p.counter_agreement_id is not None for p in agreement.participants)


def counter_to_id(agreement: Agreement) -> int | None:
    return next((p.counter_agreement_id for p in agreement.participants
                 if p.counter_agreement_id is not None), None)


def counter_to(session: Session, agreement: Agreement) -> Agreement | None:
    original_id = counter_to_id(agreement)
    return session.get(Agreement, original_id) if original_id is not None else None


def _counter_offers_query(original: Agreement):
    return (
        select(Agreement)
        .join(AgreementParticipant, AgreementParticipant.agreement_id == Agreement.id)
        .where(AgreementParticipant.counter_agreement_id == original.id)
        .distinct()
    )


def counter_offers(session: Session, original: Agreement) -> list[Agreement]:
    """Direct counter offers to *original*, oldest first."""
    session.flush()
    rows = session.execute(
        _counter_offers_query(original).order_by(Agreement.created_at, Agreement.id)
    ).scalars().all()
    return list(rows)


def has_counter_offers(session: Session, original: Agreement) -> bool:
    session.flush()
    return session.execute(_counter_offers_query(original).limit(1)).first() is not None


def most_recent_counter_offer(session: Session, original: Agreement) -> Agreement | None:
    session.flush()
    return session.execute(
        _counter_offers_query(original)
        .order_by(Agreement.created_at.desc(), Agreement.id.desc())
        .limit(1)
    ).scalars().first()


def chain_root(session: Session, agreement: Agreement) -> Agreement:
    """Walk ``counter_to`` links back to the original proposal."""
    current = agreement
    seen = {current.id}
    while (parent := counter_to(session, current)) is not None:
        if parent.id in seen:
            log.error("Counter-offer cycle detected at agreement %s", parent.id)
            break
        seen.add(parent.id)
        current = parent
    return current


def chain_history(session: Session, agreement: Agreement) -> list[Agreement]:
    """Every agreement in *agreement*'s chain (root and all descendants), in creation order."""
    root = chain_root(session, agreement)
    found: dict[int, Agreement] = {root.id: root}
    queue = deque([root])
    while queue:
        for child in counter_offers(session, queue.popleft()):
            if child.id not in found:
                found[child.id] = child
                queue.append(child)
    return _chronological(found.values())


def latest_in_chain(session: Session, agreement: Agreement) -> Agreement:
    return chain_history(session, agreement)[-1]
