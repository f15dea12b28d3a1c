from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager

from mcp.server.fastmcp import FastMCP

from accord import calculations, chain, negotiation, services
from accord.config import get_settings
from accord.db import get_session, init_db
from accord.errors import Result, TurnConsistencyError
from accord.models import AGREEMENT_TYPES, PAYMENT_TYPES, STATUSES

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def accord_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Accord",
    instructions=(
        "Accord negotiates mentorship and co-founder agreements between two users on a project. "
        "Use list_agreements(user_id) to browse, get_agreement(id) for details and permissions, "
        "then accept, reject, counter or cancel as the participant whose turn it is."
    ),
    lifespan=accord_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _error(result: Result) -> dict:
    return result.as_dict()


def _commit_or_error(session, run) -> tuple[object | None, dict | None]:
    """Run a service call, commit on success and roll back on any failure."""
    try:
        result = run()
    except TurnConsistencyError as exc:
        session.rollback()
        log.error("Turn consistency failure: %s", exc)
        return None, {"error": str(exc), "error_code": "turn_inconsistent"}
    if not result.ok:
        session.rollback()
        return None, _error(result)
    session.commit()
    return result.value, None


def _terms(**kwargs) -> dict:
    return {k: v for k, v in kwargs.items() if v is not None}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("accord://overview")
def accord_overview() -> str:
    """Overview of Accord: data model, negotiation workflow and allowed values."""
    return json.dumps({
        "system": "Accord: agreement negotiation for project collaborations",
        "data_model": {
            "agreement": "Terms proposed between exactly two users on a project: type, payment, schedule, tasks.",
            "participant": "One of the two parties. Exactly one is the initiator; the turn pointer names who acts next.",
            "counter_offer": "A new agreement answering an earlier one; the earlier one becomes Countered.",
        },
        "workflow": [
            "1. propose_agreement(...) creates a Pending agreement; the other party gets the turn.",
            "2. The party whose turn it is calls accept_agreement, reject_agreement or counter_agreement.",
            "3. A counter offer hands the turn back to the other party on the new agreement.",
            "4. The initiator calls complete_agreement once an accepted agreement is fulfilled.",
            "5. Either party may cancel_agreement while it is still Pending.",
        ],
        "agreement_types": sorted(AGREEMENT_TYPES),
        "payment_types": sorted(PAYMENT_TYPES),
        "statuses": sorted(STATUSES),
        "roles": ["entrepreneur", "mentor", "co_founder"],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Agreements
# ---------------------------------------------------------------------------


@mcp.tool()
def propose_agreement(
    project_id: int, project_owner_id: int, initiator_id: int, other_party_id: int,
    payment_type: str, start_date: str, end_date: str, tasks: str,
    agreement_type: str | None = None, hourly_rate: float | None = None,
    equity_percentage: float | None = None, weekly_hours: int | None = None,
    milestone_ids: str | None = None, terms: str | None = None,
) -> dict:
    """Propose a new agreement. Dates are ISO (YYYY-MM-DD); milestone_ids is comma-separated.

    agreement_type defaults to Mentorship when weekly_hours is given, Co-Founder otherwise.
    """
    with _session() as session:
        agreement, err = _commit_or_error(session, lambda: services.create_agreement(
            session, project_id=project_id, project_owner_id=project_owner_id,
            initiator_id=initiator_id, other_party_id=other_party_id,
            terms=_terms(
                agreement_type=agreement_type, payment_type=payment_type, hourly_rate=hourly_rate,
                equity_percentage=equity_percentage, weekly_hours=weekly_hours,
                milestone_ids=milestone_ids, start_date=start_date, end_date=end_date,
                tasks=tasks, terms=terms,
            ),
        ))
        return err if err else services.agreement_detail(session, agreement, initiator_id)


@mcp.tool()
def list_agreements(user_id: int, status: str | None = None, role: str | None = None) -> list[dict]:
    """List a user's agreements, newest first.

    Args:
        user_id: Participant whose agreements to list.
        status: Comma-separated from Pending, Accepted, Rejected, Completed, Cancelled, Countered.
        role: Comma-separated from entrepreneur, mentor, co_founder.
    """
    with _session() as session:
        return [services.agreement_summary(a)
                for a in services.list_agreements(session, user_id, status=status, role=role)]


@mcp.tool()
def get_agreement(agreement_id: int, user_id: int | None = None) -> dict:
    """Full agreement details. When user_id is given it must be a participant; their permissions are included."""
    with _session() as session:
        found = services.view_agreement(session, agreement_id, user_id)
        if not found.ok:
            return _error(found)
        return services.agreement_detail(session, found.value, user_id)


@mcp.tool()
def revise_agreement(
    agreement_id: int, user_id: int,
    agreement_type: str | None = None, payment_type: str | None = None,
    hourly_rate: float | None = None, equity_percentage: float | None = None,
    weekly_hours: int | None = None, milestone_ids: str | None = None,
    start_date: str | None = None, end_date: str | None = None,
    tasks: str | None = None, terms: str | None = None,
) -> dict:
    """Change the terms of a pending agreement (initiator only). Only non-null arguments are applied."""
    with _session() as session:
        agreement, err = _commit_or_error(session, lambda: services.revise_agreement(
            session, agreement_id, user_id, _terms(
                agreement_type=agreement_type, payment_type=payment_type, hourly_rate=hourly_rate,
                equity_percentage=equity_percentage, weekly_hours=weekly_hours,
                milestone_ids=milestone_ids, start_date=start_date, end_date=end_date,
                tasks=tasks, terms=terms,
            ),
        ))
        return err if err else services.agreement_detail(session, agreement, user_id)


@mcp.tool()
def delete_agreement(agreement_id: int, user_id: int) -> dict:
    """Delete a pending agreement that has no counter offers (initiator only)."""
    with _session() as session:
        deleted, err = _commit_or_error(session, lambda: services.delete_agreement(session, agreement_id, user_id))
        return err if err else {"ok": True, "deleted_id": deleted}


# ---------------------------------------------------------------------------
# Tools: Negotiation
# ---------------------------------------------------------------------------


def _act(agreement_id: int, user_id: int, operation) -> dict:
    with _session() as session:
        agreement, err = _commit_or_error(session, lambda: operation(session, agreement_id, user_id))
        return err if err else services.agreement_detail(session, agreement, user_id)


@mcp.tool()
def accept_agreement(agreement_id: int, user_id: int) -> dict:
    """Accept a pending agreement. Only the participant whose turn it is may accept."""
    return _act(agreement_id, user_id, services.accept_agreement)


@mcp.tool()
def reject_agreement(agreement_id: int, user_id: int) -> dict:
    """Reject a pending agreement. Only the participant whose turn it is may reject."""
    return _act(agreement_id, user_id, services.reject_agreement)


@mcp.tool()
def complete_agreement(agreement_id: int, user_id: int) -> dict:
    """Mark an accepted agreement as completed (initiator only)."""
    return _act(agreement_id, user_id, services.complete_agreement)


@mcp.tool()
def cancel_agreement(agreement_id: int, user_id: int) -> dict:
    """Cancel a pending agreement (either participant)."""
    return _act(agreement_id, user_id, services.cancel_agreement)


@mcp.tool()
def counter_agreement(
    agreement_id: int, user_id: int,
    agreement_type: str | None = None, payment_type: str | None = None,
    hourly_rate: float | None = None, equity_percentage: float | None = None,
    weekly_hours: int | None = None, milestone_ids: str | None = None,
    start_date: str | None = None, end_date: str | None = None,
    tasks: str | None = None, terms: str | None = None,
) -> dict:
    """Answer an agreement with a counter offer. Omitted terms are copied from the original."""
    with _session() as session:
        counter, err = _commit_or_error(session, lambda: services.counter_agreement(
            session, agreement_id, user_id, _terms(
                agreement_type=agreement_type, payment_type=payment_type, hourly_rate=hourly_rate,
                equity_percentage=equity_percentage, weekly_hours=weekly_hours,
                milestone_ids=milestone_ids, start_date=start_date, end_date=end_date,
                tasks=tasks, terms=terms,
            ),
        ))
        return err if err else services.agreement_detail(session, counter, user_id)


@mcp.tool()
def whose_turn(agreement_id: int) -> dict:
    """The user ID expected to act next on an agreement."""
    with _session() as session:
        found = services.get_agreement(session, agreement_id)
        if not found.ok:
            return _error(found)
        try:
            holder = negotiation.whose_turn(session, found.value)
        except TurnConsistencyError as exc:
            return {"error": str(exc), "error_code": "turn_inconsistent"}
        return {"agreement_id": agreement_id, "whose_turn": holder}


@mcp.tool()
def get_agreement_history(agreement_id: int) -> list[dict] | dict:
    """Every agreement in the negotiation chain, from the original proposal to the latest counter offer."""
    with _session() as session:
        found = services.get_agreement(session, agreement_id)
        if not found.ok:
            return _error(found)
        return [services.agreement_summary(a) for a in chain.chain_history(session, found.value)]


@mcp.tool()
def get_agreement_cost(agreement_id: int) -> dict:
    """Duration in weeks, total cost and a payment summary for an agreement."""
    with _session() as session:
        found = services.get_agreement(session, agreement_id)
        if not found.ok:
            return _error(found)
        agreement = found.value
        cost = calculations.total_cost(agreement)
        return {
            "agreement_id": agreement.id, "payment_type": agreement.payment_type,
            "duration_in_weeks": calculations.duration_in_weeks(agreement),
            "total_cost": float(cost) if cost is not None else None,
            "payment_details": calculations.payment_details(agreement),
        }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Accord MCP server over stdio (logs go to stderr)."""
    logging.basicConfig(level=get_settings().log_level, format="%(levelname)s %(name)s: %(message)s")
    mcp.run()


if __name__ == "__main__":
    main()
