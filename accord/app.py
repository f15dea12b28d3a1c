from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from accord import calculations, chain, negotiation, services
from accord.config import get_settings
from accord.db import get_session, init_db
from accord.errors import ErrorCode, Result, TurnConsistencyError
from accord.schemas import (
    ActorRequest,
    AgreementCreate,
    AgreementDetail,
    AgreementListResponse,
    AgreementOut,
    AgreementRevise,
    CostOut,
    CounterOfferCreate,
    ParticipantOut,
    TurnOut,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Accord",
    version="0.1.0",
    description=(
        "Agreement negotiation API for project collaborations. "
        "Propose, counter, accept, reject, complete and cancel mentorship and co-founder agreements. "
        "All endpoints return JSON. The acting user is passed as user_id; no authentication is performed."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Agreements", "description": "Create, browse, revise and delete agreements."},
        {"name": "Negotiation", "description": "Accept, reject, complete and cancel; turn handling."},
        {"name": "Counter Offers", "description": "Counter-offer chains and their history."},
        {"name": "Calculations", "description": "Duration and cost of an agreement."},
    ],
)

_HTTP_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.NOT_PARTICIPANT: 403,
    ErrorCode.VALIDATION: 422,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.NOT_YOUR_TURN: 409,
    ErrorCode.DUPLICATE: 409,
}


@app.exception_handler(TurnConsistencyError)
async def turn_consistency_handler(request: Request, exc: TurnConsistencyError):
    log.error("Turn consistency failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": {
        "error": "Turn state could not be updated consistently; no changes were saved",
        "error_code": "turn_inconsistent",
    }})


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _unwrap(session: Session, result: Result):
    if result.ok:
        return result.value
    session.rollback()
    raise HTTPException(_HTTP_STATUS.get(result.code, 400), result.as_dict())


def _get_or_404(session: Session, agreement_id: int):
    return _unwrap(session, services.get_agreement(session, agreement_id))


# ---------------------------------------------------------------------------
# Routes: Agreements
# ---------------------------------------------------------------------------


@app.post("/api/agreements", response_model=AgreementDetail, status_code=201,
          tags=["Agreements"], summary="Propose a new agreement (the other party acts first)")
async def create_agreement(body: AgreementCreate, session: Session = Depends(db_session)):
    terms = body.terms_dict()
    terms["status"] = body.status
    agreement = _unwrap(session, services.create_agreement(
        session, project_id=body.project_id, project_owner_id=body.project_owner_id,
        initiator_id=body.initiator_id, other_party_id=body.other_party_id, terms=terms,
    ))
    session.commit()
    return services.agreement_detail(session, agreement, body.initiator_id)


@app.get("/api/agreements", response_model=AgreementListResponse,
         tags=["Agreements"], summary="List a user's agreements, newest first")
async def list_agreements(
    user_id: int = Query(..., description="Participant whose agreements to list"),
    status: str | None = Query(None, description="Comma-separated: Pending, Accepted, Rejected, Completed, Cancelled, Countered"),
    role: str | None = Query(None, description="Comma-separated: entrepreneur, mentor, co_founder"),
    session: Session = Depends(db_session),
):
    items = services.list_agreements(session, user_id, status=status, role=role)
    return {"items": [services.agreement_summary(a) for a in items], "total": len(items)}


@app.get("/api/agreements/{agreement_id}", response_model=AgreementDetail,
         tags=["Agreements"], summary="Get an agreement with participants, counter offers and cost")
async def get_agreement(
    agreement_id: int,
    user_id: int | None = Query(None, description="Viewer; must be a participant when given"),
    session: Session = Depends(db_session),
):
    agreement = _unwrap(session, services.view_agreement(session, agreement_id, user_id))
    return services.agreement_detail(session, agreement, user_id)


@app.put("/api/agreements/{agreement_id}", response_model=AgreementDetail,
         tags=["Agreements"], summary="Revise the terms of a pending agreement (initiator only)")
async def revise_agreement(agreement_id: int, body: AgreementRevise, session: Session = Depends(db_session)):
    agreement = _unwrap(session, services.revise_agreement(session, agreement_id, body.user_id, body.terms_dict()))
    session.commit()
    return services.agreement_detail(session, agreement, body.user_id)


@app.delete("/api/agreements/{agreement_id}", tags=["Agreements"],
            summary="Delete a pending agreement without counter offers (initiator only)")
async def delete_agreement(agreement_id: int, user_id: int = Query(...), session: Session = Depends(db_session)):
    _unwrap(session, services.delete_agreement(session, agreement_id, user_id))
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Negotiation
# ---------------------------------------------------------------------------


def _act(session: Session, agreement_id: int, user_id: int, operation) -> dict:
    agreement = _unwrap(session, operation(session, agreement_id, user_id))
    session.commit()
    return services.agreement_detail(session, agreement, user_id)


@app.post("/api/agreements/{agreement_id}/accept", response_model=AgreementDetail,
          tags=["Negotiation"], summary="Accept a pending agreement (participant whose turn it is)")
async def accept_agreement(agreement_id: int, body: ActorRequest, session: Session = Depends(db_session)):
    return _act(session, agreement_id, body.user_id, services.accept_agreement)


@app.post("/api/agreements/{agreement_id}/reject", response_model=AgreementDetail,
          tags=["Negotiation"], summary="Reject a pending agreement (participant whose turn it is)")
async def reject_agreement(agreement_id: int, body: ActorRequest, session: Session = Depends(db_session)):
    return _act(session, agreement_id, body.user_id, services.reject_agreement)


@app.post("/api/agreements/{agreement_id}/complete", response_model=AgreementDetail,
          tags=["Negotiation"], summary="Mark an accepted agreement as completed (initiator only)")
async def complete_agreement(agreement_id: int, body: ActorRequest, session: Session = Depends(db_session)):
    return _act(session, agreement_id, body.user_id, services.complete_agreement)


@app.post("/api/agreements/{agreement_id}/cancel", response_model=AgreementDetail,
          tags=["Negotiation"], summary="Cancel a pending agreement (any participant)")
async def cancel_agreement(agreement_id: int, body: ActorRequest, session: Session = Depends(db_session)):
    return _act(session, agreement_id, body.user_id, services.cancel_agreement)


@app.get("/api/agreements/{agreement_id}/turn", response_model=TurnOut,
         tags=["Negotiation"], summary="Whose turn it is to act")
async def get_turn(agreement_id: int, session: Session = Depends(db_session)):
    agreement = _get_or_404(session, agreement_id)
    return {"agreement_id": agreement.id, "whose_turn": negotiation.whose_turn(session, agreement)}


@app.post("/api/agreements/{agreement_id}/turn", response_model=TurnOut,
          tags=["Negotiation"], summary="Hand the turn to the other party (participant whose turn it is)")
async def pass_turn(agreement_id: int, body: ActorRequest, session: Session = Depends(db_session)):
    agreement = _unwrap(session, services.hand_turn(session, agreement_id, body.user_id))
    session.commit()
    return {"agreement_id": agreement.id, "whose_turn": negotiation.whose_turn(session, agreement)}


@app.get("/api/agreements/{agreement_id}/participants", response_model=list[ParticipantOut],
         tags=["Negotiation"], summary="List the participants of an agreement")
async def list_participants(agreement_id: int, session: Session = Depends(db_session)):
    agreement = _get_or_404(session, agreement_id)
    return [services.participant_summary(p) for p in agreement.participants]


# ---------------------------------------------------------------------------
# Routes: Counter offers (latest before parameterized listing)
# ---------------------------------------------------------------------------


@app.post("/api/agreements/{agreement_id}/counter-offers", response_model=AgreementDetail, status_code=201,
          tags=["Counter Offers"], summary="Counter an agreement with new terms (participant whose turn it is)")
async def create_counter_offer(agreement_id: int, body: CounterOfferCreate, session: Session = Depends(db_session)):
    counter = _unwrap(session, services.counter_agreement(session, agreement_id, body.user_id, body.terms_dict()))
    session.commit()
    return services.agreement_detail(session, counter, body.user_id)


@app.get("/api/agreements/{agreement_id}/counter-offers/latest", response_model=AgreementOut,
         tags=["Counter Offers"], summary="Most recent direct counter offer")
async def latest_counter_offer(agreement_id: int, session: Session = Depends(db_session)):
    agreement = _get_or_404(session, agreement_id)
    latest = chain.most_recent_counter_offer(session, agreement)
    if latest is None:
        raise HTTPException(404, "No counter offers for this agreement")
    return services.agreement_summary(latest)


@app.get("/api/agreements/{agreement_id}/counter-offers", response_model=list[AgreementOut],
         tags=["Counter Offers"], summary="Direct counter offers, oldest first")
async def list_counter_offers(agreement_id: int, session: Session = Depends(db_session)):
    agreement = _get_or_404(session, agreement_id)
    return [services.agreement_summary(a) for a in chain.counter_offers(session, agreement)]


@app.get("/api/agreements/{agreement_id}/history", response_model=list[AgreementOut],
         tags=["Counter Offers"], summary="Whole negotiation chain, from the original proposal on")
async def agreement_history(agreement_id: int, session: Session = Depends(db_session)):
    agreement = _get_or_404(session, agreement_id)
    return [services.agreement_summary(a) for a in chain.chain_history(session, agreement)]


# ---------------------------------------------------------------------------
# Routes: Calculations
# ---------------------------------------------------------------------------


@app.get("/api/agreements/{agreement_id}/cost", response_model=CostOut,
         tags=["Calculations"], summary="Duration in weeks, total cost and payment summary")
async def agreement_cost(agreement_id: int, session: Session = Depends(db_session)):
    agreement = _get_or_404(session, agreement_id)
    cost = calculations.total_cost(agreement)
    return {
        "agreement_id": agreement.id, "payment_type": agreement.payment_type,
        "duration_in_weeks": calculations.duration_in_weeks(agreement),
        "total_cost": float(cost) if cost is not None else None,
        "payment_details": calculations.payment_details(agreement),
    }


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
    uvicorn.run("accord.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
