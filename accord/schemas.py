"""Pydantic request/response schemas for the Accord API."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, field_validator

from accord.utils import parse_id_list


class _TermsMixin(BaseModel):
    """Negotiable terms; every field optional so the validation engine can report all gaps at once."""

    agreement_type: str | None = None
    payment_type: str | None = None
    hourly_rate: Decimal | None = None
    equity_percentage: Decimal | None = None
    weekly_hours: int | None = None
    milestone_ids: list[int] | None = None
    start_date: date | None = None
    end_date: date | None = None
    tasks: str | None = None
    terms: str | None = None

    @field_validator("milestone_ids", mode="before")
    @classmethod
    def split_milestone_ids(cls, v):
        # Forms send "1,2,3"
        if v is None:
            return v
        return parse_id_list(v)

    def terms_dict(self) -> dict:
        return self.model_dump(include=set(_TermsMixin.model_fields))


class AgreementCreate(_TermsMixin):
    project_id: int
    project_owner_id: int
    initiator_id: int
    other_party_id: int
    status: str | None = None


class CounterOfferCreate(_TermsMixin):
    user_id: int


class AgreementRevise(_TermsMixin):
    user_id: int


class ActorRequest(BaseModel):
    user_id: int


class ParticipantOut(BaseModel):
    id: int
    agreement_id: int
    user_id: int
    project_id: int
    user_role: str
    is_initiator: bool
    counter_agreement_id: int | None = None
    accept_or_counter_turn_id: int | None = None
    is_turn_to_act: bool


class PermissionsOut(BaseModel):
    can_accept: bool
    can_reject: bool
    can_counter: bool
    can_complete: bool
    can_cancel: bool
    can_view_full_details: bool


class AgreementOut(BaseModel):
    id: int
    project_id: int
    agreement_type: str
    status: str
    payment_type: str
    hourly_rate: float | None = None
    equity_percentage: float | None = None
    weekly_hours: int | None = None
    milestone_ids: list[int] = []
    start_date: str
    end_date: str
    tasks: str
    terms: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    initiator_id: int | None = None
    other_party_id: int | None = None
    whose_turn: int | None = None
    is_counter_offer: bool = False
    counter_to_id: int | None = None


class AgreementDetail(AgreementOut):
    participants: list[ParticipantOut] = []
    counter_offer_ids: list[int] = []
    most_recent_counter_offer_id: int | None = None
    duration_in_weeks: int = 0
    total_cost: float | None = None
    payment_details: str = ""
    permissions: PermissionsOut | None = None


class AgreementListResponse(BaseModel):
    items: list[AgreementOut]
    total: int


class TurnOut(BaseModel):
    agreement_id: int
    whose_turn: int | None = None


class CostOut(BaseModel):
    agreement_id: int
    payment_type: str
    duration_in_weeks: int
    total_cost: float | None = None
    payment_details: str
