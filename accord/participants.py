"""Lookups over an agreement's participant rows and the role assignment policy."""
from __future__ import annotations

from accord.models import Agreement, AgreementParticipant, AgreementType

ROLE_ENTREPRENEUR = "entrepreneur"
ROLE_MENTOR = "mentor"
ROLE_CO_FOUNDER = "co_founder"


def role_for(user_id: int, project_owner_id: int, agreement_type: str) -> str:
    if user_id == project_owner_id:
        return ROLE_ENTREPRENEUR
    if agreement_type == AgreementType.MENTORSHIP.value:
        return ROLE_MENTOR
    return ROLE_CO_FOUNDER


def participant_for(agreement: Agreement, user_id: int) -> AgreementParticipant | None:
    return next((p for p in agreement.participants if p.user_id == user_id), None)


def find_initiator(agreement: Agreement) -> AgreementParticipant | None:
    return next((p for p in agreement.participants if p.is_initiator), None)


def find_other_party(agreement: Agreement, user_id: int) -> AgreementParticipant | None:
    return next((p for p in agreement.participants if p.user_id != user_id), None)


def other_participants(participant: AgreementParticipant) -> list[AgreementParticipant]:
    return [p for p in participant.agreement.participants if p.id != participant.id]


def is_participant(agreement: Agreement, user_id: int) -> bool:
    return participant_for(agreement, user_id) is not None


def can_view_full_project_details(agreement: Agreement, user_id: int) -> bool:
    return is_participant(agreement, user_id)
