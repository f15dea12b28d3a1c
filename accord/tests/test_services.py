"""Service-layer operations shared by the API, MCP server and CLI."""
from __future__ import annotations

from datetime import date

from accord import chain, negotiation, services
from accord.errors import ErrorCode
from accord.models import Agreement

from conftest import MENTOR, OWNER, PROJECT, mentorship_terms


def _create(session, *, initiator_id=OWNER, other_party_id=MENTOR, project_owner_id=OWNER, **terms):
    return services.create_agreement(
        session, project_id=PROJECT, project_owner_id=project_owner_id,
        initiator_id=initiator_id, other_party_id=other_party_id, terms=mentorship_terms(**terms),
    )


class TestScenarios:
    def test_hourly_without_rate_is_rejected(self, session):
        result = _create(session, hourly_rate=None)
        assert result.code is ErrorCode.VALIDATION
        assert [e.field for e in result.errors] == ["hourly_rate"]
        assert session.query(Agreement).count() == 0

    def test_valid_mentorship_starts_pending(self, session):
        result = _create(session, milestone_ids=[7])
        assert result.ok
        agreement = result.value
        assert agreement.status == "Pending"
        assert agreement.agreement_type == "Mentorship"
        assert negotiation.whose_turn(session, agreement) == MENTOR

    def test_end_before_start(self, session):
        result = _create(session, start_date=date(2025, 1, 10), end_date=date(2025, 1, 3))
        assert [e.field for e in result.errors] == ["end_date"]

    def test_nan_rate_is_a_validation_failure(self, session):
        result = _create(session, hourly_rate=float("nan"))
        assert result.code is ErrorCode.VALIDATION
        assert [(e.field, e.message) for e in result.errors] == [("hourly_rate", "is not a number")]
        assert services.list_agreements(session, OWNER) == []

    def test_duration_and_cost(self, session):
        agreement = _create(session).value
        detail = services.agreement_detail(session, agreement)
        assert detail["duration_in_weeks"] == 4
        assert detail["total_cost"] == 2000.0

    def test_accept_on_initiators_turn(self, session, make_agreement):
        agreement = make_agreement()
        services.hand_turn(session, agreement.id, MENTOR)
        result = services.accept_agreement(session, agreement.id, MENTOR)
        assert result.code is ErrorCode.NOT_YOUR_TURN
        assert agreement.status == "Pending"

    def test_counter_by_other_party(self, session, make_agreement):
        original = make_agreement()
        result = services.counter_agreement(session, original.id, MENTOR, {"weekly_hours": 5})
        assert result.ok
        counter = result.value
        assert counter.status == "Pending"
        assert chain.counter_to(session, counter) is original
        assert chain.has_counter_offers(session, original)


class TestCreateAgreement:
    def test_explicit_non_pending_status(self, session):
        result = _create(session, status="Accepted")
        assert result.code is ErrorCode.VALIDATION
        assert [e.field for e in result.errors] == ["status"]

    def test_type_inferred_without_hours(self, session):
        result = _create(session, weekly_hours=None, milestone_ids=[], payment_type="Equity",
                         hourly_rate=None, equity_percentage=10)
        assert result.ok
        assert result.value.agreement_type == "Co-Founder"

    def test_roles(self, session):
        mentorship = _create(session).value
        assert {p.user_id: p.user_role for p in mentorship.participants} == {OWNER: "entrepreneur", MENTOR: "mentor"}

        cofounder = services.create_agreement(
            session, project_id=2, project_owner_id=OWNER, initiator_id=30, other_party_id=OWNER,
            terms=mentorship_terms(agreement_type="Co-Founder", payment_type="Equity", equity_percentage=20),
        ).value
        roles = {p.user_id: (p.user_role, p.is_initiator) for p in cofounder.participants}
        assert roles == {30: ("co_founder", True), OWNER: ("entrepreneur", False)}

    def test_same_user_on_both_sides(self, session):
        result = _create(session, other_party_id=OWNER)
        assert result.code is ErrorCode.VALIDATION

    def test_duplicate_active_agreement(self, session, make_agreement):
        first = make_agreement()
        result = _create(session, initiator_id=MENTOR, other_party_id=OWNER)
        assert result.code is ErrorCode.DUPLICATE
        assert f"#{first.id}" in result.message

    def test_new_proposal_after_rejection(self, session, make_agreement):
        first = make_agreement()
        services.reject_agreement(session, first.id, MENTOR)
        assert _create(session).ok


class TestListAgreements:
    def test_filters_and_order(self, session, make_agreement):
        older = make_agreement()
        newer = make_agreement(project_id=2)
        other = make_agreement(initiator_id=40, other_party_id=50, project_owner_id=40)
        services.accept_agreement(session, older.id, MENTOR)

        assert [a.id for a in services.list_agreements(session, OWNER)] == [newer.id, older.id]
        assert [a.id for a in services.list_agreements(session, OWNER, status="Accepted")] == [older.id]
        assert [a.id for a in services.list_agreements(session, MENTOR, role="mentor,co_founder")] == [
            newer.id, older.id]
        assert services.list_agreements(session, OWNER, role="mentor") == []
        assert [a.id for a in services.list_agreements(session, 50)] == [other.id]


class TestReviseAgreement:
    def test_revise_passes_turn(self, session, make_agreement):
        agreement = make_agreement()
        services.hand_turn(session, agreement.id, MENTOR)
        result = services.revise_agreement(session, agreement.id, OWNER, {"hourly_rate": 65, "tasks": None})
        assert result.ok
        assert float(agreement.hourly_rate) == 65.0
        assert agreement.tasks == "Weekly product reviews"
        assert negotiation.whose_turn(session, agreement) == MENTOR

    def test_only_initiator(self, session, make_agreement):
        agreement = make_agreement()
        assert services.revise_agreement(session, agreement.id, MENTOR, {}).code is ErrorCode.NOT_PARTICIPANT

    def test_countered_agreement(self, session, make_agreement):
        agreement = make_agreement()
        services.counter_agreement(session, agreement.id, MENTOR, {})
        result = services.revise_agreement(session, agreement.id, OWNER, {"hourly_rate": 1})
        assert result.code is ErrorCode.INVALID_STATE
        assert "create a new counter offer" in result.message

    def test_invalid_terms(self, session, make_agreement):
        agreement = make_agreement()
        result = services.revise_agreement(session, agreement.id, OWNER, {"end_date": date(2024, 1, 1)})
        assert result.code is ErrorCode.VALIDATION
        assert agreement.end_date == date(2025, 1, 29)


class TestDeleteAgreement:
    def test_initiator_deletes_pending(self, session, make_agreement):
        agreement = make_agreement()
        agreement_id = agreement.id
        assert services.delete_agreement(session, agreement_id, OWNER).value == agreement_id
        session.commit()
        assert services.get_agreement(session, agreement_id).code is ErrorCode.NOT_FOUND

    def test_other_party_cannot_delete(self, session, make_agreement):
        agreement = make_agreement()
        assert services.delete_agreement(session, agreement.id, MENTOR).code is ErrorCode.INVALID_STATE

    def test_not_with_counter_offers(self, session, make_agreement):
        agreement = make_agreement()
        counter = services.counter_agreement(session, agreement.id, MENTOR, {}).value
        session.commit()
        assert services.delete_agreement(session, agreement.id, OWNER).code is ErrorCode.INVALID_STATE
        assert services.delete_agreement(session, counter.id, MENTOR).ok


class TestSerialization:
    def test_detail_and_permissions(self, session, make_agreement):
        agreement = make_agreement()
        detail = services.agreement_detail(session, agreement, MENTOR)
        assert detail["initiator_id"] == OWNER
        assert detail["other_party_id"] == MENTOR
        assert detail["whose_turn"] == MENTOR
        assert detail["milestone_ids"] == [1, 2]
        assert detail["payment_details"] == "50$/hour for 10h/week"
        assert detail["permissions"] == {
            "can_accept": True, "can_reject": True, "can_counter": True,
            "can_complete": False, "can_cancel": True, "can_view_full_details": True,
        }
        owner_view = services.permissions_for(agreement, OWNER)
        assert not owner_view["can_accept"]
        assert not services.permissions_for(agreement, 999)["can_view_full_details"]

    def test_view_requires_participant(self, session, make_agreement):
        agreement = make_agreement()
        assert services.view_agreement(session, agreement.id, MENTOR).value is agreement
        assert services.view_agreement(session, agreement.id).ok
        assert services.view_agreement(session, agreement.id, 999).code is ErrorCode.NOT_PARTICIPANT
        assert services.view_agreement(session, 404, MENTOR).code is ErrorCode.NOT_FOUND

    def test_hand_turn_by_stranger(self, session, make_agreement):
        agreement = make_agreement()
        assert services.hand_turn(session, agreement.id, 999).code is ErrorCode.NOT_PARTICIPANT

    def test_hand_turn_requires_the_turn(self, session, make_agreement):
        agreement = make_agreement()
        assert services.hand_turn(session, agreement.id, OWNER).code is ErrorCode.NOT_YOUR_TURN
        assert negotiation.whose_turn(session, agreement) == MENTOR

    def test_hand_turn_passes_to_other_party(self, session, make_agreement):
        agreement = make_agreement()
        assert services.hand_turn(session, agreement.id, MENTOR).ok
        assert negotiation.whose_turn(session, agreement) == OWNER
        assert services.accept_agreement(session, agreement.id, MENTOR).code is ErrorCode.NOT_YOUR_TURN

    def test_hand_turn_on_countered_original(self, session, make_agreement):
        original = make_agreement()
        assert services.counter_agreement(session, original.id, MENTOR, {"hourly_rate": 60}).ok
        assert negotiation.whose_turn(session, original) == OWNER
        assert services.hand_turn(session, original.id, OWNER).ok
        assert negotiation.whose_turn(session, original) == MENTOR

    def test_hand_turn_on_accepted(self, session, make_agreement):
        agreement = make_agreement()
        services.accept_agreement(session, agreement.id, MENTOR)
        assert services.hand_turn(session, agreement.id, MENTOR).code is ErrorCode.INVALID_STATE
        assert negotiation.whose_turn(session, agreement) == MENTOR

    def test_missing_agreement(self, session):
        assert services.get_agreement(session, 404).code is ErrorCode.NOT_FOUND
        assert services.accept_agreement(session, 404, OWNER).code is ErrorCode.NOT_FOUND
