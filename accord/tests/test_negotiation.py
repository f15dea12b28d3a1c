"""Turn passing, status transitions and their invariants."""
from __future__ import annotations

import warnings

import pytest
from sqlalchemy import update
from sqlalchemy.exc import SAWarning

from accord import negotiation, services
from accord.errors import ErrorCode, TurnConsistencyError
from accord.models import Agreement, AgreementParticipant
from accord.participants import other_participants, participant_for

from conftest import MENTOR, OWNER


def _assert_turn_consistent(agreement):
    holders = {p.accept_or_counter_turn_id for p in agreement.participants}
    assert len(holders) == 1


class TestTurnPassing:
    def test_new_agreement_gives_turn_to_other_party(self, session, make_agreement):
        agreement = make_agreement()
        assert negotiation.whose_turn(session, agreement) == MENTOR
        _assert_turn_consistent(agreement)

    def test_pass_turn_updates_every_row(self, session, make_agreement):
        agreement = make_agreement()
        assert negotiation.pass_turn_to(session, agreement, OWNER) == 2
        session.commit()
        assert [p.accept_or_counter_turn_id for p in agreement.participants] == [OWNER, OWNER]
        assert negotiation.whose_turn(session, agreement) == OWNER

    def test_single_actor_when_pending(self, session, make_agreement):
        agreement = make_agreement()
        actors = [p.user_id for p in agreement.participants if negotiation.is_turn_to_act(p)]
        assert actors == [MENTOR]

    def test_pass_to_other_party(self, session, make_agreement):
        agreement = make_agreement()
        assert negotiation.pass_turn_to_other_party(session, agreement, MENTOR) == OWNER
        assert negotiation.whose_turn(session, agreement) == OWNER

    def test_inconsistent_rows_are_detected(self, session, make_agreement):
        agreement = make_agreement()
        session.execute(
            update(AgreementParticipant)
            .where(AgreementParticipant.agreement_id == agreement.id, AgreementParticipant.user_id == OWNER)
            .values(accept_or_counter_turn_id=OWNER)
        )
        with pytest.raises(TurnConsistencyError) as exc_info:
            negotiation.whose_turn(session, agreement)
        assert exc_info.value.agreement_id == agreement.id
        session.rollback()

    def test_turn_holders_query_is_warning_free(self, session, make_agreement):
        agreement = make_agreement()
        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            assert negotiation.turn_holders(session, agreement) == [MENTOR]

    def test_other_participants(self, make_agreement):
        agreement = make_agreement()
        owner = participant_for(agreement, OWNER)
        assert [p.user_id for p in other_participants(owner)] == [MENTOR]


class TestTransitions:
    def test_accept_then_complete(self, session, make_agreement):
        agreement = make_agreement()
        assert services.accept_agreement(session, agreement.id, MENTOR).value.status == "Accepted"
        result = services.complete_agreement(session, agreement.id, OWNER)
        assert result.ok
        assert result.value.status == "Completed"

    def test_double_accept_fails(self, session, make_agreement):
        agreement = make_agreement()
        assert services.accept_agreement(session, agreement.id, MENTOR).ok
        session.commit()
        second = services.accept_agreement(session, agreement.id, MENTOR)
        assert second.code is ErrorCode.INVALID_STATE
        assert second.message == "Agreement must be pending to accept"
        assert agreement.status == "Accepted"

    def test_accept_out_of_turn(self, session, make_agreement):
        agreement = make_agreement()
        assert services.hand_turn(session, agreement.id, MENTOR).ok
        session.commit()
        result = services.accept_agreement(session, agreement.id, MENTOR)
        assert result.code is ErrorCode.NOT_YOUR_TURN
        assert agreement.status == "Pending"

    def test_initiator_cannot_accept_own_proposal(self, session, make_agreement):
        agreement = make_agreement()
        assert services.accept_agreement(session, agreement.id, OWNER).code is ErrorCode.NOT_YOUR_TURN

    def test_stranger_is_refused(self, session, make_agreement):
        agreement = make_agreement()
        assert services.reject_agreement(session, agreement.id, 999).code is ErrorCode.NOT_PARTICIPANT

    def test_complete_requires_accepted(self, session, make_agreement):
        agreement = make_agreement()
        result = services.complete_agreement(session, agreement.id, OWNER)
        assert result.code is ErrorCode.INVALID_STATE
        assert result.message == "Agreement must be active to complete"

    def test_only_initiator_completes(self, session, make_agreement):
        agreement = make_agreement()
        services.accept_agreement(session, agreement.id, MENTOR)
        assert services.complete_agreement(session, agreement.id, MENTOR).code is ErrorCode.NOT_PARTICIPANT

    def test_either_party_cancels_pending(self, session, make_agreement):
        agreement = make_agreement()
        result = services.cancel_agreement(session, agreement.id, OWNER)
        assert result.ok and result.value.status == "Cancelled"

    def test_cancel_accepted_fails(self, session, make_agreement):
        agreement = make_agreement()
        services.accept_agreement(session, agreement.id, MENTOR)
        assert services.cancel_agreement(session, agreement.id, MENTOR).code is ErrorCode.INVALID_STATE

    @pytest.mark.parametrize("final", ["reject", "cancel", "complete"])
    def test_terminal_statuses_are_sinks(self, session, make_agreement, final):
        agreement = make_agreement()
        if final == "reject":
            services.reject_agreement(session, agreement.id, MENTOR)
        elif final == "cancel":
            services.cancel_agreement(session, agreement.id, MENTOR)
        else:
            services.accept_agreement(session, agreement.id, MENTOR)
            services.complete_agreement(session, agreement.id, OWNER)
        session.commit()
        status = agreement.status
        assert agreement.is_terminal

        for user in (OWNER, MENTOR):
            assert services.hand_turn(session, agreement.id, user).code is ErrorCode.INVALID_STATE
            negotiation.pass_turn_to(session, agreement, user)
            for op in (services.accept_agreement, services.reject_agreement,
                       services.complete_agreement, services.cancel_agreement):
                assert not op(session, agreement.id, user).ok
        assert agreement.status == status

    def test_lost_race_leaves_status(self, session, make_agreement):
        agreement = make_agreement()
        # Simulate a concurrent writer committing a rejection first
        session.execute(
            update(Agreement).where(Agreement.id == agreement.id).values(status="Rejected")
            .execution_options(synchronize_session=False)
        )
        assert agreement.status == "Pending"
        result = negotiation.accept(session, agreement)
        assert result.code is ErrorCode.INVALID_STATE
        assert agreement.status == "Rejected"

    def test_can_transition(self, make_agreement):
        agreement = make_agreement()
        assert negotiation.can_transition(agreement, "accept")
        assert negotiation.can_transition(agreement, "counter")
        assert not negotiation.can_transition(agreement, "complete")
