"""
Tests for Dealroom Negotiation Engine

Run with: python -m pytest tests/ -v
"""

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from dealroom import NegotiationEngine
from dealroom.collaborators import AnalysisTrigger, ConnectionGate, InMemoryConnectionGate
from dealroom.errors import (
    ConnectionInactive,
    ConnectionRequired,
    DuplicateActiveDeal,
    Expired,
    InvalidRequest,
    InvalidTerms,
    InvalidTransition,
    NotFound,
    Unauthorized,
    WrongTurn,
)
from dealroom.models import (
    SYSTEM_ACTOR,
    ConnectionRecord,
    ConnectionStatus,
    DealAction,
    DealStatus,
    InstrumentType,
    PartyRole,
)
from dealroom.processor import process_action_from_json

from conftest import CONNECTION_ID, FOUNDER_ID, INVESTOR_ID, PROJECT_ID, START


class TestCreateDeal:

    def test_founder_ask(self, engine, founder_ask):
        deal = engine.get_deal(founder_ask)

        assert deal.status is DealStatus.PROPOSED
        assert deal.version_number == 1
        assert deal.initiated_by is PartyRole.FOUNDER
        assert deal.founder_id == FOUNDER_ID
        assert deal.investor_id == INVESTOR_ID
        assert deal.connection_id == CONNECTION_ID
        assert deal.action_required_by is PartyRole.INVESTOR
        assert deal.valid_until == START + timedelta(days=14)
        assert deal.current_terms.implied_valuation == Decimal("1000000.00")
        assert deal.current_terms.instrument_type is InstrumentType.EQUITY

    def test_investor_offer_swaps_parties(self, engine):
        deal_id = engine.create_deal(INVESTOR_ID, PartyRole.INVESTOR, PROJECT_ID, FOUNDER_ID, 50000, 5, 30, "SAFE")
        deal = engine.get_deal(deal_id)

        assert deal.founder_id == FOUNDER_ID
        assert deal.investor_id == INVESTOR_ID
        assert deal.initiated_by is PartyRole.INVESTOR
        assert deal.action_required_by is PartyRole.FOUNDER
        assert deal.current_terms.instrument_type is InstrumentType.SAFE

    def test_initial_version_and_activity(self, engine, founder_ask):
        deal = engine.get_deal(founder_ask)

        version = deal.version_history[0]
        assert version.version == 1
        assert version.proposed_by is PartyRole.FOUNDER
        assert version.proposed_by_id == FOUNDER_ID
        assert version.terms == deal.current_terms

        assert [a.action for a in deal.activity_log] == [DealAction.CREATED]
        assert deal.activity_log[0].performed_by == FOUNDER_ID
        assert deal.activity_log[0].metadata == {"role": "FOUNDER"}

    def test_requires_connection(self, engine):
        with pytest.raises(ConnectionRequired):
            engine.create_deal(FOUNDER_ID, "FOUNDER", "other-project", INVESTOR_ID, 100000, 10)

    @pytest.mark.parametrize("status", [ConnectionStatus.PAUSED, ConnectionStatus.REVOKED])
    def test_inactive_connection(self, engine, connection_gate, status):
        connection_gate.add(ConnectionRecord("conn-2", INVESTOR_ID, FOUNDER_ID, "project-2", status=status))
        with pytest.raises(ConnectionInactive, match=status.value):
            engine.create_deal(FOUNDER_ID, "FOUNDER", "project-2", INVESTOR_ID, 100000, 10)

    @pytest.mark.parametrize("status", [ConnectionStatus.INTERESTED, ConnectionStatus.CONNECTED])
    def test_pre_active_connections_may_negotiate(self, engine, connection_gate, status):
        connection_gate.add(ConnectionRecord("conn-3", INVESTOR_ID, FOUNDER_ID, "project-3", status=status))
        engine.create_deal(FOUNDER_ID, "FOUNDER", "project-3", INVESTOR_ID, 100000, 10)

    def test_duplicate_open_deal(self, engine, founder_ask):
        with pytest.raises(DuplicateActiveDeal) as exc_info:
            engine.create_deal(INVESTOR_ID, "INVESTOR", PROJECT_ID, FOUNDER_ID, 200000, 10)
        assert exc_info.value.details["deal_id"] == founder_ask

    def test_new_deal_allowed_after_decline(self, engine, founder_ask):
        engine.decline_deal(founder_ask, INVESTOR_ID, "INVESTOR")
        engine.create_deal(INVESTOR_ID, "INVESTOR", PROJECT_ID, FOUNDER_ID, 200000, 10)

    def test_new_deal_allowed_after_unswept_expiry(self, engine, clock, founder_ask):
        clock.advance(days=15)
        new_id = engine.create_deal(INVESTOR_ID, "INVESTOR", PROJECT_ID, FOUNDER_ID, 200000, 10)

        assert engine.get_deal(founder_ask).status is DealStatus.EXPIRED
        assert engine.get_deal(new_id).status is DealStatus.PROPOSED

    def test_invalid_terms_store_nothing(self, engine):
        with pytest.raises(InvalidTerms):
            engine.create_deal(FOUNDER_ID, "FOUNDER", PROJECT_ID, INVESTOR_ID, 100000, 0)
        assert engine.get_deals_for_user(FOUNDER_ID) == []

    def test_notifies_collaborators(self, engine, founder_ask, analysis_trigger, connection_gate):
        assert analysis_trigger.calls == [(founder_ask, 1, PartyRole.INVESTOR)]
        record = connection_gate.get_connection(INVESTOR_ID, FOUNDER_ID, PROJECT_ID)
        assert record.last_activity_at is not None


class TestCounterDeal:

    def test_first_counter(self, engine, clock, founder_ask):
        clock.advance(days=1)
        deal = engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8, 7, rationale="Too rich")

        assert deal.status is DealStatus.COUNTERED
        assert deal.version_number == 2
        assert len(deal.version_history) == 2
        assert deal.current_terms.implied_valuation == Decimal("1250000.00")
        assert deal.action_required_by is PartyRole.FOUNDER
        assert deal.valid_until == clock.now + timedelta(days=7)
        assert deal.version_history[-1].rationale == "Too rich"
        assert deal.version_history[-1].proposed_by is PartyRole.INVESTOR
        assert deal.activity_log[-1].action is DealAction.COUNTERED
        assert deal.activity_log[-1].metadata == {"from_version": 1, "to_version": 2}

    def test_persisted(self, engine, founder_ask):
        returned = engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8)
        stored = engine.get_deal(founder_ask)
        assert stored == returned

    def test_second_counter_is_negotiating(self, engine, founder_ask):
        engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8)
        deal = engine.counter_deal(founder_ask, FOUNDER_ID, "FOUNDER", 100000, 9)

        assert deal.status is DealStatus.NEGOTIATING
        assert deal.version_number == 3
        assert deal.action_required_by is PartyRole.INVESTOR

    def test_negotiation_continues_past_third_version(self, engine, founder_ask):
        engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8)
        engine.counter_deal(founder_ask, FOUNDER_ID, "FOUNDER", 100000, 9)
        deal = engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 110000, 9)

        assert deal.status is DealStatus.NEGOTIATING
        assert deal.version_number == 4
        assert deal.action_required_by is PartyRole.FOUNDER
        assert deal.activity_log[-1].metadata == {"from_version": 3, "to_version": 4}

    def test_instrument_defaults_to_current(self, engine):
        deal_id = engine.create_deal(FOUNDER_ID, "FOUNDER", PROJECT_ID, INVESTOR_ID, 100000, 10, 14, "CONVERTIBLE_NOTE")
        deal = engine.counter_deal(deal_id, INVESTOR_ID, "INVESTOR", 90000, 10)
        assert deal.current_terms.instrument_type is InstrumentType.CONVERTIBLE_NOTE

    def test_instrument_can_change(self, engine, founder_ask):
        deal = engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 90000, 10, instrument_type="SAFE")
        assert deal.current_terms.instrument_type is InstrumentType.SAFE

    def test_history_is_append_only(self, engine, founder_ask):
        original = engine.get_deal(founder_ask).version_history[0]
        engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8)
        engine.counter_deal(founder_ask, FOUNDER_ID, "FOUNDER", 100000, 9)

        deal = engine.get_deal(founder_ask)
        assert deal.version_history[0] == original
        assert [v.version for v in deal.version_history] == [1, 2, 3]

    def test_wrong_turn(self, engine, founder_ask):
        with pytest.raises(WrongTurn, match="not your turn"):
            engine.counter_deal(founder_ask, FOUNDER_ID, "FOUNDER", 100000, 8)

    def test_unauthorized(self, engine, founder_ask):
        with pytest.raises(Unauthorized):
            engine.counter_deal(founder_ask, "intruder", "INVESTOR", 100000, 8)

    def test_not_found(self, engine):
        with pytest.raises(NotFound):
            engine.counter_deal("missing", INVESTOR_ID, "INVESTOR", 100000, 8)

    def test_invalid_terms_leave_deal_unchanged(self, engine, founder_ask):
        before = engine.get_deal(founder_ask).to_dict()
        with pytest.raises(InvalidTerms):
            engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", -1, 8)
        assert engine.get_deal(founder_ask).to_dict() == before

    def test_invalid_role(self, engine, founder_ask):
        with pytest.raises(InvalidRequest):
            engine.counter_deal(founder_ask, INVESTOR_ID, "LAWYER", 100000, 8)

    def test_expired_counter_persists_expiry(self, engine, clock, founder_ask):
        clock.advance(days=14, seconds=1)
        with pytest.raises(Expired, match="expired and cannot be countered"):
            engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8)

        deal = engine.get_deal(founder_ask)
        assert deal.status is DealStatus.EXPIRED
        assert deal.version_number == 1
        assert [a.action for a in deal.activity_log] == [DealAction.CREATED, DealAction.EXPIRED]

    def test_counter_notifies_new_counterpart(self, engine, founder_ask, analysis_trigger):
        engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8)
        assert analysis_trigger.calls[-1] == (founder_ask, 2, PartyRole.FOUNDER)


class TestAcceptDeal:

    def test_accept_locks_immediately(self, engine, clock, founder_ask):
        clock.advance(hours=3)
        deal = engine.accept_deal(founder_ask, INVESTOR_ID, "INVESTOR")

        assert deal.status is DealStatus.LOCKED
        assert deal.locked_at == clock.now
        assert deal.action_required_by is None
        assert [a.action for a in deal.activity_log] == [
            DealAction.CREATED, DealAction.ACCEPTED, DealAction.LOCKED,
        ]
        assert deal.activity_log[1].performed_by == INVESTOR_ID
        assert deal.activity_log[2].performed_by == SYSTEM_ACTOR

    def test_accept_keeps_terms_and_version(self, engine, founder_ask):
        before = engine.get_deal(founder_ask)
        deal = engine.accept_deal(founder_ask, INVESTOR_ID, "INVESTOR")
        assert deal.version_number == before.version_number
        assert deal.current_terms == before.current_terms

    def test_accept_after_counter(self, engine, founder_ask):
        engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8)
        deal = engine.accept_deal(founder_ask, FOUNDER_ID, "FOUNDER")
        assert deal.status is DealStatus.LOCKED
        assert deal.current_terms.equity_percentage == Decimal("8")

    def test_initiator_cannot_accept_own_offer(self, engine, founder_ask):
        with pytest.raises(WrongTurn):
            engine.accept_deal(founder_ask, FOUNDER_ID, "FOUNDER")

    def test_expired(self, engine, clock, founder_ask):
        clock.advance(days=20)
        with pytest.raises(Expired, match="cannot be accepted"):
            engine.accept_deal(founder_ask, INVESTOR_ID, "INVESTOR")


class TestDeclineDeal:

    def test_decline(self, engine, founder_ask):
        deal = engine.decline_deal(founder_ask, INVESTOR_ID, "INVESTOR")

        assert deal.status is DealStatus.DECLINED
        assert deal.action_required_by is None
        assert deal.activity_log[-1].action is DealAction.DECLINED
        assert deal.activity_log[-1].performed_by == INVESTOR_ID

    def test_decline_requires_turn(self, engine, founder_ask):
        with pytest.raises(WrongTurn):
            engine.decline_deal(founder_ask, FOUNDER_ID, "FOUNDER")

    def test_decline_expired(self, engine, clock, founder_ask):
        clock.advance(days=15)
        with pytest.raises(Expired):
            engine.decline_deal(founder_ask, INVESTOR_ID, "INVESTOR")


class TestTerminalImmutability:
    """Actions on closed deals fail and leave the stored document untouched."""

    def _close(self, engine, clock, deal_id, how):
        if how == "locked":
            engine.accept_deal(deal_id, INVESTOR_ID, "INVESTOR")
        elif how == "declined":
            engine.decline_deal(deal_id, INVESTOR_ID, "INVESTOR")
        else:
            clock.advance(days=15)
            engine.get_deal(deal_id)

    @pytest.mark.parametrize("how,error", [
        ("locked", InvalidTransition),
        ("declined", InvalidTransition),
        ("expired", Expired),
    ])
    def test_all_actions_rejected(self, engine, clock, founder_ask, how, error):
        self._close(engine, clock, founder_ask, how)
        before = engine.store.get(founder_ask)

        for user_id, role in ((INVESTOR_ID, "INVESTOR"), (FOUNDER_ID, "FOUNDER")):
            with pytest.raises(error):
                engine.counter_deal(founder_ask, user_id, role, 100000, 8)
            with pytest.raises(error):
                engine.accept_deal(founder_ask, user_id, role)
            with pytest.raises(error):
                engine.decline_deal(founder_ask, user_id, role)

        assert engine.store.get(founder_ask) == before

    def test_lapse_is_reported_before_malformed_counter(self, engine, clock, founder_ask):
        clock.advance(days=15)

        with pytest.raises(Expired):
            engine.counter_deal(founder_ask, INVESTOR_ID, "LAWYER", -1, 8, validity_days=10)

        stored = engine.store.get(founder_ask)
        assert stored["status"] == "EXPIRED"
        assert stored["activity_log"][-1]["action"] == "EXPIRED"

    def test_lapse_is_reported_before_bad_role_on_accept(self, engine, clock, founder_ask):
        clock.advance(days=15)

        with pytest.raises(Expired):
            engine.accept_deal(founder_ask, INVESTOR_ID, "LAWYER")

        assert engine.store.get(founder_ask)["status"] == "EXPIRED"


class TestRetrieval:

    def test_get_missing(self, engine):
        with pytest.raises(NotFound):
            engine.get_deal("missing")
        assert engine.find_deal("missing") is None

    def test_deals_for_user_sorted_by_update(self, engine, clock, connection_gate, founder_ask):
        connection_gate.add(ConnectionRecord("conn-2", "investor-2", FOUNDER_ID, PROJECT_ID))
        clock.advance(hours=1)
        second = engine.create_deal("investor-2", "INVESTOR", PROJECT_ID, FOUNDER_ID, 75000, 5)
        clock.advance(hours=1)
        engine.counter_deal(founder_ask, INVESTOR_ID, "INVESTOR", 100000, 8)

        founder_deals = engine.get_deals_for_user(FOUNDER_ID)
        assert [d.deal_id for d in founder_deals] == [founder_ask, second]
        assert [d.deal_id for d in engine.get_deals_for_investor("investor-2")] == [second]
        assert [d.deal_id for d in engine.get_deals_for_founder(FOUNDER_ID)] == [founder_ask, second]

    def test_deals_for_user_applies_expiry(self, engine, clock, founder_ask):
        clock.advance(days=15)
        deals = engine.get_deals_for_user(INVESTOR_ID)
        assert deals[0].status is DealStatus.EXPIRED
        assert engine.store.get(founder_ask)["status"] == "EXPIRED"

    def test_deals_for_stranger(self, engine, founder_ask):
        assert engine.get_deals_for_user("nobody") == []

    def test_active_deal_between(self, engine, founder_ask):
        assert engine.get_active_deal_between(INVESTOR_ID, FOUNDER_ID, PROJECT_ID).deal_id == founder_ask
        engine.decline_deal(founder_ask, INVESTOR_ID, "INVESTOR")
        assert engine.get_active_deal_between(INVESTOR_ID, FOUNDER_ID, PROJECT_ID) is None

    def test_can_user_act(self, engine, founder_ask):
        deal = engine.get_deal(founder_ask)
        assert engine.can_user_act_on_deal(deal, INVESTOR_ID) is True
        assert engine.can_user_act_on_deal(deal, FOUNDER_ID) is False
        assert engine.user_role_in_deal(deal, FOUNDER_ID) is PartyRole.FOUNDER


class TestCollaboratorFailures:
    """Best-effort collaborators never fail or roll back the parent operation."""

    class ExplodingTrigger(AnalysisTrigger):
        def generate_analysis(self, deal, target_role):
            raise RuntimeError("model quota exceeded")

    class ExplodingGate(InMemoryConnectionGate):
        def update_connection_activity(self, connection_id):
            raise RuntimeError("connections service down")

    def test_analysis_failure_is_logged(self, clock, connection_gate, caplog):
        engine = NegotiationEngine(connection_gate=connection_gate, analysis_trigger=self.ExplodingTrigger(), clock=clock)
        deal_id = engine.create_deal(FOUNDER_ID, "FOUNDER", PROJECT_ID, INVESTOR_ID, 100000, 10)
        deal = engine.counter_deal(deal_id, INVESTOR_ID, "INVESTOR", 100000, 8)

        assert deal.version_number == 2
        assert engine.get_deal(deal_id).version_number == 2
        assert "Analysis generation failed" in caplog.text

    def test_connection_activity_failure_is_logged(self, clock, caplog):
        gate = self.ExplodingGate([ConnectionRecord(CONNECTION_ID, INVESTOR_ID, FOUNDER_ID, PROJECT_ID)])
        engine = NegotiationEngine(connection_gate=gate, clock=clock)
        deal_id = engine.create_deal(FOUNDER_ID, "FOUNDER", PROJECT_ID, INVESTOR_ID, 100000, 10)

        assert engine.get_deal(deal_id).status is DealStatus.PROPOSED
        assert "Connection activity update failed" in caplog.text

    def test_seams_are_abstract(self):
        with pytest.raises(TypeError):
            ConnectionGate()
        with pytest.raises(TypeError):
            AnalysisTrigger()


class TestProcessActionFromDict:

    def test_create_and_counter(self, engine):
        created = engine.process_action_from_dict({
            "action": "create",
            "initiator_id": FOUNDER_ID,
            "initiator_role": "FOUNDER",
            "project_id": PROJECT_ID,
            "counterparty_id": INVESTOR_ID,
            "investment_amount": 100000,
            "equity_percentage": 10,
        })
        assert created["status"] == "PROPOSED"
        assert created["viewer"]["role"] == "FOUNDER"
        assert created["viewer"]["can_act"] is False

        countered = engine.process_action_from_dict({
            "action": "counter",
            "deal_id": created["deal_id"],
            "user_id": INVESTOR_ID,
            "user_role": "INVESTOR",
            "investment_amount": 100000,
            "equity_percentage": 8,
        })
        assert countered["status"] == "COUNTERED"
        assert countered["current_terms"]["implied_valuation"] == 1250000.0

    def test_unknown_action(self, engine):
        with pytest.raises(InvalidRequest, match="Invalid action"):
            engine.process_action_from_dict({"action": "withdraw"})


class TestProcessActionFromJson:

    def test_returns_deal_view(self, engine):
        payload = {
            "action": "create",
            "initiator_id": INVESTOR_ID,
            "initiator_role": "INVESTOR",
            "project_id": PROJECT_ID,
            "counterparty_id": FOUNDER_ID,
            "investment_amount": 200000,
            "equity_percentage": 5,
        }

        result = json.loads(process_action_from_json(engine, json.dumps(payload)))

        assert result["current_terms"]["implied_valuation"] == 4000000.0
        assert result["action_required_by"] == "FOUNDER"

    def test_errors_are_reported_in_body(self, engine):
        payload = {"action": "accept", "deal_id": "missing", "user_id": FOUNDER_ID, "user_role": "FOUNDER"}
        result = json.loads(process_action_from_json(engine, json.dumps(payload)))

        assert result["status"] == "failed"
        assert result["code"] == "not_found"

    def test_bad_json(self, engine):
        result = json.loads(process_action_from_json(engine, "{not json"))
        assert result["status"] == "validation_failed"
