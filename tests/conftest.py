"""
Shared fixtures: a controllable clock and an engine wired to in-memory
collaborators with one active connection between FOUNDER_ID and INVESTOR_ID.
"""

from datetime import datetime, timedelta, timezone

import pytest

from dealroom import NegotiationEngine
from dealroom.calculators import TermsCalculator
from dealroom.collaborators import AnalysisTrigger, InMemoryConnectionGate
from dealroom.models import (
    ConnectionRecord,
    Deal,
    DealAction,
    DealActivityEntry,
    DealStatus,
    DealVersion,
    PartyRole,
)

START = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
FOUNDER_ID = "founder-1"
INVESTOR_ID = "investor-1"
PROJECT_ID = "project-1"
CONNECTION_ID = "conn-1"


def make_deal(**overrides) -> Deal:
    """A founder's $100,000 SAFE ask for 10%, built directly without the engine."""
    terms = TermsCalculator().compute(100000, 10, "SAFE", "Board seat")
    valid_until = START + timedelta(days=14)
    fields = dict(
        deal_id="deal-1",
        project_id=PROJECT_ID,
        investor_id=INVESTOR_ID,
        founder_id=FOUNDER_ID,
        connection_id=CONNECTION_ID,
        initiated_by=PartyRole.FOUNDER,
        status=DealStatus.PROPOSED,
        current_terms=terms,
        version_number=1,
        valid_until=valid_until,
        action_required_by=PartyRole.INVESTOR,
        version_history=[
            DealVersion(1, terms, PartyRole.FOUNDER, FOUNDER_ID, START, valid_until, "Opening ask")
        ],
        activity_log=[
            DealActivityEntry(DealAction.CREATED, FOUNDER_ID, START, {"role": "FOUNDER"})
        ],
        created_at=START,
        updated_at=START,
    )
    fields.update(overrides)
    return Deal(**fields)


class RecordingAnalysisTrigger(AnalysisTrigger):
    """Keeps every analysis request for assertions."""

    def __init__(self):
        self.calls = []

    def generate_analysis(self, deal, target_role):
        self.calls.append((deal.deal_id, deal.version_number, target_role))


class FakeClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connection_gate():
    return InMemoryConnectionGate([
        ConnectionRecord(
            connection_id=CONNECTION_ID,
            investor_id=INVESTOR_ID,
            founder_id=FOUNDER_ID,
            project_id=PROJECT_ID,
        )
    ])


@pytest.fixture
def analysis_trigger():
    return RecordingAnalysisTrigger()


@pytest.fixture
def engine(clock, connection_gate, analysis_trigger):
    return NegotiationEngine(connection_gate=connection_gate, analysis_trigger=analysis_trigger, clock=clock)


@pytest.fixture
def founder_ask(engine):
    """Founder asks $100,000 for 10% equity, valid 14 days."""
    return engine.create_deal(FOUNDER_ID, "FOUNDER", PROJECT_ID, INVESTOR_ID, 100000, 10, 14)
