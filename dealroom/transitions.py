"""
Deal Lifecycle State Machine

Table-driven guard deciding whether a status change is legal.
PROPOSED -> COUNTERED/NEGOTIATING -> ACCEPTED -> LOCKED
"""

from .models import DealStatus

VALID_TRANSITIONS: dict[DealStatus, frozenset[DealStatus]] = {
    DealStatus.PROPOSED: frozenset({
        DealStatus.COUNTERED, DealStatus.ACCEPTED, DealStatus.DECLINED, DealStatus.EXPIRED,
    }),
    DealStatus.COUNTERED: frozenset({
        DealStatus.COUNTERED, DealStatus.NEGOTIATING, DealStatus.ACCEPTED,
        DealStatus.DECLINED, DealStatus.EXPIRED,
    }),
    # later rounds stay NEGOTIATING
    DealStatus.NEGOTIATING: frozenset({
        DealStatus.COUNTERED, DealStatus.NEGOTIATING, DealStatus.ACCEPTED,
        DealStatus.DECLINED, DealStatus.EXPIRED,
    }),
    DealStatus.ACCEPTED: frozenset({DealStatus.LOCKED}),
    DealStatus.LOCKED: frozenset(),
    DealStatus.EXPIRED: frozenset(),
    DealStatus.DECLINED: frozenset(),
}

ACTIVE_STATUSES = frozenset({DealStatus.PROPOSED, DealStatus.COUNTERED, DealStatus.NEGOTIATING})
TERMINAL_STATUSES = frozenset({DealStatus.LOCKED, DealStatus.EXPIRED, DealStatus.DECLINED})

assert set(VALID_TRANSITIONS) == set(DealStatus), "VALID_TRANSITIONS is out of sync with DealStatus"
assert all(not VALID_TRANSITIONS[s] for s in TERMINAL_STATUSES)


def can_transition(from_status: DealStatus, to_status: DealStatus) -> bool:
    """Pure lookup; unknown statuses are simply not allowed."""
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def counter_target_status(next_version: int) -> DealStatus:
    """First response (version 2) is COUNTERED; later rounds are NEGOTIATING."""
    return DealStatus.NEGOTIATING if next_version >= 3 else DealStatus.COUNTERED


def is_active(status: DealStatus) -> bool:
    """Awaiting a response from one of the parties."""
    return status in ACTIVE_STATUSES


def is_terminal(status: DealStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_open(status: DealStatus) -> bool:
    """Anything not terminal, ACCEPTED included. Scopes the one-open-deal rule."""
    return status not in TERMINAL_STATUSES
