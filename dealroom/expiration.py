"""
Expiration Sweeper

Lazy, read-triggered check that forces a deal past its ``valid_until`` into
the terminal EXPIRED state. There is no scheduler: every read path runs the
sweep and persists the result before the deal is returned.

The sweeper also finalizes deals found in ACCEPTED, so a crash between
acceptance and lock can never leave a deal stuck there.
"""

from datetime import datetime

from .models import SYSTEM_ACTOR, Deal, DealAction, DealActivityEntry, DealStatus
from .transitions import can_transition, is_terminal


def is_expired(deal: Deal, now: datetime) -> bool:
    if is_terminal(deal.status):
        return False
    return deal.valid_until < now


class ExpirationSweeper:
    """Computes the SYSTEM-performed transitions applied on read."""

    def sweep(self, deal: Deal, now: datetime) -> Deal | None:
        """Return the swept copy of ``deal``, or None when nothing is due."""
        # Acceptance is final even if the window lapses before the lock lands.
        if deal.status is DealStatus.ACCEPTED:
            return self.finalize_lock(deal, now)
        if is_expired(deal, now):
            return self.expire(deal, now)
        return None

    def expire(self, deal: Deal, now: datetime) -> Deal:
        if not can_transition(deal.status, DealStatus.EXPIRED):
            raise ValueError(f"Cannot expire a deal in {deal.status.value} status")

        expired = deal.evolve(status=DealStatus.EXPIRED, action_required_by=None, updated_at=now)
        expired.activity_log.append(
            DealActivityEntry(
                action=DealAction.EXPIRED,
                performed_by=SYSTEM_ACTOR,
                timestamp=now,
                metadata={"valid_until": deal.valid_until.isoformat()},
            )
        )
        return expired

    def finalize_lock(self, deal: Deal, now: datetime) -> Deal:
        if not can_transition(deal.status, DealStatus.LOCKED):
            raise ValueError(f"Can only lock accepted deals, got {deal.status.value}")

        locked = deal.evolve(
            status=DealStatus.LOCKED, action_required_by=None, locked_at=now, updated_at=now
        )
        locked.activity_log.append(
            DealActivityEntry(action=DealAction.LOCKED, performed_by=SYSTEM_ACTOR, timestamp=now)
        )
        return locked
