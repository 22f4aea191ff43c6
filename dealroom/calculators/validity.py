"""
Validity Window Helpers

An offer is valid for a fixed number of days from the moment it is proposed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

ALLOWED_VALIDITY_DAYS = (7, 14, 30, 60)


@dataclass(frozen=True)
class TimeRemaining:
    days: int
    hours: int
    expired: bool


def calculate_valid_until(now: datetime, validity_days: int) -> datetime:
    return now + timedelta(days=validity_days)


def time_remaining(valid_until: datetime, now: datetime) -> TimeRemaining:
    """Whole days and leftover hours until ``valid_until``."""
    diff = valid_until - now
    if diff <= timedelta(0):
        return TimeRemaining(days=0, hours=0, expired=True)

    return TimeRemaining(days=diff.days, hours=diff.seconds // 3600, expired=False)
