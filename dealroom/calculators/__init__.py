"""
Calculators Package

Provides the pure calculation components for deal terms and validity windows.
"""

from .terms import TermsCalculator, quantize_money
from .validity import (
    ALLOWED_VALIDITY_DAYS,
    TimeRemaining,
    calculate_valid_until,
    time_remaining,
)

__all__ = [
    "TermsCalculator",
    "quantize_money",
    "ALLOWED_VALIDITY_DAYS",
    "TimeRemaining",
    "calculate_valid_until",
    "time_remaining",
]
