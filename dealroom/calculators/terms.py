"""
Terms Calculator for Dealroom Negotiation Engine

Derives valuations from investment amount and equity percentage.
All use Decimal for precision with ROUND_HALF_UP rounding.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..errors import InvalidTerms
from ..models import DealTerms, InstrumentType

HUNDRED = Decimal("100")


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places using ROUND_HALF_UP."""
    return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def to_decimal(value, field_name: str) -> Decimal:
    """Normalize int/float/str/Decimal input, raising InvalidTerms when unparseable."""
    if isinstance(value, bool) or value is None:
        raise InvalidTerms(f"{field_name} must be a number, got: {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidTerms(f"{field_name} must be a number, got: {value!r}")
    if not result.is_finite():
        raise InvalidTerms(f"{field_name} must be finite, got: {value!r}")
    return result


class TermsCalculator:
    """Builds DealTerms with valuations recomputed from their inputs."""

    def compute(
        self,
        investment_amount,
        equity_percentage,
        instrument_type: InstrumentType = InstrumentType.EQUITY,
        conditions: str | None = None,
    ) -> DealTerms:
        amount = to_decimal(investment_amount, "investment_amount")
        equity = to_decimal(equity_percentage, "equity_percentage")
        self._validate(amount, equity)

        try:
            instrument = InstrumentType(instrument_type)
        except ValueError:
            raise InvalidTerms(f"Invalid instrument_type: {instrument_type}")

        try:
            valuation = self.implied_valuation(amount, equity)
        except InvalidOperation:
            raise InvalidTerms(
                f"Implied valuation out of range for {amount} at {equity}%", investment_amount=str(amount)
            )

        return DealTerms(
            investment_amount=amount,
            equity_percentage=equity,
            implied_valuation=valuation,
            post_money_valuation=valuation,
            instrument_type=instrument,
            conditions=conditions or None,
        )

    def _validate(self, amount: Decimal, equity: Decimal) -> None:
        if amount <= 0:
            raise InvalidTerms(f"investment_amount must be positive, got: {amount}")
        # Zero equity would divide by zero; rejected rather than valued at 0.
        if equity <= 0:
            raise InvalidTerms(f"equity_percentage must be greater than 0, got: {equity}")
        if equity > HUNDRED:
            raise InvalidTerms(f"equity_percentage cannot exceed 100, got: {equity}")

    @staticmethod
    def implied_valuation(amount: Decimal, equity: Decimal) -> Decimal:
        """investment_amount / equity_percentage * 100"""
        return quantize_money(amount / equity * HUNDRED)
