"""
Input Validation for Dealroom Negotiation Engine

Validates request data before any deal record is read or written.
Raises InvalidRequest / InvalidTerms (both ValueError subclasses) with clear
messages for any constraint violation. Financial checks on amount and equity
live in the TermsCalculator, which every terms change goes through.
"""

from .calculators.validity import ALLOWED_VALIDITY_DAYS
from .errors import InvalidRequest, InvalidTerms
from .models import CounterDealRequest, CreateDealRequest, DealActionRequest, InstrumentType, PartyRole


class InputValidator:
    """Validates negotiation requests according to business rules."""

    def validate_create(self, request: CreateDealRequest) -> None:
        """
        Run all create-time validations and normalize enum fields in place.
        """
        self._require_id(request.initiator_id, "initiator_id")
        self._require_id(request.project_id, "project_id")
        self._require_id(request.counterparty_id, "counterparty_id")
        if request.initiator_id == request.counterparty_id:
            raise InvalidRequest("initiator_id and counterparty_id must be different parties")

        request.initiator_role = self.parse_role(request.initiator_role, "initiator_role")
        request.instrument_type = self.parse_instrument(request.instrument_type)
        self._validate_validity_days(request.validity_days)

    def validate_counter(self, request: CounterDealRequest) -> None:
        self._require_id(request.deal_id, "deal_id")
        self._require_id(request.user_id, "user_id")
        request.user_role = self.parse_role(request.user_role, "user_role")
        if request.instrument_type is not None:
            request.instrument_type = self.parse_instrument(request.instrument_type)
        self._validate_validity_days(request.validity_days)

    def validate_action(self, request: DealActionRequest) -> None:
        self._require_id(request.deal_id, "deal_id")
        self._require_id(request.user_id, "user_id")
        request.user_role = self.parse_role(request.user_role, "user_role")

    @staticmethod
    def parse_role(value, field_name: str = "user_role") -> PartyRole:
        try:
            return PartyRole(value)
        except ValueError:
            raise InvalidRequest(f"Invalid {field_name}: {value}. Must be 'FOUNDER' or 'INVESTOR'")

    @staticmethod
    def parse_instrument(value) -> InstrumentType:
        try:
            return InstrumentType(value)
        except ValueError:
            allowed = ", ".join(i.value for i in InstrumentType)
            raise InvalidTerms(f"Invalid instrument_type: {value}. Must be one of {allowed}")

    def validate_deal_id(self, deal_id) -> None:
        """The only check that runs before the deal is loaded and swept."""
        self._require_id(deal_id, "deal_id")

    def _require_id(self, value, field_name: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise InvalidRequest(f"{field_name} is required")

    def _validate_validity_days(self, days) -> None:
        if isinstance(days, bool) or days not in ALLOWED_VALIDITY_DAYS:
            allowed = ", ".join(str(d) for d in ALLOWED_VALIDITY_DAYS)
            raise InvalidTerms(f"validity_days must be one of {allowed}, got: {days}")
