"""
Output Builder

Constructs the API view of a deal from the stored record.
"""

from datetime import datetime, timezone
from decimal import Decimal

from .authorization import can_act, role_of
from .calculators.validity import time_remaining
from .models import Deal, DealStatus, DealTerms, InstrumentType, PartyRole, to_timestamp

DEAL_STATUS_LABELS = {
    DealStatus.PROPOSED: "Pending Response",
    DealStatus.COUNTERED: "Counter Received",
    DealStatus.NEGOTIATING: "In Negotiation",
    DealStatus.ACCEPTED: "Accepted",
    DealStatus.LOCKED: "Finalized",
    DealStatus.EXPIRED: "Expired",
    DealStatus.DECLINED: "Declined",
}

INSTRUMENT_LABELS = {
    InstrumentType.EQUITY: "Equity",
    InstrumentType.SAFE: "SAFE",
    InstrumentType.CONVERTIBLE_NOTE: "Convertible Note",
}


def to_money(value: Decimal) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return round(float(value), 2)


def _fmt(value) -> str:
    """Format a number as currency string for descriptions."""
    return f"${value:,.2f}"


def role_aware_status_label(deal: Deal, user_role: PartyRole) -> str:
    """Status label as seen by one side of the negotiation."""
    if deal.status is DealStatus.PROPOSED:
        if deal.initiated_by == user_role:
            return "Awaiting Response"
        return "Founder Ask" if deal.initiated_by is PartyRole.FOUNDER else "Investor Offer"
    if deal.status in (DealStatus.COUNTERED, DealStatus.NEGOTIATING):
        if deal.action_required_by == user_role:
            return "Your Turn"
        return "Awaiting Response"
    return DEAL_STATUS_LABELS[deal.status]


class OutputBuilder:
    """Builds the deal view returned by the API."""

    def build(self, deal: Deal, viewer_id: str | None = None, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        remaining = time_remaining(deal.valid_until, now)

        output = {
            "deal_id": deal.deal_id,
            "project_id": deal.project_id,
            "founder_id": deal.founder_id,
            "investor_id": deal.investor_id,
            "connection_id": deal.connection_id,
            "initiated_by": deal.initiated_by.value,
            "status": deal.status.value,
            "status_label": DEAL_STATUS_LABELS[deal.status],
            "action_required_by": deal.action_required_by.value if deal.action_required_by else None,
            "version_number": deal.version_number,
            "current_terms": self._build_terms(deal.current_terms),
            "valid_until": to_timestamp(deal.valid_until),
            "time_remaining": {
                "days": remaining.days,
                "hours": remaining.hours,
                "expired": remaining.expired,
            },
            "version_history": [self._build_version(v) for v in deal.version_history],
            "activity_log": [a.to_dict() for a in deal.activity_log],
            "created_at": to_timestamp(deal.created_at),
            "updated_at": to_timestamp(deal.updated_at),
            "locked_at": to_timestamp(deal.locked_at),
        }

        if viewer_id is not None:
            output["viewer"] = self._build_viewer(deal, viewer_id)
        return output

    def _build_terms(self, terms: DealTerms) -> dict:
        amount = to_money(terms.investment_amount)
        valuation = to_money(terms.implied_valuation)
        return {
            "investment_amount": amount,
            "equity_percentage": float(terms.equity_percentage),
            "implied_valuation": valuation,
            "post_money_valuation": to_money(terms.post_money_valuation),
            "pre_money_valuation": to_money(terms.pre_money_valuation),
            "instrument_type": terms.instrument_type.value,
            "instrument_label": INSTRUMENT_LABELS[terms.instrument_type],
            "conditions": terms.conditions,
            "description": (
                f"{_fmt(amount)} for {terms.equity_percentage}% = {_fmt(valuation)} implied valuation"
            ),
        }

    def _build_version(self, version) -> dict:
        return {
            "version": version.version,
            "terms": self._build_terms(version.terms),
            "proposed_by": version.proposed_by.value,
            "proposed_by_id": version.proposed_by_id,
            "proposed_at": to_timestamp(version.proposed_at),
            "valid_until": to_timestamp(version.valid_until),
            "rationale": version.rationale,
        }

    def _build_viewer(self, deal: Deal, viewer_id: str) -> dict:
        role = role_of(deal, viewer_id)
        return {
            "user_id": viewer_id,
            "role": role.value if role else None,
            "status_label": role_aware_status_label(deal, role) if role else DEAL_STATUS_LABELS[deal.status],
            "can_act": can_act(deal, viewer_id),
        }
