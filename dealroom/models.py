"""
Domain Models for Dealroom Negotiation Engine

These dataclasses provide type-safe representations of the deal aggregate.
All monetary values use Decimal for precision; all timestamps are UTC-aware
datetimes. ``to_dict``/``from_dict`` define the persisted document shape.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

SYSTEM_ACTOR = "SYSTEM"
DEFAULT_VALIDITY_DAYS = 14


# =============================================================================
# ENUMS
# =============================================================================


class DealStatus(str, Enum):
    PROPOSED = "PROPOSED"
    COUNTERED = "COUNTERED"
    NEGOTIATING = "NEGOTIATING"
    ACCEPTED = "ACCEPTED"
    LOCKED = "LOCKED"
    EXPIRED = "EXPIRED"
    DECLINED = "DECLINED"


class PartyRole(str, Enum):
    FOUNDER = "FOUNDER"
    INVESTOR = "INVESTOR"

    def opposite(self) -> "PartyRole":
        return PartyRole.INVESTOR if self is PartyRole.FOUNDER else PartyRole.FOUNDER


class InstrumentType(str, Enum):
    EQUITY = "EQUITY"
    SAFE = "SAFE"
    CONVERTIBLE_NOTE = "CONVERTIBLE_NOTE"


class DealAction(str, Enum):
    CREATED = "CREATED"
    COUNTERED = "COUNTERED"
    ACCEPTED = "ACCEPTED"
    LOCKED = "LOCKED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class ConnectionStatus(str, Enum):
    INTERESTED = "INTERESTED"
    CONNECTED = "CONNECTED"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    REVOKED = "REVOKED"


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================


def to_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def from_timestamp(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# VALUE TYPES
# =============================================================================


@dataclass(frozen=True)
class DealTerms:
    """Financial terms of one deal version.

    Build through ``TermsCalculator.compute`` so the valuation fields are
    always derived from amount and equity.
    """

    investment_amount: Decimal
    equity_percentage: Decimal
    implied_valuation: Decimal
    post_money_valuation: Decimal
    instrument_type: InstrumentType = InstrumentType.EQUITY
    conditions: str | None = None

    @property
    def pre_money_valuation(self) -> Decimal:
        return self.post_money_valuation - self.investment_amount

    def to_dict(self) -> dict:
        return {
            "investment_amount": str(self.investment_amount),
            "equity_percentage": str(self.equity_percentage),
            "implied_valuation": str(self.implied_valuation),
            "post_money_valuation": str(self.post_money_valuation),
            "instrument_type": self.instrument_type.value,
            "conditions": self.conditions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DealTerms":
        return cls(
            investment_amount=Decimal(str(data["investment_amount"])),
            equity_percentage=Decimal(str(data["equity_percentage"])),
            implied_valuation=Decimal(str(data["implied_valuation"])),
            post_money_valuation=Decimal(str(data["post_money_valuation"])),
            instrument_type=InstrumentType(data.get("instrument_type", "EQUITY")),
            conditions=data.get("conditions"),
        )


@dataclass(frozen=True)
class DealVersion:
    """A snapshot of proposed terms within the negotiation history."""

    version: int
    terms: DealTerms
    proposed_by: PartyRole
    proposed_by_id: str
    proposed_at: datetime
    valid_until: datetime
    rationale: str | None = None

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "terms": self.terms.to_dict(),
            "proposed_by": self.proposed_by.value,
            "proposed_by_id": self.proposed_by_id,
            "proposed_at": to_timestamp(self.proposed_at),
            "valid_until": to_timestamp(self.valid_until),
            "rationale": self.rationale,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DealVersion":
        return cls(
            version=int(data["version"]),
            terms=DealTerms.from_dict(data["terms"]),
            proposed_by=PartyRole(data["proposed_by"]),
            proposed_by_id=data["proposed_by_id"],
            proposed_at=from_timestamp(data["proposed_at"]),
            valid_until=from_timestamp(data["valid_until"]),
            rationale=data.get("rationale"),
        )


@dataclass(frozen=True)
class DealActivityEntry:
    """Audit log entry for a deal action."""

    action: DealAction
    performed_by: str
    timestamp: datetime
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "performed_by": self.performed_by,
            "timestamp": to_timestamp(self.timestamp),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DealActivityEntry":
        return cls(
            action=DealAction(data["action"]),
            performed_by=data["performed_by"],
            timestamp=from_timestamp(data["timestamp"]),
            metadata=dict(data.get("metadata") or {}),
        )


# =============================================================================
# AGGREGATE ROOT
# =============================================================================


@dataclass
class Deal:
    """The negotiation record between one founder and one investor for one project.

    Single source of truth: both parties read from and write to this record,
    and only the negotiation engine mutates it.
    """

    deal_id: str
    project_id: str
    investor_id: str
    founder_id: str
    connection_id: str
    initiated_by: PartyRole
    status: DealStatus
    current_terms: DealTerms
    version_number: int
    valid_until: datetime
    action_required_by: PartyRole | None
    version_history: list[DealVersion]
    activity_log: list[DealActivityEntry]
    created_at: datetime
    updated_at: datetime
    locked_at: datetime | None = None
    revision: int = 0  # store revision token, bumped on every write

    @property
    def latest_version(self) -> DealVersion:
        return self.version_history[-1]

    def party_id(self, role: PartyRole) -> str:
        return self.founder_id if role is PartyRole.FOUNDER else self.investor_id

    def evolve(self, **changes) -> "Deal":
        """Return a copy with ``changes`` applied; history lists are copied."""
        changes.setdefault("version_history", list(self.version_history))
        changes.setdefault("activity_log", list(self.activity_log))
        return replace(self, **changes)

    def check_invariants(self) -> None:
        """Raise ValueError if the record's structural invariants do not hold."""
        problems = []
        if self.version_number != len(self.version_history):
            problems.append(
                f"version_number {self.version_number} != history length {len(self.version_history)}"
            )
        for expected, entry in enumerate(self.version_history, start=1):
            if entry.version != expected:
                problems.append(f"history entry {expected} has version {entry.version}")
                break
        if self.version_history and self.current_terms != self.latest_version.terms:
            problems.append("current_terms does not match the latest version")
        if self.version_history and self.valid_until != self.latest_version.valid_until:
            problems.append("valid_until does not match the latest version")

        active = self.status in (DealStatus.PROPOSED, DealStatus.COUNTERED, DealStatus.NEGOTIATING)
        if active and self.action_required_by is None:
            problems.append(f"action_required_by missing while {self.status.value}")
        if self.status in (DealStatus.LOCKED, DealStatus.EXPIRED, DealStatus.DECLINED):
            if self.action_required_by is not None:
                problems.append(f"action_required_by set on terminal {self.status.value} deal")

        if problems:
            raise ValueError(f"Deal {self.deal_id} invariant violation: " + "; ".join(problems))

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal_id,
            "project_id": self.project_id,
            "investor_id": self.investor_id,
            "founder_id": self.founder_id,
            "connection_id": self.connection_id,
            "initiated_by": self.initiated_by.value,
            "status": self.status.value,
            "current_terms": self.current_terms.to_dict(),
            "version_number": self.version_number,
            "valid_until": to_timestamp(self.valid_until),
            "action_required_by": self.action_required_by.value if self.action_required_by else None,
            "version_history": [v.to_dict() for v in self.version_history],
            "activity_log": [a.to_dict() for a in self.activity_log],
            "created_at": to_timestamp(self.created_at),
            "updated_at": to_timestamp(self.updated_at),
            "locked_at": to_timestamp(self.locked_at),
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Deal":
        action_required_by = data.get("action_required_by")
        return cls(
            deal_id=data["deal_id"],
            project_id=data["project_id"],
            investor_id=data["investor_id"],
            founder_id=data["founder_id"],
            connection_id=data["connection_id"],
            initiated_by=PartyRole(data["initiated_by"]),
            status=DealStatus(data["status"]),
            current_terms=DealTerms.from_dict(data["current_terms"]),
            version_number=int(data["version_number"]),
            valid_until=from_timestamp(data["valid_until"]),
            action_required_by=PartyRole(action_required_by) if action_required_by else None,
            version_history=[DealVersion.from_dict(v) for v in data.get("version_history", [])],
            activity_log=[DealActivityEntry.from_dict(a) for a in data.get("activity_log", [])],
            created_at=from_timestamp(data["created_at"]),
            updated_at=from_timestamp(data["updated_at"]),
            locked_at=from_timestamp(data.get("locked_at")),
            revision=int(data.get("revision", 0)),
        )


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass
class CreateDealRequest:
    """A new offer (investor) or ask (founder)."""

    initiator_id: str
    initiator_role: PartyRole | str
    project_id: str
    counterparty_id: str
    investment_amount: object
    equity_percentage: object
    validity_days: int = DEFAULT_VALIDITY_DAYS
    instrument_type: InstrumentType | str = InstrumentType.EQUITY
    conditions: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CreateDealRequest":
        return cls(
            initiator_id=data["initiator_id"],
            initiator_role=data["initiator_role"],
            project_id=data["project_id"],
            counterparty_id=data["counterparty_id"],
            investment_amount=data["investment_amount"],
            equity_percentage=data["equity_percentage"],
            validity_days=data.get("validity_days", DEFAULT_VALIDITY_DAYS),
            instrument_type=data.get("instrument_type", InstrumentType.EQUITY.value),
            conditions=data.get("conditions"),
        )


@dataclass
class CounterDealRequest:
    deal_id: str
    user_id: str
    user_role: PartyRole | str
    investment_amount: object
    equity_percentage: object
    validity_days: int = DEFAULT_VALIDITY_DAYS
    instrument_type: InstrumentType | str | None = None  # None keeps the current instrument
    conditions: str | None = None
    rationale: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CounterDealRequest":
        return cls(
            deal_id=data["deal_id"],
            user_id=data["user_id"],
            user_role=data["user_role"],
            investment_amount=data["investment_amount"],
            equity_percentage=data["equity_percentage"],
            validity_days=data.get("validity_days", DEFAULT_VALIDITY_DAYS),
            instrument_type=data.get("instrument_type"),
            conditions=data.get("conditions"),
            rationale=data.get("rationale"),
        )


@dataclass
class DealActionRequest:
    """Accept or decline: no new terms, just the acting party."""

    deal_id: str
    user_id: str
    user_role: PartyRole | str

    @classmethod
    def from_dict(cls, data: dict) -> "DealActionRequest":
        return cls(deal_id=data["deal_id"], user_id=data["user_id"], user_role=data["user_role"])


# =============================================================================
# COLLABORATOR RECORDS
# =============================================================================


@dataclass
class ConnectionRecord:
    """Precondition record establishing that two parties may negotiate."""

    connection_id: str
    investor_id: str
    founder_id: str
    project_id: str
    status: ConnectionStatus = ConnectionStatus.ACTIVE
    last_activity_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status not in (ConnectionStatus.PAUSED, ConnectionStatus.REVOKED)

    @classmethod
    def from_dict(cls, data: dict) -> "ConnectionRecord":
        return cls(
            connection_id=data["connection_id"],
            investor_id=data["investor_id"],
            founder_id=data["founder_id"],
            project_id=data["project_id"],
            status=ConnectionStatus(data.get("status", "ACTIVE")),
            last_activity_at=from_timestamp(data.get("last_activity_at")),
        )
