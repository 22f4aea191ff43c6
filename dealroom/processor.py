"""
Negotiation Engine - Main Orchestrator

Coordinates every deal operation through the same pipeline:
1. Validate Input
2. Load the deal fresh from the store
3. Run the expiration sweep (persisted before anything inspects status)
4. Authorize the caller (turn ownership, then identity)
5. Validate the transition
6. Build the new record and check its invariants
7. Persist with a compare-and-swap on the revision token
8. Notify collaborators (best effort)
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from .authorization import authorize_action, can_act, role_of
from .calculators import TermsCalculator, calculate_valid_until
from .collaborators import AnalysisTrigger, ConnectionGate, InMemoryConnectionGate, NullAnalysisTrigger
from .config import Settings
from .errors import (
    ConcurrentModification,
    ConnectionInactive,
    ConnectionRequired,
    DuplicateActiveDeal,
    Expired,
    InvalidRequest,
    InvalidTransition,
    NotFound,
)
from .expiration import ExpirationSweeper
from .models import (
    DEFAULT_VALIDITY_DAYS,
    SYSTEM_ACTOR,
    CounterDealRequest,
    CreateDealRequest,
    Deal,
    DealAction,
    DealActionRequest,
    DealActivityEntry,
    DealStatus,
    DealVersion,
    PartyRole,
)
from .output import OutputBuilder
from .store import DocumentStore, InMemoryDocumentStore, UniqueConstraint, UniqueConstraintViolation
from .transitions import can_transition, counter_target_status, is_open, is_terminal
from .validators import InputValidator

logger = logging.getLogger(__name__)

OPEN_DEAL_CONSTRAINT = UniqueConstraint(
    name="one_open_deal_per_parties",
    fields=("investor_id", "founder_id", "project_id"),
    applies_to=lambda doc: is_open(DealStatus(doc["status"])),
)


def build_deal_store() -> InMemoryDocumentStore:
    """In-memory deal store with the one-open-deal-per-parties constraint registered."""
    return InMemoryDocumentStore(id_field="deal_id", constraints=[OPEN_DEAL_CONSTRAINT])


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NegotiationEngine:
    """
    Main orchestrator for deal negotiation.

    The deal record is only ever mutated here. Every write is conditioned on
    the revision that was read, so two concurrent actions on the same deal
    can never both succeed.
    """

    def __init__(
        self,
        store: DocumentStore | None = None,
        connection_gate: ConnectionGate | None = None,
        analysis_trigger: AnalysisTrigger | None = None,
        clock: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ):
        self.store = store if store is not None else build_deal_store()
        self.connection_gate = connection_gate if connection_gate is not None else InMemoryConnectionGate()
        self.analysis_trigger = analysis_trigger if analysis_trigger is not None else NullAnalysisTrigger()
        self.clock = clock or utc_now
        self.settings = settings or Settings()

        self.validator = InputValidator()
        self.terms_calculator = TermsCalculator()
        self.sweeper = ExpirationSweeper()
        self.output_builder = OutputBuilder()

    # =========================================================================
    # DEAL CREATION
    # =========================================================================

    def create_deal(
        self,
        initiator_id: str,
        initiator_role: PartyRole | str,
        project_id: str,
        counterparty_id: str,
        investment_amount,
        equity_percentage,
        validity_days: int = DEFAULT_VALIDITY_DAYS,
        instrument_type="EQUITY",
        conditions: str | None = None,
    ) -> str:
        """
        Create a new deal proposal (either party may initiate).

        Returns:
            The new deal_id.
        """
        request = CreateDealRequest(
            initiator_id=initiator_id,
            initiator_role=initiator_role,
            project_id=project_id,
            counterparty_id=counterparty_id,
            investment_amount=investment_amount,
            equity_percentage=equity_percentage,
            validity_days=validity_days,
            instrument_type=instrument_type,
            conditions=conditions,
        )
        return self.create_from_request(request).deal_id

    def create_from_request(self, request: CreateDealRequest) -> Deal:
        self.validator.validate_create(request)
        role = request.initiator_role

        founder_id = request.initiator_id if role is PartyRole.FOUNDER else request.counterparty_id
        investor_id = request.initiator_id if role is PartyRole.INVESTOR else request.counterparty_id

        connection = self.connection_gate.get_connection(investor_id, founder_id, request.project_id)
        if connection is None:
            raise ConnectionRequired(
                "A connection between these parties is required before negotiating a deal",
                project_id=request.project_id,
            )
        if not connection.is_active:
            raise ConnectionInactive(
                f"The connection for this project is {connection.status.value} and cannot host a deal",
                connection_id=connection.connection_id,
            )

        # Flushes a lapsed-but-unswept deal so it does not block the new one.
        existing = self.get_active_deal_between(investor_id, founder_id, request.project_id)
        if existing is not None:
            raise DuplicateActiveDeal(
                "An active deal already exists between these parties for this project",
                deal_id=existing.deal_id,
            )

        terms = self.terms_calculator.compute(
            request.investment_amount,
            request.equity_percentage,
            request.instrument_type,
            request.conditions,
        )
        now = self.clock()
        valid_until = calculate_valid_until(now, request.validity_days)

        deal = Deal(
            deal_id=uuid.uuid4().hex,
            project_id=request.project_id,
            investor_id=investor_id,
            founder_id=founder_id,
            connection_id=connection.connection_id,
            initiated_by=role,
            status=DealStatus.PROPOSED,
            current_terms=terms,
            version_number=1,
            valid_until=valid_until,
            action_required_by=role.opposite(),
            version_history=[
                DealVersion(
                    version=1,
                    terms=terms,
                    proposed_by=role,
                    proposed_by_id=request.initiator_id,
                    proposed_at=now,
                    valid_until=valid_until,
                )
            ],
            activity_log=[
                DealActivityEntry(
                    action=DealAction.CREATED,
                    performed_by=request.initiator_id,
                    timestamp=now,
                    metadata={"role": role.value},
                )
            ],
            created_at=now,
            updated_at=now,
        )
        deal.check_invariants()

        try:
            self.store.create(deal.to_dict())
        except UniqueConstraintViolation as e:
            # Lost the race against a concurrent create for the same parties.
            raise DuplicateActiveDeal(
                "An active deal already exists between these parties for this project",
                deal_id=e.existing_id,
            )
        deal.revision = 1

        logger.info(
            f"Deal {deal.deal_id} created by {role.value} {request.initiator_id}: "
            f"{terms.investment_amount} for {terms.equity_percentage}%"
        )
        self._after_transition(deal, role.opposite())
        return deal

    # =========================================================================
    # DEAL RETRIEVAL
    # =========================================================================

    def get_deal(self, deal_id: str) -> Deal:
        """Fetch a deal, applying lazy expiration first. Raises NotFound."""
        return self._load_swept(deal_id)

    def find_deal(self, deal_id: str) -> Deal | None:
        try:
            return self.get_deal(deal_id)
        except NotFound:
            return None

    def get_deals_for_user(self, user_id: str) -> list[Deal]:
        """All deals where the user is founder or investor, newest activity first."""
        docs = {}
        for doc in self.store.find(founder_id=user_id) + self.store.find(investor_id=user_id):
            docs[doc["deal_id"]] = doc

        deals = [self._load_swept(deal_id, Deal.from_dict(doc)) for deal_id, doc in docs.items()]
        return sorted(deals, key=lambda d: d.updated_at, reverse=True)

    def get_deals_for_founder(self, founder_id: str) -> list[Deal]:
        return self.get_deals_for_user(founder_id)

    def get_deals_for_investor(self, investor_id: str) -> list[Deal]:
        return self.get_deals_for_user(investor_id)

    def get_active_deal_between(self, investor_id: str, founder_id: str, project_id: str) -> Deal | None:
        """The open (non-terminal) deal for these parties and project, if any."""
        docs = self.store.find(investor_id=investor_id, founder_id=founder_id, project_id=project_id)
        for doc in docs:
            if not is_open(DealStatus(doc["status"])):
                continue
            deal = self._load_swept(doc["deal_id"], Deal.from_dict(doc))
            if is_open(deal.status):
                return deal
        return None

    # =========================================================================
    # DEAL ACTIONS
    # =========================================================================

    def counter_deal(
        self,
        deal_id: str,
        user_id: str,
        user_role: PartyRole | str,
        investment_amount,
        equity_percentage,
        validity_days: int = DEFAULT_VALIDITY_DAYS,
        instrument_type=None,
        conditions: str | None = None,
        rationale: str | None = None,
    ) -> Deal:
        """Counter a deal with new terms."""
        request = CounterDealRequest(
            deal_id=deal_id,
            user_id=user_id,
            user_role=user_role,
            investment_amount=investment_amount,
            equity_percentage=equity_percentage,
            validity_days=validity_days,
            instrument_type=instrument_type,
            conditions=conditions,
            rationale=rationale,
        )
        return self.counter_from_request(request)

    def counter_from_request(self, request: CounterDealRequest) -> Deal:
        self.validator.validate_deal_id(request.deal_id)
        deal = self._load_for_action(request.deal_id, "countered")

        self.validator.validate_counter(request)
        role = request.user_role
        authorize_action(deal, request.user_id, role)

        next_version = deal.version_number + 1
        target_status = counter_target_status(next_version)
        if not can_transition(deal.status, target_status):
            raise InvalidTransition(f"Cannot counter a deal in {deal.status.value} status")

        terms = self.terms_calculator.compute(
            request.investment_amount,
            request.equity_percentage,
            request.instrument_type or deal.current_terms.instrument_type,
            request.conditions,
        )
        now = self.clock()
        valid_until = calculate_valid_until(now, request.validity_days)

        updated = deal.evolve(
            status=target_status,
            current_terms=terms,
            version_number=next_version,
            valid_until=valid_until,
            action_required_by=role.opposite(),
            updated_at=now,
        )
        updated.version_history.append(
            DealVersion(
                version=next_version,
                terms=terms,
                proposed_by=role,
                proposed_by_id=request.user_id,
                proposed_at=now,
                valid_until=valid_until,
                rationale=request.rationale,
            )
        )
        updated.activity_log.append(
            DealActivityEntry(
                action=DealAction.COUNTERED,
                performed_by=request.user_id,
                timestamp=now,
                metadata={"from_version": deal.version_number, "to_version": next_version},
            )
        )
        self._commit(deal, updated)

        logger.info(f"Deal {deal.deal_id} countered by {role.value}: v{next_version} {target_status.value}")
        self._after_transition(updated, role.opposite())
        return updated

    def accept_deal(self, deal_id: str, user_id: str, user_role: PartyRole | str) -> Deal:
        """
        Accept the current terms.

        Acceptance and lock land in one write: the deal goes straight to
        LOCKED with an ACCEPTED entry by the user followed by a SYSTEM LOCKED
        entry, so it can never be observed stuck in ACCEPTED.
        """
        request = DealActionRequest(deal_id=deal_id, user_id=user_id, user_role=user_role)
        self.validator.validate_deal_id(request.deal_id)
        deal = self._load_for_action(request.deal_id, "accepted")

        self.validator.validate_action(request)
        role = request.user_role
        authorize_action(deal, request.user_id, role)

        if not can_transition(deal.status, DealStatus.ACCEPTED):
            raise InvalidTransition(f"Cannot accept a deal in {deal.status.value} status")
        if not can_transition(DealStatus.ACCEPTED, DealStatus.LOCKED):
            raise InvalidTransition("Accepted deals cannot be locked")

        now = self.clock()
        updated = deal.evolve(
            status=DealStatus.LOCKED,
            action_required_by=None,
            locked_at=now,
            updated_at=now,
        )
        updated.activity_log.append(
            DealActivityEntry(
                action=DealAction.ACCEPTED,
                performed_by=request.user_id,
                timestamp=now,
                metadata={"version": deal.version_number},
            )
        )
        updated.activity_log.append(
            DealActivityEntry(action=DealAction.LOCKED, performed_by=SYSTEM_ACTOR, timestamp=now)
        )
        self._commit(deal, updated)

        logger.info(f"Deal {deal.deal_id} accepted by {role.value} at v{deal.version_number} and locked")
        self._after_transition(updated, role.opposite())
        return updated

    def decline_deal(self, deal_id: str, user_id: str, user_role: PartyRole | str) -> Deal:
        """Decline the deal. DECLINED is terminal."""
        request = DealActionRequest(deal_id=deal_id, user_id=user_id, user_role=user_role)
        self.validator.validate_deal_id(request.deal_id)
        deal = self._load_for_action(request.deal_id, "declined")

        self.validator.validate_action(request)
        role = request.user_role
        authorize_action(deal, request.user_id, role)

        if not can_transition(deal.status, DealStatus.DECLINED):
            raise InvalidTransition(f"Cannot decline a deal in {deal.status.value} status")

        now = self.clock()
        updated = deal.evolve(status=DealStatus.DECLINED, action_required_by=None, updated_at=now)
        updated.activity_log.append(
            DealActivityEntry(
                action=DealAction.DECLINED,
                performed_by=request.user_id,
                timestamp=now,
                metadata={"version": deal.version_number},
            )
        )
        self._commit(deal, updated)

        logger.info(f"Deal {deal.deal_id} declined by {role.value} at v{deal.version_number}")
        self._after_transition(updated, role.opposite())
        return updated

    # =========================================================================
    # PREDICATES
    # =========================================================================

    @staticmethod
    def can_user_act_on_deal(deal: Deal, user_id: str) -> bool:
        return can_act(deal, user_id)

    @staticmethod
    def user_role_in_deal(deal: Deal, user_id: str) -> PartyRole | None:
        return role_of(deal, user_id)

    # =========================================================================
    # DICT API
    # =========================================================================

    def deal_to_dict(self, deal: Deal, viewer_id: str | None = None) -> Dict[str, Any]:
        return self.output_builder.build(deal, viewer_id=viewer_id, now=self.clock())

    def process_action_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one negotiation action from raw dictionary input.

        Convenience method for API usage. ``data["action"]`` selects
        create / counter / accept / decline; the result is the deal view as
        seen by the acting party.
        """
        action = data.get("action")
        if action == "create":
            request = CreateDealRequest.from_dict(data)
            deal = self.create_from_request(request)
            return self.deal_to_dict(deal, viewer_id=request.initiator_id)
        if action == "counter":
            request = CounterDealRequest.from_dict(data)
            deal = self.counter_from_request(request)
        elif action == "accept":
            request = DealActionRequest.from_dict(data)
            deal = self.accept_deal(request.deal_id, request.user_id, request.user_role)
        elif action == "decline":
            request = DealActionRequest.from_dict(data)
            deal = self.decline_deal(request.deal_id, request.user_id, request.user_role)
        else:
            raise InvalidRequest(f"Invalid action: {action}. Must be one of create, counter, accept, decline")
        return self.deal_to_dict(deal, viewer_id=request.user_id)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _load(self, deal_id: str) -> Deal:
        doc = self.store.get(deal_id)
        if doc is None:
            raise NotFound(f"Deal not found: {deal_id}", deal_id=deal_id)
        return Deal.from_dict(doc)

    def _load_swept(self, deal_id: str, deal: Deal | None = None) -> Deal:
        """
        Load a deal and persist any due SYSTEM transition before returning it.

        On a compare-and-swap conflict the deal is re-read and re-checked, so
        concurrent readers never append a second EXPIRED entry.
        """
        for attempt in range(self.settings.max_sweep_retries + 1):
            if deal is None:
                deal = self._load(deal_id)
            swept = self.sweeper.sweep(deal, self.clock())
            if swept is None:
                return deal
            if self._write(deal, swept):
                logger.info(f"Deal {deal_id} moved to {swept.status.value} by {SYSTEM_ACTOR}")
                return swept
            logger.warning(f"Sweep conflict on deal {deal_id} (attempt {attempt + 1}), re-reading")
            deal = None

        raise ConcurrentModification(
            "This deal is being modified concurrently. Reload and try again.", deal_id=deal_id
        )

    def _load_for_action(self, deal_id: str, verb: str) -> Deal:
        """Load, sweep, and reject any deal that no longer accepts actions."""
        deal = self._load_swept(deal_id)
        if deal.status is DealStatus.EXPIRED:
            raise Expired(
                f"This deal has expired and cannot be {verb}",
                valid_until=deal.valid_until.isoformat(),
            )
        if is_terminal(deal.status):
            raise InvalidTransition(
                f"Cannot act on a deal in {deal.status.value} status: the negotiation is closed",
                status=deal.status.value,
            )
        return deal

    def _write(self, before: Deal, after: Deal) -> bool:
        """Compare-and-swap ``after`` over ``before``. Returns False on conflict."""
        after.check_invariants()
        old = before.to_dict()
        patch = {k: v for k, v in after.to_dict().items() if old.get(k) != v}
        if not self.store.conditional_update(before.deal_id, before.revision, patch):
            return False
        after.revision = before.revision + 1
        return True

    def _commit(self, before: Deal, after: Deal) -> None:
        if not self._write(before, after):
            logger.warning(f"Concurrent modification on deal {before.deal_id} at revision {before.revision}")
            raise ConcurrentModification(
                "This deal was changed by another action. Reload it and try again.",
                deal_id=before.deal_id,
            )

    def _after_transition(self, deal: Deal, target_role: PartyRole) -> None:
        """Best-effort collaborator notifications; failures never undo the write."""
        try:
            self.analysis_trigger.generate_analysis(deal, target_role)
        except Exception:
            logger.exception(f"Analysis generation failed for deal {deal.deal_id} ({target_role.value})")

        try:
            self.connection_gate.update_connection_activity(deal.connection_id)
        except Exception:
            logger.exception(f"Connection activity update failed for {deal.connection_id}")


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def process_action_from_json(engine: NegotiationEngine, json_input: str) -> str:
    """
    Run an action from a JSON string and return a JSON string.
    Errors are reported in the body instead of raised.
    """
    import json

    from .errors import DealError
    from .store import StorageError

    try:
        input_data = json.loads(json_input)
        result = engine.process_action_from_dict(input_data)
        return json.dumps(result, indent=2)

    except DealError as e:
        return json.dumps(e.to_dict(), indent=2)

    except StorageError as e:
        error_response = {"error": str(e), "status": "unavailable"}
        return json.dumps(error_response, indent=2)

    except (ValueError, KeyError) as e:
        error_response = {"error": str(e), "status": "validation_failed"}
        return json.dumps(error_response, indent=2)
