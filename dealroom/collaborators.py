"""
External Collaborators

- Connection Gate: precondition oracle deciding whether two parties may
  negotiate over a project, plus a fire-and-forget activity bump.
- Analysis Trigger: best-effort advisory commentary generated after each
  transition for the party who has to respond.

The engine only depends on the interfaces; the in-memory implementations
back the API entry points and the tests.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from .models import ConnectionRecord, Deal, PartyRole

logger = logging.getLogger(__name__)


class ConnectionGate(ABC):
    @abstractmethod
    def get_connection(self, investor_id: str, founder_id: str, project_id: str) -> ConnectionRecord | None:
        """The connection between the parties on this project, if any."""

    @abstractmethod
    def update_connection_activity(self, connection_id: str) -> None:
        """Bump the connection's last-activity timestamp."""


class InMemoryConnectionGate(ConnectionGate):
    def __init__(self, connections=()):
        self._lock = threading.Lock()
        self._connections: dict[tuple[str, str, str], ConnectionRecord] = {}
        for record in connections:
            self.add(record)

    def add(self, record: ConnectionRecord) -> ConnectionRecord:
        with self._lock:
            self._connections[(record.investor_id, record.founder_id, record.project_id)] = record
        return record

    def get_connection(self, investor_id: str, founder_id: str, project_id: str) -> ConnectionRecord | None:
        with self._lock:
            return self._connections.get((investor_id, founder_id, project_id))

    def update_connection_activity(self, connection_id: str) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            for record in self._connections.values():
                if record.connection_id == connection_id:
                    record.last_activity_at = now
                    return
        logger.warning(f"Activity bump for unknown connection: {connection_id}")


class AnalysisTrigger(ABC):
    @abstractmethod
    def generate_analysis(self, deal: Deal, target_role: PartyRole) -> None:
        """Produce advisory commentary for the party who has to respond."""


class NullAnalysisTrigger(AnalysisTrigger):
    """Used when no analysis generator is configured."""

    def generate_analysis(self, deal: Deal, target_role: PartyRole) -> None:
        logger.debug(f"Analysis skipped for deal {deal.deal_id} v{deal.version_number} ({target_role.value})")
