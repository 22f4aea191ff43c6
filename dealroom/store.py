"""
Document Store

Generic transactional document store used to persist deal records.

- ``create`` enforces registered uniqueness constraints atomically with the
  insert (no query-then-insert race).
- ``conditional_update`` is a compare-and-swap on the ``revision`` token that
  the store bumps on every write.

``InMemoryDocumentStore`` is the process-local implementation used by the
API entry points and the test suite.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass
from typing import Callable, Iterable


class StorageError(Exception):
    """Infrastructure failure. Never a negotiation rule violation."""

    http_status = 503
    retryable = False


class DocumentNotFound(StorageError):
    http_status = 404


class UniqueConstraintViolation(StorageError):
    http_status = 409

    def __init__(self, constraint: str, key: tuple, existing_id: str):
        super().__init__(f"Unique constraint '{constraint}' violated for key {key} (existing: {existing_id})")
        self.constraint = constraint
        self.key = key
        self.existing_id = existing_id


@dataclass(frozen=True)
class UniqueConstraint:
    """Uniqueness over ``fields``, scoped to documents where ``applies_to(doc)`` is true."""

    name: str
    fields: tuple[str, ...]
    applies_to: Callable[[dict], bool] = lambda doc: True

    def key_for(self, doc: dict) -> tuple:
        return tuple(doc.get(f) for f in self.fields)


class DocumentStore(ABC):
    """Interface consumed by the negotiation engine."""

    @abstractmethod
    def get(self, doc_id: str) -> dict | None:
        """A copy of the document, or None."""

    @abstractmethod
    def create(self, doc: dict) -> str:
        """Insert and return the new id. Raises UniqueConstraintViolation."""

    @abstractmethod
    def conditional_update(self, doc_id: str, expected_revision: int, patch: dict) -> bool:
        """Apply ``patch`` only if the stored revision still matches."""

    @abstractmethod
    def find(self, **equals) -> list[dict]:
        """Documents whose fields equal every given value."""


class InMemoryDocumentStore(DocumentStore):
    """
    Thread-safe in-memory store.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state without going through ``conditional_update``.
    """

    def __init__(
        self,
        id_field: str = "id",
        constraints: Iterable[UniqueConstraint] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._docs: dict[str, dict] = {}
        self.id_field = id_field
        self.constraints = list(constraints)

    def get(self, doc_id: str) -> dict | None:
        with self._lock:
            doc = self._docs.get(doc_id)
            return deepcopy(doc) if doc is not None else None

    def create(self, doc: dict) -> str:
        doc = deepcopy(doc)
        doc_id = doc.get(self.id_field) or uuid.uuid4().hex
        doc[self.id_field] = doc_id
        doc["revision"] = 1

        with self._lock:
            if doc_id in self._docs:
                raise UniqueConstraintViolation("primary_key", (doc_id,), doc_id)
            self._check_constraints(doc, exclude_id=doc_id)
            self._docs[doc_id] = doc
        return doc_id

    def conditional_update(self, doc_id: str, expected_revision: int, patch: dict) -> bool:
        patch = deepcopy(patch)
        patch.pop(self.id_field, None)
        patch.pop("revision", None)

        with self._lock:
            current = self._docs.get(doc_id)
            if current is None:
                raise DocumentNotFound(f"Document {doc_id} not found")
            if current.get("revision") != expected_revision:
                return False

            updated = {**current, **patch, "revision": expected_revision + 1}
            self._check_constraints(updated, exclude_id=doc_id)
            self._docs[doc_id] = updated
            return True

    def find(self, **equals) -> list[dict]:
        with self._lock:
            return [
                deepcopy(doc)
                for doc in self._docs.values()
                if all(doc.get(k) == v for k, v in equals.items())
            ]

    def _check_constraints(self, doc: dict, exclude_id: str) -> None:
        """Must be called with the lock held."""
        for constraint in self.constraints:
            if not constraint.applies_to(doc):
                continue
            key = constraint.key_for(doc)
            for other_id, other in self._docs.items():
                if other_id == exclude_id:
                    continue
                if constraint.applies_to(other) and constraint.key_for(other) == key:
                    raise UniqueConstraintViolation(constraint.name, key, other_id)
