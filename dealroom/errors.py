"""
Error Taxonomy for Dealroom Negotiation Engine

Domain errors describe which negotiation rule blocked an action. They are
raised synchronously and carry a stable ``code`` and an HTTP status so the
API layers can render a precise message.

Storage errors live in a separate hierarchy (see ``store.py``) and are never
conflated with domain errors.
"""


class DealError(Exception):
    """Base class for all negotiation rule violations."""

    code = "deal_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "status": "failed", "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(DealError):
    code = "not_found"
    http_status = 404


class ConnectionRequired(DealError):
    code = "connection_required"
    http_status = 403


class ConnectionInactive(DealError):
    code = "connection_inactive"
    http_status = 403


class DuplicateActiveDeal(DealError):
    code = "duplicate_active_deal"
    http_status = 409


class Unauthorized(DealError):
    code = "unauthorized"
    http_status = 403


class WrongTurn(DealError):
    code = "wrong_turn"
    http_status = 409


class Expired(DealError):
    code = "expired"
    http_status = 410


class InvalidTransition(DealError):
    code = "invalid_transition"
    http_status = 409


class InvalidTerms(DealError, ValueError):
    """Malformed financial inputs (non-positive amount, equity out of range)."""

    code = "invalid_terms"
    http_status = 400


class InvalidRequest(DealError, ValueError):
    """Malformed identifiers, roles or enum values."""

    code = "invalid_request"
    http_status = 400


class ConcurrentModification(DealError):
    """The deal changed between read and write. Retry with a fresh read."""

    code = "concurrent_modification"
    http_status = 409
    retryable = True
