"""
Authorization & Role Resolution

``can_act`` is the predicate the presentation layer uses to decide whether to
offer accept/counter/decline controls. The engine re-derives the same checks
through ``authorize_action`` instead of trusting caller-side gating.
"""

from .errors import Unauthorized, WrongTurn
from .models import Deal, PartyRole
from .transitions import is_active


def role_of(deal: Deal, user_id: str) -> PartyRole | None:
    """Determine the user's role in a deal, or None if they are not a party."""
    if not user_id:
        return None
    if deal.founder_id == user_id:
        return PartyRole.FOUNDER
    if deal.investor_id == user_id:
        return PartyRole.INVESTOR
    return None


def can_act(deal: Deal, user_id: str) -> bool:
    role = role_of(deal, user_id)
    if role is None:
        return False
    if not is_active(deal.status):
        return False
    return deal.action_required_by == role


def authorize_action(deal: Deal, user_id: str, user_role: PartyRole) -> None:
    """
    Raise unless ``user_id`` acting as ``user_role`` holds the turn on ``deal``.

    Turn ownership is checked first, then party identity.
    """
    if deal.action_required_by != user_role:
        raise WrongTurn(
            "It is not your turn to respond to this deal",
            action_required_by=deal.action_required_by.value if deal.action_required_by else None,
        )

    if deal.party_id(user_role) != user_id:
        raise Unauthorized("You are not authorized to act on this deal")
