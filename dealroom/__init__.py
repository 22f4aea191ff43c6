"""
DEALROOM NEGOTIATION ENGINE
Founder / investor deal negotiation state machine
"""

from .errors import DealError
from .models import Deal, DealStatus, DealTerms, InstrumentType, PartyRole
from .processor import NegotiationEngine

__all__ = ['NegotiationEngine', 'Deal', 'DealError', 'DealStatus', 'DealTerms', 'InstrumentType', 'PartyRole']
