# ride_dispatch/core/negotiation/__init__.py
"""
Согласование цены с водителями.
"""

from ride_dispatch.core.negotiation.models import NegotiationSession, Offer
from ride_dispatch.core.negotiation.policy import (
    CounterOfferPolicy,
    MinimumPricePolicy,
    RandomAcceptancePolicy,
    build_policy,
)
from ride_dispatch.core.negotiation.service import NegotiationController

__all__ = [
    "CounterOfferPolicy",
    "MinimumPricePolicy",
    "NegotiationController",
    "NegotiationSession",
    "Offer",
    "RandomAcceptancePolicy",
    "build_policy",
]
