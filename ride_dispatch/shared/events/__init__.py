# ride_dispatch/shared/events/__init__.py
"""
Доменные события движка.
"""

from ride_dispatch.shared.events.base import DomainEvent, EventMetadata, EventSink, publish_safely
from ride_dispatch.shared.events.dispatch_events import (
    BookingCreated,
    BookingPaid,
    BookingRouteAttached,
    BookingStatusChanged,
    NegotiationExpired,
    RideAccepted,
    RideCancelled,
    RideRequested,
)

__all__ = [
    "DomainEvent",
    "EventMetadata",
    "EventSink",
    "publish_safely",
    "RideRequested",
    "RideAccepted",
    "RideCancelled",
    "NegotiationExpired",
    "BookingCreated",
    "BookingStatusChanged",
    "BookingRouteAttached",
    "BookingPaid",
]
