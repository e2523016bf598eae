# ride_dispatch/shared/events/dispatch_events.py
"""
События заявок, согласования и бронирований.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from ride_dispatch.shared.events.base import DomainEvent
from ride_dispatch.shared.models.geo import GeoPoint


# =============================================================================
# ЗАЯВКИ НА ПОЕЗДКУ
# =============================================================================

class RideRequested(DomainEvent):
    """Событие: клиент создал заявку, водители должны её увидеть."""

    event_type: Literal["ride:request"] = "ride:request"

    request_id: str
    customer_id: str
    pickup: GeoPoint
    dropoff: GeoPoint
    vehicle_class: str
    expires_at: datetime


class RideAccepted(DomainEvent):
    """Событие: водитель принял заявку."""

    event_type: Literal["ride:accepted"] = "ride:accepted"

    request_id: str
    customer_id: str
    driver_id: str


class RideCancelled(DomainEvent):
    """Событие: клиент отменил заявку."""

    event_type: Literal["ride:cancelled"] = "ride:cancelled"

    request_id: str
    customer_id: str


class NegotiationExpired(DomainEvent):
    """Событие: время сессии согласования истекло без выбора водителя."""

    event_type: Literal["negotiation:expired"] = "negotiation:expired"

    session_id: str
    request_id: str


# =============================================================================
# БРОНИРОВАНИЯ
# =============================================================================

class BookingCreated(DomainEvent):
    """Событие: бронирование создано."""

    event_type: Literal["booking:create"] = "booking:create"

    booking_id: str
    customer_id: str | None
    reservation_code: str
    vehicle_type: str
    base_price: float | None = None


class BookingStatusChanged(DomainEvent):
    """Событие: статус бронирования изменён."""

    event_type: Literal["booking:update"] = "booking:update"

    booking_id: str
    old_status: str
    new_status: str
    driver_id: str | None = None


class BookingRouteAttached(DomainEvent):
    """Событие: к бронированию привязан трек маршрута."""

    event_type: Literal["booking:route"] = "booking:route"

    booking_id: str
    driver_points: int
    customer_points: int


class BookingPaid(DomainEvent):
    """Событие: бронирование оплачено."""

    event_type: Literal["booking:paid"] = "booking:paid"

    booking_id: str
    amount: float | None
    currency: str
    method: str
