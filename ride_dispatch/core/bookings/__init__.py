# ride_dispatch/core/bookings/__init__.py
"""
Жизненный цикл бронирования.
"""

from ride_dispatch.core.bookings.models import Booking, BookingDraft, RoutePoint, RouteTrace
from ride_dispatch.core.bookings.repository import (
    BookingRepository,
    InMemoryBookingRepository,
    PostgresBookingRepository,
)
from ride_dispatch.core.bookings.service import BookingLifecycleManager, generate_reservation_code
from ride_dispatch.core.bookings.state_machine import BookingStateMachine

__all__ = [
    "Booking",
    "BookingDraft",
    "BookingLifecycleManager",
    "BookingRepository",
    "BookingStateMachine",
    "InMemoryBookingRepository",
    "PostgresBookingRepository",
    "RoutePoint",
    "RouteTrace",
    "generate_reservation_code",
]
