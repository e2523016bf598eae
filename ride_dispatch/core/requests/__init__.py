# ride_dispatch/core/requests/__init__.py
"""
Заявки на поездку.
"""

from ride_dispatch.core.requests.models import RideRequest
from ride_dispatch.core.requests.repository import InMemoryRideRequestRepository, RideRequestRepository
from ride_dispatch.core.requests.service import RideRequestService

__all__ = [
    "RideRequest",
    "RideRequestRepository",
    "InMemoryRideRequestRepository",
    "RideRequestService",
]
