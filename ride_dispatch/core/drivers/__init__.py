# ride_dispatch/core/drivers/__init__.py
"""
Реестр водителей.
"""

from ride_dispatch.core.drivers.models import Driver
from ride_dispatch.core.drivers.repository import (
    DriverRepository,
    InMemoryDriverRepository,
    PostgresDriverRepository,
)
from ride_dispatch.core.drivers.service import DriverRegistry

__all__ = [
    "Driver",
    "DriverRegistry",
    "DriverRepository",
    "InMemoryDriverRepository",
    "PostgresDriverRepository",
]
