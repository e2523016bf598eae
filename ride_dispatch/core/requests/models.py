# ride_dispatch/core/requests/models.py
"""
Модель заявки на поездку.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ride_dispatch.common.constants import RideRequestStatus, VehicleClass
from ride_dispatch.shared.models.geo import GeoPoint


class RideRequest(BaseModel):
    """Заявка клиента; переходит pending -> accepted ровно один раз."""

    id: str = Field(default_factory=lambda: f"ride_{uuid4().hex[:12]}", description="ID заявки")
    customer_id: str = Field(..., min_length=1, description="ID клиента")
    pickup: GeoPoint = Field(..., description="Точка подачи")
    dropoff: GeoPoint = Field(..., description="Точка назначения")
    vehicle_class: VehicleClass = Field(..., description="Запрошенный класс авто")

    status: RideRequestStatus = Field(RideRequestStatus.PENDING, description="Статус заявки")
    driver_id: Optional[str] = Field(None, description="Водитель, принявший заявку")

    created_at: datetime = Field(..., description="Время создания")
    expires_at: datetime = Field(..., description="Заявка без ответа истекает после этого момента")
    accepted_at: Optional[datetime] = Field(None, description="Время принятия")
    cancelled_at: Optional[datetime] = Field(None, description="Время отмены")

    class Config:
        from_attributes = True

    @property
    def is_pending(self) -> bool:
        return self.status == RideRequestStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        """Истекла ли ожидающая заявка к моменту now."""
        return self.is_pending and now >= self.expires_at
