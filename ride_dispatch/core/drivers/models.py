# ride_dispatch/core/drivers/models.py
"""
Модели данных водителей.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from ride_dispatch.common.constants import ApprovalStatus, VehicleClass
from ride_dispatch.shared.models.geo import GeoPoint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Driver(BaseModel):
    """Модель водителя."""

    id: str = Field(..., min_length=1, description="ID водителя")
    name: str = Field(..., min_length=1, description="Отображаемое имя")
    vehicle_class: VehicleClass = Field(..., description="Класс автомобиля")
    vehicle_model: Optional[str] = Field(None, description="Модель автомобиля")
    license_plate: Optional[str] = Field(None, description="Госномер")

    # Живое состояние (heartbeat водителя)
    location: GeoPoint = Field(default_factory=lambda: GeoPoint(lat=0, lng=0), description="Текущая позиция")
    available: bool = Field(False, description="На линии и свободен")

    # Модерация (изменяется только администратором)
    approval: ApprovalStatus = Field(ApprovalStatus.PENDING, description="Статус модерации")
    rejection_reason: Optional[str] = Field(None, description="Причина отказа")

    rating: float = Field(4.7, ge=0.0, le=5.0, description="Рейтинг")
    total_rides: int = Field(0, ge=0, description="Количество поездок")

    created_at: datetime = Field(default_factory=utcnow, description="Время регистрации")
    updated_at: datetime = Field(default_factory=utcnow, description="Время изменения")

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel

    @model_validator(mode="after")
    def check_rejection_reason(self) -> "Driver":
        """Причина отказа есть тогда и только тогда, когда водитель отклонён."""
        if self.approval == ApprovalStatus.REJECTED and not self.rejection_reason:
            raise ValueError("rejected driver requires a rejection reason")
        if self.approval != ApprovalStatus.REJECTED and self.rejection_reason:
            raise ValueError("rejection reason is only allowed for rejected drivers")
        return self

    @property
    def approved(self) -> bool:
        return self.approval == ApprovalStatus.APPROVED

    @property
    def rejected_reason(self) -> str | None:
        return self.rejection_reason

    def is_eligible(self, vehicle_class: VehicleClass) -> bool:
        """Может ли водитель получить заявку указанного класса."""
        return self.approved and self.available and self.vehicle_class == vehicle_class
