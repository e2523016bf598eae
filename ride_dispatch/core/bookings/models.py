# ride_dispatch/core/bookings/models.py
"""
Модели данных бронирований.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from ride_dispatch.common.constants import BookingStatus, PaymentMethod, PaymentStatus, VehicleClass
from ride_dispatch.core.pricing.models import PaymentBreakdown, TripPricing
from ride_dispatch.shared.models.geo import GeoPoint


class RoutePoint(BaseModel):
    """Точка записанного трека."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    class Config:
        from_attributes = True
        frozen = True


class RouteTrace(BaseModel):
    """Трек поездки для воспроизведения: путь водителя и (опционально) клиента."""

    driver_path: list[RoutePoint] = Field(..., min_length=1, description="Путь водителя")
    customer_path: Optional[list[RoutePoint]] = Field(None, description="Путь клиента")

    class Config:
        populate_by_name = True
        alias_generator = to_camel


class BookingDraft(BaseModel):
    """
    Данные для создания бронирования.
    Принимает как snake_case, так и camelCase ключи (pickupLocation, passengerCount, ...).
    """

    pickup_location: GeoPoint = Field(..., description="Точка подачи")
    dropoff_location: GeoPoint = Field(..., description="Точка назначения")
    passenger_count: int = Field(..., ge=1, description="Количество пассажиров")
    vehicle_type: VehicleClass = Field(..., description="Класс автомобиля")

    customer_id: Optional[str] = Field(None, description="ID клиента")
    guest_name: Optional[str] = Field(None, description="Имя гостя (без аккаунта)")
    guest_phone: Optional[str] = Field(None, description="Телефон гостя")
    driver_id: Optional[str] = Field(None, description="Назначенный водитель")
    ride_request_id: Optional[str] = Field(None, description="Заявка, из которой создано бронирование")

    pickup_time: Optional[datetime] = Field(None, description="Запрошенное время подачи (по умолчанию сейчас)")
    is_immediate: bool = Field(False, description="Немедленная поездка")
    flight_number: Optional[str] = Field(None, description="Номер рейса")
    notes: Optional[str] = Field(None, description="Пожелания клиента")
    reservation_code: Optional[str] = Field(None, description="Код брони (генерируется, если не задан)")

    base_price: Optional[float] = Field(None, ge=0.0, description="Котировка")
    final_price: Optional[float] = Field(None, ge=0.0, description="Итоговая цена")
    payment_method: Optional[PaymentMethod] = Field(None, description="Способ оплаты")

    class Config:
        populate_by_name = True
        alias_generator = to_camel

    @field_validator("customer_id", "guest_name", "guest_phone", "reservation_code", "notes")
    @classmethod
    def strip_blank(cls, v: Optional[str]) -> Optional[str]:
        """Пустые строки считаются отсутствующими значениями."""
        if v is None:
            return None
        v = v.strip()
        return v or None


class Booking(BaseModel):
    """Модель бронирования."""

    id: str = Field(default_factory=lambda: f"bk_{uuid4().hex[:12]}", description="ID бронирования")
    reservation_code: str = Field(..., min_length=1, description="Код брони для поиска гостем")

    customer_id: Optional[str] = Field(None, description="ID клиента")
    guest_name: Optional[str] = Field(None, description="Имя гостя")
    guest_phone: Optional[str] = Field(None, description="Телефон гостя")
    driver_id: Optional[str] = Field(None, description="ID водителя")
    ride_request_id: Optional[str] = Field(None, description="ID заявки")

    # Маршрут и планирование
    pickup_location: GeoPoint = Field(..., description="Точка подачи")
    dropoff_location: GeoPoint = Field(..., description="Точка назначения")
    pickup_time: datetime = Field(..., description="Запрошенное время подачи")
    passenger_count: int = Field(..., ge=1, description="Количество пассажиров")
    vehicle_type: VehicleClass = Field(..., description="Класс автомобиля")
    is_immediate: bool = Field(False)
    flight_number: Optional[str] = Field(None)
    notes: Optional[str] = Field(None)

    status: BookingStatus = Field(BookingStatus.PENDING, description="Статус бронирования")

    # Коммерция
    base_price: Optional[float] = Field(None, ge=0.0, description="Котировка")
    final_price: Optional[float] = Field(None, ge=0.0, description="Итоговая цена")
    pricing: Optional[TripPricing] = Field(None, description="Разбивка цены на момент создания")
    payment_status: PaymentStatus = Field(PaymentStatus.UNPAID, description="Статус оплаты")
    payment_method: Optional[PaymentMethod] = Field(None, description="Способ оплаты")
    payment_reference: Optional[str] = Field(None, description="ID транзакции платёжного шлюза")
    payment_breakdown: Optional[PaymentBreakdown] = Field(None, description="Налог и комиссии с оплаченной суммы")
    paid_at: Optional[datetime] = Field(None, description="Время оплаты")

    route: Optional[RouteTrace] = Field(None, description="Записанный трек")

    # Временные метки
    created_at: datetime = Field(..., description="Время создания")
    updated_at: datetime = Field(..., description="Время последнего изменения")
    picked_up_at: Optional[datetime] = Field(None, description="Время посадки")
    completed_at: Optional[datetime] = Field(None, description="Время завершения")
    cancelled_at: Optional[datetime] = Field(None, description="Время отмены")
    cancellation_reason: Optional[str] = Field(None, description="Причина отмены")

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel

    @property
    def is_terminal(self) -> bool:
        """Завершено или отменено."""
        return self.status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        """Водитель назначен и поездка ещё не завершена."""
        return self.driver_id is not None and not self.is_terminal and self.status != BookingStatus.PENDING

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID
