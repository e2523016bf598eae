# ride_dispatch/core/pricing/models.py
"""
Модели ценообразования.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from ride_dispatch.common.constants import Currency


class PricingConfig(BaseModel):
    """Конфигурация распределения цены: ставка водителю за км и комиссия платформы."""
    driver_per_km: float = Field(default=1.0, ge=0)
    platform_fee_percent: float = Field(default=3.0, ge=0)
    currency: Currency = Currency.EUR
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


class TripPricing(BaseModel):
    """Разбивка стоимости поездки."""
    distance_km: float
    driver_fare: float
    platform_fee: float
    total: float
    currency: Currency
    customer_per_km: float


class PaymentBreakdown(BaseModel):
    """Разбивка платежа: налог, комиссия платёжной системы, остаток."""
    gross: float
    tax: float
    platform_fee: float
    net: float
