# ride_dispatch/core/pricing/fare.py
"""
Калькулятор стоимости поездки.
Все суммы округляются до 2 знаков по правилу half-up.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from pydantic import ValidationError

from ride_dispatch.common.constants import VehicleClass
from ride_dispatch.common.exceptions import InvalidPayload
from ride_dispatch.core.pricing.models import PaymentBreakdown, PricingConfig, TripPricing


def _dec(value: float | Decimal) -> Decimal:
    # через str, чтобы 2.675 не превращалось в 2.67499999...
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_half_up(value: float | Decimal, places: int = 0) -> float:
    """Округление half-up до places знаков (а не банковское, как у round())."""
    return float(_dec(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def round2(value: float | Decimal) -> float:
    """Округляет до 2 знаков после запятой (half-up)."""
    return round_half_up(value, 2)


class FareCalculator:
    """Калькулятор оценки стоимости по расстоянию, времени и классу авто."""

    def __init__(
        self,
        per_km_base: float | None = None,
        per_min_base: float | None = None,
        flag_drop_base: float | None = None,
        min_fare: float | None = None,
        multipliers: Mapping[str, float] | None = None,
    ) -> None:
        """Инициализация с загрузкой тарифов из конфига (аргументы переопределяют конфиг)."""
        from ride_dispatch.config import settings

        fares = settings.fares
        self.per_km_base = fares.PER_KM_BASE if per_km_base is None else per_km_base
        self.per_min_base = fares.PER_MIN_BASE if per_min_base is None else per_min_base
        self.flag_drop_base = fares.FLAG_DROP_BASE if flag_drop_base is None else flag_drop_base
        self.min_fare = fares.MIN_FARE if min_fare is None else min_fare
        self.multipliers = dict(fares.VEHICLE_MULTIPLIERS if multipliers is None else multipliers)

    def multiplier(self, vehicle_class: VehicleClass | str) -> float:
        """Коэффициент класса авто."""
        key = vehicle_class.value if isinstance(vehicle_class, VehicleClass) else str(vehicle_class)
        if key not in self.multipliers:
            raise InvalidPayload(f"Unknown vehicle class: {key}", field="vehicle_class")
        return self.multipliers[key]

    def estimate(
        self,
        distance_km: float,
        duration_min: float,
        vehicle_class: VehicleClass | str,
    ) -> float:
        """
        Оценивает стоимость поездки.

        price = max(min_fare, round2(perKm * km + perMin * min + flagDrop)),
        где все ставки умножены на коэффициент класса.

        Args:
            distance_km: Расстояние в километрах
            duration_min: Длительность в минутах
            vehicle_class: Класс авто

        Returns:
            Стоимость в валюте платформы
        """
        if distance_km < 0 or duration_min < 0:
            raise InvalidPayload(
                "Distance and duration must be non-negative",
                distance_km=distance_km,
                duration_min=duration_min,
            )

        mult = _dec(self.multiplier(vehicle_class))
        price = (
            _dec(self.per_km_base) * mult * _dec(distance_km)
            + _dec(self.per_min_base) * mult * _dec(duration_min)
            + _dec(self.flag_drop_base) * mult
        )
        return max(round2(self.min_fare), round2(price))


def estimate_fare(distance_km: float, duration_min: float, vehicle_class: VehicleClass | str) -> float:
    """Оценка стоимости с тарифами из конфига."""
    return FareCalculator().estimate(distance_km, duration_min, vehicle_class)


def _as_pricing_config(config: PricingConfig | Mapping[str, Any]) -> PricingConfig:
    if isinstance(config, PricingConfig):
        return config
    try:
        return PricingConfig.model_validate(config)
    except ValidationError as e:
        raise InvalidPayload("Invalid pricing config", errors=e.errors(include_url=False)) from e


def compute_trip_pricing(distance_km: float, config: PricingConfig | Mapping[str, Any]) -> TripPricing:
    """
    Делит стоимость поездки между водителем и платформой.

    driver_fare = round2(km * driver_per_km)
    total = round2(driver_fare * (1 + fee% / 100))
    platform_fee = round2(total - driver_fare)
    """
    cfg = _as_pricing_config(config)

    distance = _dec(round2(max(_dec(distance_km), Decimal(0))))
    rate = max(_dec(cfg.driver_per_km), Decimal(0))
    fee_factor = 1 + max(_dec(cfg.platform_fee_percent), Decimal(0)) / 100

    driver_fare = _dec(round2(distance * rate))
    total = _dec(round2(driver_fare * fee_factor))

    return TripPricing(
        distance_km=float(distance),
        driver_fare=float(driver_fare),
        platform_fee=round2(total - driver_fare),
        total=float(total),
        currency=cfg.currency,
        customer_per_km=round2(rate * fee_factor),
    )


def compute_payment(gross: float, tax_rate: float = 0.18, fee_rate: float = 0.02) -> PaymentBreakdown:
    """
    Разбивка платежа на налог, комиссию и чистую выплату.

    Args:
        gross: Полная сумма платежа
        tax_rate: Ставка налога (доля)
        fee_rate: Комиссия платёжной системы (доля)
    """
    if gross < 0 or tax_rate < 0 or fee_rate < 0:
        raise InvalidPayload("Payment amounts and rates must be non-negative", gross=gross)

    gross_d = _dec(gross)
    tax = _dec(round2(gross_d * _dec(tax_rate)))
    fee = _dec(round2(gross_d * _dec(fee_rate)))

    return PaymentBreakdown(
        gross=round2(gross_d),
        tax=float(tax),
        platform_fee=float(fee),
        net=round2(gross_d - tax - fee),
    )
