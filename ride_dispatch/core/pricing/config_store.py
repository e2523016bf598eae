# ride_dispatch/core/pricing/config_store.py
"""
Хранилище конфигурации ценообразования.
Последнее известное значение всегда держится в памяти процесса;
Redis-вариант синхронизирует его с общим хранилищем.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping

from redis.exceptions import RedisError

from ride_dispatch.common.constants import Currency
from ride_dispatch.common.logger import log_info, log_warning
from ride_dispatch.core.pricing.fare import round2
from ride_dispatch.core.pricing.models import PricingConfig
from ride_dispatch.infra.redis_client import RedisClient


def default_pricing_config() -> PricingConfig:
    """Конфигурация по умолчанию из config.json."""
    from ride_dispatch.config import settings

    return PricingConfig(
        driver_per_km=settings.pricing.DRIVER_PER_KM,
        platform_fee_percent=settings.pricing.PLATFORM_FEE_PERCENT,
        currency=coerce_currency(settings.pricing.CURRENCY),
        updated_at=datetime.now(timezone.utc),
    )


def coerce_number(value: Any) -> float | None:
    """Число или числовая строка -> float; всё остальное -> None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def coerce_currency(value: Any) -> Currency:
    """Неизвестная валюта приводится к EUR."""
    raw = str(value or "").strip().upper()
    try:
        return Currency(raw)
    except ValueError:
        return Currency.EUR


def normalize_pricing_patch(patch: Mapping[str, Any], current: PricingConfig) -> PricingConfig:
    """
    Применяет частичное обновление к конфигурации.

    Числа принимаются и строками, отрицательные значения обнуляются,
    всё округляется до 2 знаков. Некорректное число оставляет прежнее значение.

    Args:
        patch: Обновление (snake_case или camelCase ключи)
        current: Текущая конфигурация

    Returns:
        Новая конфигурация с обновлённым updated_at
    """
    def pick(*keys: str) -> Any:
        for key in keys:
            if key in patch:
                return patch[key]
        return None

    per_km = coerce_number(pick("driver_per_km", "driverPerKm"))
    fee = coerce_number(pick("platform_fee_percent", "platformFeePercent"))
    currency_raw = pick("currency")

    return PricingConfig(
        driver_per_km=current.driver_per_km if per_km is None else max(0.0, round2(per_km)),
        platform_fee_percent=current.platform_fee_percent if fee is None else max(0.0, round2(fee)),
        currency=current.currency if currency_raw is None else coerce_currency(currency_raw),
        updated_at=datetime.now(timezone.utc),
    )


class InMemoryPricingConfigStore:
    """Конфигурация в памяти процесса."""

    def __init__(self, initial: PricingConfig | None = None) -> None:
        self._current = initial or default_pricing_config()

    async def get(self) -> PricingConfig:
        return self._current

    async def set(self, patch: Mapping[str, Any]) -> PricingConfig:
        self._current = normalize_pricing_patch(patch, self._current)
        await log_info(
            f"Конфигурация цен обновлена: {self._current.driver_per_km}/км, "
            f"комиссия {self._current.platform_fee_percent}% {self._current.currency.value}"
        )
        return self._current


class RedisPricingConfigStore(InMemoryPricingConfigStore):
    """
    Конфигурация в Redis.
    При недоступности Redis возвращается последнее известное значение.
    """

    def __init__(
        self,
        redis: RedisClient,
        key: str | None = None,
        initial: PricingConfig | None = None,
    ) -> None:
        super().__init__(initial)
        if key is None:
            from ride_dispatch.config import settings
            key = settings.pricing.PRICING_CACHE_KEY
        self._redis = redis
        self._key = key

    async def get(self) -> PricingConfig:
        try:
            stored = await self._redis.get_model(self._key, PricingConfig)
        except (RedisError, ConnectionError) as e:
            await log_warning(f"Не удалось прочитать конфигурацию цен из Redis: {e}")
            return self._current

        if stored is not None:
            self._current = stored
        return self._current

    async def set(self, patch: Mapping[str, Any]) -> PricingConfig:
        updated = await super().set(patch)
        try:
            await self._redis.set_model(self._key, updated)
        except (RedisError, ConnectionError) as e:
            await log_warning(f"Не удалось сохранить конфигурацию цен в Redis: {e}")
        return updated
