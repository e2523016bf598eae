# ride_dispatch/core/matching/service.py
"""
Подбор водителей для заявки.
Фильтр по допуску, доступности и классу авто, ранжирование по близости к точке подачи.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_info
from ride_dispatch.core.drivers.models import Driver
from ride_dispatch.core.drivers.service import DriverRegistry
from ride_dispatch.core.pricing.fare import FareCalculator, round_half_up
from ride_dispatch.core.requests.models import RideRequest
from ride_dispatch.shared.models.geo import GeoPoint, haversine_km, planar_distance


@dataclass
class DriverCandidate:
    """Кандидат водителя для заявки."""
    driver: Driver
    planar_distance: float
    distance_km: float
    eta_minutes: int
    quoted_price: float

    @property
    def driver_id(self) -> str:
        return self.driver.id


@dataclass
class MatchResult:
    """Результат подбора: кандидаты по возрастанию расстояния и параметры поездки."""
    request: RideRequest
    candidates: list[DriverCandidate] = field(default_factory=list)
    trip_distance_km: float = 0.0
    trip_duration_min: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.candidates


def rank_drivers(drivers: Iterable[Driver], pickup: GeoPoint, limit: int) -> list[tuple[Driver, float]]:
    """
    Сортирует водителей по hypot разницы координат до точки подачи.

    Сортировка стабильная: при равных расстояниях сохраняется порядок реестра.
    """
    ranked = sorted(
        ((driver, planar_distance(driver.location, pickup)) for driver in drivers),
        key=lambda pair: pair[1],
    )
    return ranked[:max(limit, 0)]


class RideRequestMatcher:
    """
    Сервис подбора водителей.

    Пустой результат: штатная ситуация «нет машин», а не ошибка.
    """

    def __init__(
        self,
        registry: DriverRegistry,
        fare_calculator: FareCalculator | None = None,
        max_candidates: int | None = None,
    ) -> None:
        """
        Args:
            registry: Реестр водителей
            fare_calculator: Калькулятор для котировки цены
            max_candidates: Размер шорт-листа K (по умолчанию из конфига)
        """
        from ride_dispatch.config import settings

        self._registry = registry
        self._fares = fare_calculator or FareCalculator()
        self._max_candidates = settings.search.MAX_CANDIDATES if max_candidates is None else max_candidates
        self._eta_per_km = settings.search.ETA_MINUTES_PER_KM
        self._min_eta = settings.search.MIN_ETA_MINUTES
        self._average_speed = settings.fares.AVERAGE_SPEED_KMH

    def estimate_eta(self, distance_km: float) -> int:
        """ETA водителя до клиента в минутах."""
        return max(self._min_eta, int(round_half_up(distance_km * self._eta_per_km)))

    def estimate_trip(self, request: RideRequest) -> tuple[float, int]:
        """Расстояние (км) и длительность (мин) поездки по прямой."""
        distance = round_half_up(haversine_km(request.pickup, request.dropoff), 2)
        duration = int(round_half_up(distance / self._average_speed * 60)) if self._average_speed > 0 else 0
        return distance, duration

    async def match(self, request: RideRequest) -> MatchResult:
        """
        Подбирает до K ближайших подходящих водителей.

        Args:
            request: Заявка на поездку

        Returns:
            Результат подбора с котировкой цены для каждого кандидата
        """
        eligible = await self._registry.eligible_drivers(request.vehicle_class)
        trip_km, trip_min = self.estimate_trip(request)
        quoted = self._fares.estimate(trip_km, trip_min, request.vehicle_class)

        candidates = []
        for driver, planar in rank_drivers(eligible, request.pickup, self._max_candidates):
            distance_km = round_half_up(haversine_km(driver.location, request.pickup), 1)
            candidates.append(
                DriverCandidate(
                    driver=driver,
                    planar_distance=planar,
                    distance_km=distance_km,
                    eta_minutes=self.estimate_eta(distance_km),
                    quoted_price=quoted,
                )
            )

        await log_info(
            f"Заявка {request.id}: подходящих водителей {len(eligible)}, в шорт-листе {len(candidates)}",
            type_msg=TypeMsg.DEBUG,
        )
        return MatchResult(
            request=request,
            candidates=candidates,
            trip_distance_km=trip_km,
            trip_duration_min=trip_min,
        )
