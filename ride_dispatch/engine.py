# ride_dispatch/engine.py
"""
Сборка движка диспетчеризации.
Связывает реестр водителей, заявки, подбор, согласование и бронирования.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from ride_dispatch.common.constants import TypeMsg, VehicleClass
from ride_dispatch.common.logger import log_info, setup_logging
from ride_dispatch.core.bookings import BookingLifecycleManager, BookingRepository, InMemoryBookingRepository
from ride_dispatch.core.drivers import DriverRegistry, DriverRepository, InMemoryDriverRepository
from ride_dispatch.core.matching import MatchResult, RideRequestMatcher
from ride_dispatch.core.negotiation import CounterOfferPolicy, NegotiationController, NegotiationSession
from ride_dispatch.core.pricing import FareCalculator, InMemoryPricingConfigStore
from ride_dispatch.core.requests import InMemoryRideRequestRepository, RideRequest, RideRequestService
from ride_dispatch.payments.gateway import PaymentGateway
from ride_dispatch.shared.events.base import EventSink
from ride_dispatch.shared.models.geo import GeoPoint


@dataclass
class RideDispatch:
    """Результат запроса поездки: заявка, шорт-лист и открытая сессия выбора."""
    request: RideRequest
    match: MatchResult
    session: NegotiationSession

    @property
    def no_drivers(self) -> bool:
        """Подходящих водителей нет: интерфейс показывает «нет машин»."""
        return self.match.is_empty


@dataclass
class DispatchEngine:
    """Фасад над компонентами движка."""
    drivers: DriverRegistry
    requests: RideRequestService
    matcher: RideRequestMatcher
    negotiation: NegotiationController
    bookings: BookingLifecycleManager
    pricing: Any
    fares: FareCalculator
    events: EventSink | None = None
    _closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list, repr=False)

    async def request_ride(
        self,
        customer_id: str,
        pickup: GeoPoint | Mapping[str, Any],
        dropoff: GeoPoint | Mapping[str, Any],
        vehicle_class: VehicleClass | str,
        passenger_count: int = 1,
    ) -> RideDispatch:
        """
        Клиент запрашивает поездку: заявка, подбор до K водителей и сессия согласования.

        Raises:
            InvalidPayload: некорректные данные заявки
        """
        request = await self.requests.submit(customer_id, pickup, dropoff, vehicle_class)
        match = await self.matcher.match(request)
        session = await self.negotiation.open_session(request, match.candidates, passenger_count=passenger_count)
        return RideDispatch(request=request, match=match, session=session)

    async def close(self) -> None:
        """Останавливает таймеры сессий и закрывает собственные подключения."""
        await self.negotiation.close()
        for closer in reversed(self._closers):
            await closer()
        self._closers.clear()


def build_engine(
    *,
    driver_repository: DriverRepository | None = None,
    request_repository: Any | None = None,
    booking_repository: BookingRepository | None = None,
    pricing_store: Any | None = None,
    event_sink: EventSink | None = None,
    payment_gateway: PaymentGateway | None = None,
    policy: CounterOfferPolicy | None = None,
    fare_calculator: FareCalculator | None = None,
    session_timeout: float | None = None,
    request_ttl: float | None = None,
    max_candidates: int | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> DispatchEngine:
    """
    Собирает движок. Всё, что не передано, создаётся в памяти процесса
    с параметрами из конфига.
    """
    registry = DriverRegistry(driver_repository or InMemoryDriverRepository())
    pricing = pricing_store or InMemoryPricingConfigStore()
    fares = fare_calculator or FareCalculator()

    requests = RideRequestService(
        request_repository or InMemoryRideRequestRepository(),
        event_sink=event_sink,
        registry=registry,
        ttl_seconds=request_ttl,
    )
    bookings = BookingLifecycleManager(
        booking_repository or InMemoryBookingRepository(),
        event_sink=event_sink,
        registry=registry,
        pricing_store=pricing,
        payment_gateway=payment_gateway,
    )
    negotiation = NegotiationController(
        requests,
        bookings,
        policy=policy,
        event_sink=event_sink,
        timeout_seconds=session_timeout,
        clock=clock,
    )
    return DispatchEngine(
        drivers=registry,
        requests=requests,
        matcher=RideRequestMatcher(registry, fare_calculator=fares, max_candidates=max_candidates),
        negotiation=negotiation,
        bookings=bookings,
        pricing=pricing,
        fares=fares,
        events=event_sink,
    )


async def create_engine_from_settings() -> DispatchEngine:
    """
    Собирает движок по разделу storage конфига: PostgreSQL, Redis и RabbitMQ
    подключаются только если выбраны. Подключения закрываются в DispatchEngine.close().
    """
    from ride_dispatch.config import settings

    setup_logging()
    storage = settings.storage
    closers: list[Callable[[], Awaitable[None]]] = []
    kwargs: dict[str, Any] = {}

    if storage.STORAGE_BACKEND == "postgres":
        from ride_dispatch.core.bookings import PostgresBookingRepository
        from ride_dispatch.core.drivers import PostgresDriverRepository
        from ride_dispatch.infra.database import get_db

        db = get_db()
        await db.connect()
        await db.apply_migrations()
        closers.append(db.disconnect)
        kwargs["driver_repository"] = PostgresDriverRepository(db)
        kwargs["booking_repository"] = PostgresBookingRepository(db)

    if storage.PRICING_STORE == "redis":
        from ride_dispatch.core.pricing import RedisPricingConfigStore
        from ride_dispatch.infra.redis_client import get_redis

        redis_client = get_redis()
        await redis_client.connect()
        closers.append(redis_client.disconnect)
        kwargs["pricing_store"] = RedisPricingConfigStore(redis_client)

    if storage.EVENT_SINK == "rabbitmq":
        from ride_dispatch.infra.event_bus import EventBus

        bus = EventBus()
        await bus.connect()
        closers.append(bus.disconnect)
        kwargs["event_sink"] = bus
    else:
        from ride_dispatch.infra.event_bus import InMemoryEventSink

        kwargs["event_sink"] = InMemoryEventSink()

    if settings.payments.PAYMENT_GATEWAY_URL:
        from ride_dispatch.payments.gateway import HttpPaymentGateway

        gateway = HttpPaymentGateway()
        closers.append(gateway.close)
        kwargs["payment_gateway"] = gateway

    engine = build_engine(**kwargs)
    engine._closers.extend(closers)

    await log_info(
        f"Движок запущен: хранилище {storage.STORAGE_BACKEND}, цены {storage.PRICING_STORE}, "
        f"события {storage.EVENT_SINK}",
        type_msg=TypeMsg.INFO,
    )
    return engine
