# ride_dispatch/core/requests/service.py
"""
Сервис заявок на поездку.
Создание, принятие водителем (первый побеждает), отмена и истечение по TTL.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from ride_dispatch.common.constants import RideRequestStatus, TypeMsg, VehicleClass
from ride_dispatch.common.exceptions import AlreadyAccepted, InvalidPayload, NotFound, SessionClosed
from ride_dispatch.common.locks import KeyedLock
from ride_dispatch.common.logger import log_info, log_warning
from ride_dispatch.common.validation import parse_payload
from ride_dispatch.core.drivers.service import DriverRegistry
from ride_dispatch.core.requests.models import RideRequest
from ride_dispatch.core.requests.repository import RideRequestRepository
from ride_dispatch.shared.events.base import EventSink, publish_safely
from ride_dispatch.shared.events.dispatch_events import RideAccepted, RideCancelled, RideRequested
from ride_dispatch.shared.models.geo import GeoPoint


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RideRequestService:
    """
    Сервис заявок.

    Принятие заявки: атомарный compare-and-set pending -> accepted
    под блокировкой по id заявки.
    """

    def __init__(
        self,
        repository: RideRequestRepository,
        event_sink: EventSink | None = None,
        registry: DriverRegistry | None = None,
        ttl_seconds: float | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Args:
            repository: Хранилище заявок
            event_sink: Канал событий ride:*
            registry: Реестр водителей (принявший водитель становится недоступен)
            ttl_seconds: Время жизни заявки без ответа (по умолчанию из конфига)
            now: Источник текущего времени
        """
        if ttl_seconds is None:
            from ride_dispatch.config import settings
            ttl_seconds = settings.timeouts.RIDE_REQUEST_TTL_SECONDS

        self._repo = repository
        self._events = event_sink
        self._registry = registry
        self._ttl = timedelta(seconds=ttl_seconds)
        self._now = now
        self._locks = KeyedLock()

    async def get(self, request_id: str) -> RideRequest:
        request = await self._repo.get(request_id)
        if request is None:
            raise NotFound("ride_request", request_id)
        return request

    async def submit(
        self,
        customer_id: str,
        pickup: GeoPoint | Mapping[str, Any],
        dropoff: GeoPoint | Mapping[str, Any],
        vehicle_class: VehicleClass | str,
        request_id: str | None = None,
    ) -> RideRequest:
        """
        Создаёт заявку и оповещает водителей событием ride:request.

        Raises:
            InvalidPayload: некорректные точки, класс авто или пустой customer_id
        """
        now = self._now()
        payload: dict[str, Any] = {
            "customer_id": customer_id,
            "pickup": pickup,
            "dropoff": dropoff,
            "vehicle_class": vehicle_class,
            "created_at": now,
            "expires_at": now + self._ttl,
        }
        if request_id is not None:
            payload["id"] = request_id

        request = parse_payload(RideRequest, payload)
        if await self._repo.get(request.id) is not None:
            raise InvalidPayload(f"Ride request already exists: {request.id}", id=request.id)

        await self._repo.save(request)
        await log_info(
            f"Новая заявка {request.id} от {request.customer_id} ({request.vehicle_class.value})",
            type_msg=TypeMsg.INFO,
        )
        await publish_safely(
            self._events,
            RideRequested(
                request_id=request.id,
                customer_id=request.customer_id,
                pickup=request.pickup,
                dropoff=request.dropoff,
                vehicle_class=request.vehicle_class.value,
                expires_at=request.expires_at,
            ),
        )
        return request

    async def accept(self, request_id: str, driver_id: str) -> RideRequest:
        """
        Водитель принимает заявку. Побеждает первый.

        Водитель проверяется по реестру до изменения заявки; если отметить
        его занятым не удалось, заявка возвращается в прежнее состояние.

        Raises:
            NotFound: заявка или водитель не найдены
            AlreadyAccepted: заявку уже принял другой вызов
            SessionClosed: заявка отменена или истекла
        """
        async with self._locks.hold(request_id):
            request = await self.get(request_id)
            now = self._now()

            if request.status == RideRequestStatus.ACCEPTED:
                await log_warning(f"Заявка {request_id} уже принята водителем {request.driver_id}, отказ {driver_id}")
                raise AlreadyAccepted(
                    f"Ride request {request_id} already accepted",
                    request_id=request_id,
                    driver_id=request.driver_id,
                )
            if request.status == RideRequestStatus.CANCELLED:
                raise SessionClosed(f"Ride request {request_id} was cancelled", request_id=request_id)
            if request.is_expired(now):
                raise SessionClosed(f"Ride request {request_id} has expired", request_id=request_id)
            if self._registry is not None:
                await self._registry.get(driver_id)

            accepted = await self._repo.save(
                request.model_copy(
                    update={"status": RideRequestStatus.ACCEPTED, "driver_id": driver_id, "accepted_at": now}
                )
            )
            if self._registry is not None:
                try:
                    await self._registry.set_availability(driver_id, False)
                except Exception:
                    await self._repo.save(request)
                    raise

        await log_info(f"Заявка {request_id} принята водителем {driver_id}", type_msg=TypeMsg.INFO)
        await publish_safely(
            self._events,
            RideAccepted(request_id=request_id, customer_id=accepted.customer_id, driver_id=driver_id),
        )
        return accepted

    async def release(self, request_id: str, driver_id: str) -> RideRequest:
        """
        Откат принятия: заявка снова ожидает водителя, водитель снова свободен.
        Используется, когда после принятия не удалось создать бронирование.
        Заявка, принятая другим водителем, не меняется.

        Raises:
            NotFound: заявка не найдена
        """
        async with self._locks.hold(request_id):
            request = await self.get(request_id)
            if request.status != RideRequestStatus.ACCEPTED or request.driver_id != driver_id:
                return request

            released = await self._repo.save(
                request.model_copy(update={"status": RideRequestStatus.PENDING, "driver_id": None, "accepted_at": None})
            )
            if self._registry is not None:
                await self._registry.set_availability(driver_id, True)

        await log_warning(f"Принятие заявки {request_id} водителем {driver_id} отменено, заявка снова ожидает")
        return released

    async def cancel(self, request_id: str, customer_id: str | None = None) -> RideRequest:
        """
        Клиент отменяет заявку.
        Уже принятая или отменённая заявка возвращается без изменений.

        Raises:
            NotFound: заявка не найдена или принадлежит другому клиенту
        """
        async with self._locks.hold(request_id):
            request = await self.get(request_id)
            if customer_id is not None and request.customer_id != customer_id:
                raise NotFound("ride_request", request_id)
            if not request.is_pending:
                return request

            cancelled = await self._repo.save(
                request.model_copy(update={"status": RideRequestStatus.CANCELLED, "cancelled_at": self._now()})
            )

        await log_info(f"Заявка {request_id} отменена клиентом", type_msg=TypeMsg.INFO)
        await publish_safely(self._events, RideCancelled(request_id=request_id, customer_id=cancelled.customer_id))
        return cancelled

    async def list_pending(self, vehicle_class: VehicleClass | str | None = None) -> list[RideRequest]:
        """Ожидающие неистёкшие заявки (для ленты водителя)."""
        now = self._now()
        wanted = VehicleClass(vehicle_class) if vehicle_class is not None else None
        return [
            r
            for r in await self._repo.list_all()
            if r.is_pending and not r.is_expired(now) and (wanted is None or r.vehicle_class == wanted)
        ]

    async def purge_expired(self) -> int:
        """
        Отменяет ожидающие заявки с истёкшим TTL.

        Returns:
            Количество отменённых заявок
        """
        now = self._now()
        purged = 0
        for request in await self._repo.list_all():
            if not request.is_expired(now):
                continue
            async with self._locks.hold(request.id):
                current = await self.get(request.id)
                if not current.is_expired(now):
                    continue
                await self._repo.save(
                    current.model_copy(update={"status": RideRequestStatus.CANCELLED, "cancelled_at": now})
                )
            self._locks.discard(request.id)
            purged += 1
            await publish_safely(self._events, RideCancelled(request_id=current.id, customer_id=current.customer_id))

        if purged:
            await log_info(f"Очищено просроченных заявок: {purged}", type_msg=TypeMsg.INFO)
        return purged
