# ride_dispatch/core/bookings/service.py
"""
Менеджер жизненного цикла бронирования.
Создание, переходы статуса, трек маршрута и оплата.
"""

from __future__ import annotations

import asyncio
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from ride_dispatch.common.constants import BookingStatus, PaymentMethod, PaymentStatus, TypeMsg
from ride_dispatch.common.exceptions import InvalidPayload, InvalidRoute, InvalidTransition, NotFound
from ride_dispatch.common.locks import KeyedLock
from ride_dispatch.common.logger import log_info, log_warning
from ride_dispatch.common.validation import parse_payload
from ride_dispatch.core.bookings.models import Booking, BookingDraft, RouteTrace
from ride_dispatch.core.bookings.repository import BookingRepository
from ride_dispatch.core.bookings.state_machine import BookingStateMachine
from ride_dispatch.core.drivers.service import DriverRegistry
from ride_dispatch.core.pricing.fare import compute_payment, compute_trip_pricing, round2
from ride_dispatch.core.pricing.models import TripPricing
from ride_dispatch.payments.gateway import PaymentGateway, charge_or_raise
from ride_dispatch.shared.events.base import EventSink, publish_safely
from ride_dispatch.shared.events.dispatch_events import (
    BookingCreated,
    BookingPaid,
    BookingRouteAttached,
    BookingStatusChanged,
)
from ride_dispatch.shared.models.geo import haversine_km

# Без похожих символов (0/O, 1/I)
RESERVATION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

ACTIVE_STATUSES = (
    BookingStatus.ACCEPTED,
    BookingStatus.DRIVER_EN_ROUTE,
    BookingStatus.DRIVER_ARRIVED,
    BookingStatus.IN_PROGRESS,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_reservation_code(length: int = 8) -> str:
    """Случайный код брони из RESERVATION_CODE_ALPHABET."""
    return "".join(secrets.choice(RESERVATION_CODE_ALPHABET) for _ in range(length))


class BookingLifecycleManager:
    """
    Владелец сущности бронирования.

    Все изменения одного бронирования сериализуются блокировкой по его id;
    переходы статуса проверяются по BookingStateMachine.
    """

    def __init__(
        self,
        repository: BookingRepository,
        event_sink: EventSink | None = None,
        registry: DriverRegistry | None = None,
        pricing_store: Any | None = None,
        payment_gateway: PaymentGateway | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Args:
            repository: Хранилище бронирований
            event_sink: Канал событий booking:*
            registry: Реестр водителей (занятость водителя)
            pricing_store: Хранилище конфигурации цен (расчёт цены при создании)
            payment_gateway: Платёжный шлюз (списание при оплате картой)
            now: Источник текущего времени
        """
        from ride_dispatch.config import settings

        self._repo = repository
        self._events = event_sink
        self._registry = registry
        self._pricing_store = pricing_store
        self._gateway = payment_gateway
        self._now = now
        self._locks = KeyedLock()
        self._code_lock = asyncio.Lock()

        self._code_length = settings.bookings.RESERVATION_CODE_LENGTH
        self._code_attempts = settings.bookings.RESERVATION_CODE_ATTEMPTS
        self._default_method = PaymentMethod(settings.bookings.DEFAULT_PAYMENT_METHOD)
        self._currency = settings.pricing.CURRENCY
        self._tax_rate = settings.pricing.TAX_RATE
        self._fee_rate = settings.pricing.PAYMENT_FEE_RATE

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get(self, booking_id: str) -> Booking:
        """
        Получает бронирование по ID.

        Raises:
            NotFound: бронирование не найдено
        """
        booking = await self._repo.get(booking_id)
        if booking is None:
            raise NotFound("booking", booking_id)
        return booking

    async def find_by_reservation_code(self, code: str, phone: str | None = None) -> Booking:
        """
        Поиск гостем по коду брони (и телефону, если указан).

        Raises:
            NotFound: нет бронирования с таким кодом или телефон не совпадает
        """
        normalized = (code or "").strip().upper()
        booking = await self._repo.find_by_reservation_code(normalized) if normalized else None
        if booking is None or (phone is not None and (booking.guest_phone or "") != phone.strip()):
            raise NotFound("booking", normalized)
        return booking

    async def list_by_driver(self, driver_id: str) -> list[Booking]:
        return [b for b in await self._repo.list_all() if b.driver_id == driver_id]

    async def list_by_customer(self, customer_id: str) -> list[Booking]:
        return [b for b in await self._repo.list_all() if b.customer_id == customer_id]

    async def active_for_driver(self, driver_id: str) -> Booking | None:
        """Текущая поездка водителя (accepted..in_progress), если есть."""
        return next((b for b in await self.list_by_driver(driver_id) if b.status in ACTIVE_STATUSES), None)

    async def history_for_driver(self, driver_id: str) -> list[Booking]:
        """Завершённые и отменённые поездки водителя."""
        return [b for b in await self.list_by_driver(driver_id) if b.is_terminal]

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create(self, draft: BookingDraft | Mapping[str, Any]) -> Booking:
        """
        Создаёт бронирование в статусе pending, оплата unpaid.

        Без base_price цена считается по конфигурации цен из расстояния
        между точками: base_price = выплата водителю, final_price = итог для клиента.

        Raises:
            InvalidPayload: нет или некорректны pickupLocation, dropoffLocation,
                passengerCount, vehicleType; код брони уже занят
        """
        data = parse_payload(BookingDraft, draft)
        now = self._now()

        pricing: TripPricing | None = None
        base_price = data.base_price
        final_price = data.final_price
        if base_price is None and self._pricing_store is not None:
            config = await self._pricing_store.get()
            pricing = compute_trip_pricing(haversine_km(data.pickup_location, data.dropoff_location), config)
            base_price = pricing.driver_fare
            final_price = pricing.total if final_price is None else final_price
        if final_price is None:
            final_price = base_price

        # проверка уникальности кода и сохранение выполняются атомарно
        async with self._code_lock:
            booking = Booking(
                reservation_code=await self._reservation_code(data.reservation_code),
                customer_id=data.customer_id,
                guest_name=data.guest_name,
                guest_phone=data.guest_phone,
                driver_id=data.driver_id,
                ride_request_id=data.ride_request_id,
                pickup_location=data.pickup_location,
                dropoff_location=data.dropoff_location,
                pickup_time=data.pickup_time or now,
                passenger_count=data.passenger_count,
                vehicle_type=data.vehicle_type,
                is_immediate=data.is_immediate,
                flight_number=data.flight_number,
                notes=data.notes,
                base_price=round2(base_price) if base_price is not None else None,
                final_price=round2(final_price) if final_price is not None else None,
                pricing=pricing,
                payment_method=data.payment_method,
                created_at=now,
                updated_at=now,
            )
            await self._repo.save(booking)

        await log_info(
            f"Бронирование {booking.id} ({booking.reservation_code}) создано: "
            f"{booking.vehicle_type.value}, цена {booking.final_price}",
            type_msg=TypeMsg.INFO,
        )
        await publish_safely(
            self._events,
            BookingCreated(
                booking_id=booking.id,
                customer_id=booking.customer_id,
                reservation_code=booking.reservation_code,
                vehicle_type=booking.vehicle_type.value,
                base_price=booking.base_price,
            ),
        )
        return booking

    async def _reservation_code(self, requested: str | None) -> str:
        if requested:
            code = requested.upper()
            if await self._repo.find_by_reservation_code(code) is not None:
                raise InvalidPayload(f"Reservation code already in use: {code}", reservation_code=code)
            return code

        for _ in range(self._code_attempts):
            code = generate_reservation_code(self._code_length)
            if await self._repo.find_by_reservation_code(code) is None:
                return code
        # пространство кодов почти исчерпано: удлиняем код
        return generate_reservation_code(self._code_length + 2)

    # =========================================================================
    # СТАТУСЫ
    # =========================================================================

    async def set_status(self, booking_id: str, new_status: BookingStatus | str) -> Booking:
        """
        Переводит бронирование в новый статус.

        Повтор текущего статуса ничего не меняет. Вход в in_progress фиксирует
        picked_up_at, в completed фиксирует completed_at (однократно).
        На completed и cancelled водитель снова становится доступен.

        Raises:
            InvalidPayload: неизвестный статус
            NotFound: бронирование не найдено
            InvalidTransition: переход не разрешён графом
        """
        target = BookingStateMachine.parse_status(new_status)
        return await self._transition(booking_id, target)

    async def cancel(self, booking_id: str, reason: str | None = None) -> Booking:
        """
        Отменяет бронирование из любого незавершённого статуса.

        Raises:
            NotFound: бронирование не найдено
            InvalidTransition: бронирование уже завершено
        """
        return await self._transition(booking_id, BookingStatus.CANCELLED, cancellation_reason=reason)

    async def assign_driver(self, booking_id: str, driver_id: str) -> Booking:
        """
        Водитель берёт ожидающее бронирование: pending -> accepted.

        Raises:
            NotFound: бронирование (или водитель в реестре) не найдено
            InvalidTransition: бронирование уже не в статусе pending
        """
        if self._registry is not None:
            await self._registry.get(driver_id)

        async with self._locks.hold(booking_id):
            booking = await self.get(booking_id)
            if booking.status != BookingStatus.PENDING:
                raise InvalidTransition(booking.status.value, BookingStatus.ACCEPTED.value)

            updated = await self._repo.save(
                booking.model_copy(
                    update={"driver_id": driver_id, "status": BookingStatus.ACCEPTED, "updated_at": self._now()}
                )
            )

        if self._registry is not None:
            await self._registry.set_availability(driver_id, False)

        await log_info(f"Бронирование {booking_id} принято водителем {driver_id}", type_msg=TypeMsg.INFO)
        await publish_safely(
            self._events,
            BookingStatusChanged(
                booking_id=booking_id,
                old_status=BookingStatus.PENDING.value,
                new_status=BookingStatus.ACCEPTED.value,
                driver_id=driver_id,
            ),
        )
        return updated

    async def _transition(self, booking_id: str, target: BookingStatus, **extra: Any) -> Booking:
        async with self._locks.hold(booking_id):
            booking = await self.get(booking_id)
            current = booking.status
            if current == target:
                return booking

            BookingStateMachine.validate_transition(current, target)

            now = self._now()
            update: dict[str, Any] = {"status": target, "updated_at": now}
            match target:
                case BookingStatus.IN_PROGRESS if booking.picked_up_at is None:
                    update["picked_up_at"] = now
                case BookingStatus.COMPLETED if booking.completed_at is None:
                    update["completed_at"] = now
                case BookingStatus.CANCELLED if booking.cancelled_at is None:
                    update["cancelled_at"] = now
                    update["cancellation_reason"] = extra.get("cancellation_reason")

            updated = await self._repo.save(booking.model_copy(update=update))

        if target in BookingStateMachine.TERMINAL and updated.driver_id:
            await self._release_driver(updated.driver_id)

        await log_info(
            f"Бронирование {booking_id}: {current.value} -> {target.value}",
            type_msg=TypeMsg.INFO,
        )
        await publish_safely(
            self._events,
            BookingStatusChanged(
                booking_id=booking_id,
                old_status=current.value,
                new_status=target.value,
                driver_id=updated.driver_id,
            ),
        )
        return updated

    async def _release_driver(self, driver_id: str) -> None:
        if self._registry is None:
            return
        try:
            await self._registry.set_availability(driver_id, True)
        except NotFound:
            await log_warning(f"Водитель {driver_id} не найден в реестре, занятость не снята")

    # =========================================================================
    # МАРШРУТ И ОПЛАТА
    # =========================================================================

    async def attach_route(
        self,
        booking_id: str,
        driver_path: Iterable[Any],
        customer_path: Iterable[Any] | None = None,
    ) -> Booking:
        """
        Привязывает записанный трек для воспроизведения.

        Raises:
            InvalidRoute: путь водителя пуст или содержит некорректные точки
            NotFound: бронирование не найдено
        """
        driver_points = list(driver_path or [])
        if not driver_points:
            raise InvalidRoute("Driver path must contain at least one point", booking_id=booking_id)
        try:
            route = RouteTrace(
                driver_path=driver_points,
                customer_path=list(customer_path) if customer_path is not None else None,
            )
        except ValueError as e:
            raise InvalidRoute(f"Invalid route points: {e}", booking_id=booking_id) from e

        async with self._locks.hold(booking_id):
            booking = await self.get(booking_id)
            updated = await self._repo.save(booking.model_copy(update={"route": route, "updated_at": self._now()}))

        await publish_safely(
            self._events,
            BookingRouteAttached(
                booking_id=booking_id,
                driver_points=len(route.driver_path),
                customer_points=len(route.customer_path or []),
            ),
        )
        return updated

    async def pay(
        self,
        booking_id: str,
        amount: float | None = None,
        method: PaymentMethod | str | None = None,
    ) -> Booking:
        """
        Отмечает бронирование оплаченным.

        amount, если указан, становится итоговой ценой. Оплата картой проходит
        через платёжный шлюз (если он настроен). Повторная оплата уже
        оплаченного бронирования ничего не меняет.

        Raises:
            NotFound: бронирование не найдено
            InvalidPayload: отрицательная сумма или неизвестный способ оплаты
            PaymentDeclined: шлюз отклонил списание
            RateLimited: шлюз ограничил частоту запросов
        """
        if amount is not None and amount < 0:
            raise InvalidPayload("Payment amount must be non-negative", amount=amount)
        try:
            payment_method = PaymentMethod(method) if method is not None else self._default_method
        except ValueError:
            raise InvalidPayload(f"Unknown payment method: {method}", method=str(method)) from None

        async with self._locks.hold(booking_id):
            booking = await self.get(booking_id)
            if booking.is_paid:
                return booking

            final_price = round2(amount) if amount is not None else booking.final_price
            currency = booking.pricing.currency.value if booking.pricing is not None else self._currency

            reference = None
            if payment_method == PaymentMethod.CARD and self._gateway is not None and final_price:
                result = await charge_or_raise(
                    self._gateway,
                    booking_id=booking_id,
                    amount=final_price,
                    currency=currency,
                    method=payment_method,
                )
                reference = result.transaction_id

            now = self._now()
            updated = await self._repo.save(
                booking.model_copy(
                    update={
                        "final_price": final_price,
                        "payment_method": payment_method,
                        "payment_status": PaymentStatus.PAID,
                        "payment_reference": reference,
                        "payment_breakdown": (
                            compute_payment(final_price, self._tax_rate, self._fee_rate)
                            if final_price is not None
                            else None
                        ),
                        "paid_at": now,
                        "updated_at": now,
                    }
                )
            )

        await log_info(
            f"Бронирование {booking_id} оплачено: {final_price} {currency} ({payment_method.value})",
            type_msg=TypeMsg.INFO,
        )
        await publish_safely(
            self._events,
            BookingPaid(booking_id=booking_id, amount=final_price, currency=currency, method=payment_method.value),
        )
        return updated
