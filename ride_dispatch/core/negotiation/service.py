# ride_dispatch/core/negotiation/service.py
"""
Контроллер согласования.
Превращает шорт-лист водителей в предложения с ограничением по времени,
принимает ровно одно из них и создаёт бронирование.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Iterable

from ride_dispatch.common.constants import BookingStatus, OfferStatus, SessionState, TypeMsg
from ride_dispatch.common.exceptions import InvalidPayload, NotFound, SessionClosed
from ride_dispatch.common.locks import KeyedLock
from ride_dispatch.common.logger import log_debug, log_error, log_info, log_warning
from ride_dispatch.core.matching.service import DriverCandidate
from ride_dispatch.core.negotiation.models import NegotiationSession, Offer
from ride_dispatch.core.negotiation.policy import CounterOfferPolicy, build_policy
from ride_dispatch.core.pricing.fare import round2, round_half_up
from ride_dispatch.core.requests.models import RideRequest
from ride_dispatch.core.requests.service import RideRequestService
from ride_dispatch.shared.events.base import EventSink, publish_safely
from ride_dispatch.shared.events.dispatch_events import NegotiationExpired

if TYPE_CHECKING:
    from ride_dispatch.core.bookings.models import Booking
    from ride_dispatch.core.bookings.service import BookingLifecycleManager


class NegotiationController:
    """
    Сессии согласования цены.

    Состояния сессии: OPEN -> CLOSED_ACCEPTED | CLOSED_EXPIRED.
    Все переходы одной сессии выполняются под её блокировкой,
    поэтому принять можно не более одного предложения.
    Таймер истечения отменяется при принятии и срабатывает не более одного раза.
    """

    def __init__(
        self,
        requests: RideRequestService,
        bookings: "BookingLifecycleManager",
        policy: CounterOfferPolicy | None = None,
        event_sink: EventSink | None = None,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        retention_seconds: float | None = None,
    ) -> None:
        """
        Args:
            requests: Сервис заявок (атомарное принятие заявки)
            bookings: Менеджер бронирований (создание бронирования при принятии)
            policy: Политика ответа на встречную цену (по умолчанию из конфига)
            event_sink: Канал событий
            timeout_seconds: Длительность сессии (по умолчанию из конфига)
            clock: Монотонные часы в секундах
            retention_seconds: Сколько хранить закрытую сессию (по умолчанию из конфига)
        """
        from ride_dispatch.config import settings

        self._requests = requests
        self._bookings = bookings
        self._policy = policy or build_policy()
        self._events = event_sink
        self._timeout = (
            settings.negotiation.SESSION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )
        self._retention = (
            settings.negotiation.CLOSED_SESSION_RETENTION_SECONDS if retention_seconds is None else retention_seconds
        )
        self._suggestion_ratio = settings.negotiation.COUNTER_SUGGESTION_RATIO
        self._clock = clock

        self._sessions: dict[str, NegotiationSession] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._locks = KeyedLock()

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def get_session(self, session_id: str) -> NegotiationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFound("negotiation_session", session_id)
        return session

    def time_remaining(self, session_id: str) -> float:
        """Секунды до истечения сессии (для обратного отсчёта в интерфейсе)."""
        session = self.get_session(session_id)
        if not session.is_open:
            return 0.0
        return max(0.0, session.deadline - self._clock())

    def suggest_counter_price(self, session_id: str, offer_id: str) -> float:
        """Подсказка встречной цены: котировка со скидкой, округлённая до целого."""
        offer = self.get_session(session_id).offer(offer_id)
        return round_half_up(offer.quoted_price * self._suggestion_ratio)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ СЕССИИ
    # =========================================================================

    async def open_session(
        self,
        request: RideRequest,
        candidates: Iterable[DriverCandidate],
        passenger_count: int = 1,
    ) -> NegotiationSession:
        """
        Открывает сессию по результатам подбора и запускает таймер.

        Пустой шорт-лист допустим: такая сессия просто истечёт.

        Raises:
            InvalidPayload: passenger_count < 1
            SessionClosed: заявка уже не ожидает водителя
        """
        if passenger_count < 1:
            raise InvalidPayload("passenger_count must be at least 1", passenger_count=passenger_count)
        if not request.is_pending:
            raise SessionClosed(f"Ride request {request.id} is {request.status.value}", request_id=request.id)
        await self.purge_closed()

        offers: dict[str, Offer] = {}
        for candidate in candidates:
            offer = Offer.from_candidate(candidate)
            offers.setdefault(offer.id, offer)

        session = NegotiationSession(
            request=request,
            offers=offers,
            deadline=self._clock() + self._timeout,
            passenger_count=passenger_count,
        )
        self._sessions[session.id] = session
        self._timers[session.id] = asyncio.create_task(self._expire_after(session.id, self._timeout))

        await log_info(
            f"Сессия {session.id} открыта для заявки {request.id}: предложений {len(offers)}, {self._timeout} сек",
            type_msg=TypeMsg.INFO,
        )
        return session

    async def negotiate(self, session_id: str, offer_id: str, counter_price: float) -> Offer:
        """
        Встречная цена клиента. Не более одной на предложение.

        Если водитель (политика) согласен, negotiated_price = counter_price,
        иначе остаётся исходная котировка.

        Raises:
            NotFound: нет сессии или предложения
            SessionClosed: сессия завершена или истекла
            InvalidPayload: цена не положительна, встречная цена уже была, предложение не активно
        """
        async with self._locks.hold(session_id):
            session = await self._require_open(session_id)
            offer = session.offer(offer_id)

            if counter_price is None or counter_price <= 0:
                raise InvalidPayload("Counter price must be positive", counter_price=counter_price)
            if offer.status != OfferStatus.PENDING:
                raise InvalidPayload(f"Offer {offer_id} is {offer.status.value}", offer_id=offer_id)
            if offer.has_counter_offer:
                raise InvalidPayload(f"Counter-offer already submitted for {offer_id}", offer_id=offer_id)

            price = round2(counter_price)
            accepted = bool(self._policy.should_accept_counter_offer(offer, price))
            offer.counter_price = price
            offer.counter_accepted = accepted
            if accepted:
                offer.negotiated_price = price

        await log_info(
            f"Сессия {session_id}: встречная цена {price} водителю {offer.driver_id} "
            f"{'принята' if accepted else 'отклонена'} (котировка {offer.quoted_price})",
            type_msg=TypeMsg.INFO,
        )
        return offer

    async def accept(self, session_id: str, offer_id: str) -> "Booking":
        """
        Клиент выбирает предложение.

        Заявка атомарно переходит в accepted, создаётся ровно одно бронирование,
        и только затем выбранное предложение принимается, остальные отклоняются,
        таймер отменяется. Если бронирование создать не удалось, принятие заявки
        откатывается и сессия остаётся открытой.

        Raises:
            NotFound: нет сессии, предложения или водителя
            SessionClosed: сессия уже завершена или истекла
            AlreadyAccepted: заявку уже принял водитель вне этой сессии
        """
        async with self._locks.hold(session_id):
            session = await self._require_open(session_id)
            offer = session.offer(offer_id)

            try:
                await self._requests.accept(session.request.id, offer.driver_id)
            except SessionClosed:
                await self._expire(session)
                raise

            try:
                booking = await self._create_booking(session, offer)
            except Exception as e:
                await log_error(
                    f"Сессия {session_id}: не удалось создать бронирование для водителя {offer.driver_id}: {e}"
                )
                await self._requests.release(session.request.id, offer.driver_id)
                raise

            session.state = SessionState.CLOSED_ACCEPTED
            session.accepted_offer_id = offer.id
            session.booking_id = booking.id
            session.closed_at = self._clock()
            for other in session.offers.values():
                other.status = OfferStatus.ACCEPTED if other.id == offer.id else OfferStatus.REJECTED
            self._cancel_timer(session_id)

        await log_info(
            f"Сессия {session_id}: выбран водитель {offer.driver_id}, цена {offer.final_price}, "
            f"бронирование {booking.id}",
            type_msg=TypeMsg.INFO,
        )
        return booking

    async def timeout(self, session_id: str) -> NegotiationSession:
        """
        Истечение времени сессии. Идемпотентно: на завершённой сессии ничего не делает.
        """
        async with self._locks.hold(session_id):
            session = self.get_session(session_id)
            if session.is_open:
                await self._expire(session)
            return session

    async def discard(self, session_id: str) -> None:
        """Клиент ушёл со страницы выбора: открытая сессия истекает и забывается."""
        async with self._locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                return
            if session.is_open:
                await self._expire(session)
            self._cancel_timer(session_id)
            del self._sessions[session_id]
        self._locks.discard(session_id)

    async def purge_closed(self) -> int:
        """
        Забывает сессии, закрытые дольше retention назад.
        Недавно закрытые остаются, чтобы повторный timeout() оставался no-op.
        Вызывается при открытии каждой новой сессии.

        Returns:
            Количество удалённых сессий
        """
        now = self._clock()
        stale = [
            s.id
            for s in self._sessions.values()
            if not s.is_open and s.closed_at is not None and now - s.closed_at >= self._retention
        ]
        for session_id in stale:
            self._cancel_timer(session_id)
            del self._sessions[session_id]
            self._locks.discard(session_id)

        if stale:
            await log_debug(f"Удалено закрытых сессий: {len(stale)}")
        return len(stale)

    async def close(self) -> None:
        """Останавливает все таймеры (при завершении приложения)."""
        for session_id in list(self._timers):
            self._cancel_timer(session_id)

    # =========================================================================
    # ВНУТРЕННЕЕ
    # =========================================================================

    async def _require_open(self, session_id: str) -> NegotiationSession:
        """Сессия открыта и срок не истёк; просроченная сессия закрывается здесь же."""
        session = self.get_session(session_id)
        if not session.is_open:
            raise SessionClosed(f"Session {session_id} is {session.state.value}", session_id=session_id)
        if self._clock() >= session.deadline:
            await self._expire(session)
            raise SessionClosed(f"Session {session_id} has expired", session_id=session_id)
        return session

    async def _expire(self, session: NegotiationSession) -> None:
        session.state = SessionState.CLOSED_EXPIRED
        session.closed_at = self._clock()
        session.reject_pending()
        self._cancel_timer(session.id)

        await log_warning(f"Сессия {session.id} истекла без выбора водителя (заявка {session.request.id})")
        await publish_safely(self._events, NegotiationExpired(session_id=session.id, request_id=session.request.id))

    async def _expire_after(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.timeout(session_id)
        except NotFound:
            return
        except Exception as e:
            await log_error(f"Ошибка таймера сессии {session_id}: {e}", exc_info=True)

    def _cancel_timer(self, session_id: str) -> None:
        task = self._timers.pop(session_id, None)
        # таймер, закрывающий сессию, не отменяет сам себя
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _create_booking(self, session: NegotiationSession, offer: Offer) -> "Booking":
        request = session.request
        booking = await self._bookings.create(
            {
                "customer_id": request.customer_id,
                "driver_id": offer.driver_id,
                "ride_request_id": request.id,
                "pickup_location": request.pickup,
                "dropoff_location": request.dropoff,
                "passenger_count": session.passenger_count,
                "vehicle_type": request.vehicle_class,
                "base_price": offer.quoted_price,
                "final_price": offer.final_price,
            }
        )
        try:
            return await self._bookings.set_status(booking.id, BookingStatus.ACCEPTED)
        except Exception:
            await self._bookings.cancel(booking.id, reason="negotiation_rollback")
            raise
