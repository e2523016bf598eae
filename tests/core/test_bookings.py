# tests/core/test_bookings.py
"""
Тесты менеджера жизненного цикла бронирований.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import AsyncMock, patch

import pytest

from ride_dispatch.common.constants import BookingStatus, PaymentMethod, PaymentStatus, VehicleClass
from ride_dispatch.common.exceptions import (
    InvalidPayload,
    InvalidRoute,
    InvalidTransition,
    NotFound,
    PaymentDeclined,
)
from ride_dispatch.core.bookings import (
    Booking,
    BookingLifecycleManager,
    BookingStateMachine,
    InMemoryBookingRepository,
    PostgresBookingRepository,
    generate_reservation_code,
)
from ride_dispatch.core.bookings.service import RESERVATION_CODE_ALPHABET
from ride_dispatch.core.drivers import Driver, DriverRegistry
from ride_dispatch.core.pricing import InMemoryPricingConfigStore, compute_trip_pricing
from ride_dispatch.infra.event_bus import InMemoryEventSink
from ride_dispatch.payments import PaymentResult
from ride_dispatch.shared.models.geo import GeoPoint, haversine_km


class Ticker:
    """Часы, которые сдвигаются на секунду при каждом чтении."""

    def __init__(self) -> None:
        self.current = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class YieldingBookingRepository(InMemoryBookingRepository):
    """Поиск по коду отдаёт управление циклу, как настоящая база."""

    async def find_by_reservation_code(self, code: str) -> Booking | None:
        await asyncio.sleep(0)
        return await super().find_by_reservation_code(code)


class FakeGateway:
    """Платёжный шлюз с заранее заданным ответом."""

    def __init__(self, result: PaymentResult) -> None:
        self.result = result
        self.calls: list[dict[str, Any]] = []

    async def charge(self, **kwargs: Any) -> PaymentResult:
        self.calls.append(kwargs)
        return self.result


@pytest.fixture
def draft(pickup: GeoPoint, dropoff: GeoPoint) -> dict[str, Any]:
    """Минимальные данные бронирования в camelCase."""
    return {
        "pickupLocation": pickup.model_dump(),
        "dropoffLocation": dropoff.model_dump(),
        "passengerCount": 2,
        "vehicleType": "sedan",
    }


@pytest.fixture
def ticking_manager(
    event_sink: InMemoryEventSink,
    registry: DriverRegistry,
    pricing_store: InMemoryPricingConfigStore,
) -> BookingLifecycleManager:
    return BookingLifecycleManager(
        InMemoryBookingRepository(),
        event_sink=event_sink,
        registry=registry,
        pricing_store=pricing_store,
        now=Ticker(),
    )


def make_manager(gateway: FakeGateway | None = None) -> BookingLifecycleManager:
    return BookingLifecycleManager(InMemoryBookingRepository(), payment_gateway=gateway)


async def drive_to(manager: BookingLifecycleManager, booking_id: str, target: BookingStatus) -> Booking:
    """Проводит бронирование по основному пути до target."""
    path = [
        BookingStatus.ACCEPTED,
        BookingStatus.DRIVER_EN_ROUTE,
        BookingStatus.DRIVER_ARRIVED,
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
    ]
    booking = await manager.get(booking_id)
    for status in path[: path.index(target) + 1]:
        booking = await manager.set_status(booking_id, status)
    return booking


class TestStateMachine:
    """Тесты графа переходов."""

    @pytest.mark.parametrize(
        "current, target, allowed",
        [
            (BookingStatus.PENDING, BookingStatus.ACCEPTED, True),
            (BookingStatus.ACCEPTED, BookingStatus.DRIVER_EN_ROUTE, True),
            (BookingStatus.DRIVER_ARRIVED, BookingStatus.IN_PROGRESS, True),
            (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, True),
            (BookingStatus.PENDING, BookingStatus.COMPLETED, False),
            (BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS, False),
            (BookingStatus.IN_PROGRESS, BookingStatus.ACCEPTED, False),
            (BookingStatus.COMPLETED, BookingStatus.CANCELLED, False),
            (BookingStatus.CANCELLED, BookingStatus.PENDING, False),
            (BookingStatus.COMPLETED, BookingStatus.COMPLETED, True),
        ],
    )
    def test_can_transition(self, current: BookingStatus, target: BookingStatus, allowed: bool) -> None:
        assert BookingStateMachine.can_transition(current, target) is allowed

    def test_terminal_statuses_have_no_exits(self) -> None:
        for status in BookingStateMachine.TERMINAL:
            assert BookingStateMachine.ALLOWED_TRANSITIONS[status] == []

    def test_parse_status(self) -> None:
        assert BookingStateMachine.parse_status("driver_en_route") == BookingStatus.DRIVER_EN_ROUTE
        with pytest.raises(InvalidPayload):
            BookingStateMachine.parse_status("teleported")


class TestCreate:
    """Тесты создания бронирования."""

    @pytest.mark.asyncio
    async def test_create_empty_payload(self, booking_manager: BookingLifecycleManager) -> None:
        with pytest.raises(InvalidPayload):
            await booking_manager.create({})

    @pytest.mark.asyncio
    async def test_create_from_camel_case(
        self,
        booking_manager: BookingLifecycleManager,
        event_sink: InMemoryEventSink,
        draft: dict[str, Any],
    ) -> None:
        booking = await booking_manager.create(draft)

        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.UNPAID
        assert booking.passenger_count == 2
        assert booking.vehicle_type == VehicleClass.SEDAN
        assert booking.created_at == booking.updated_at
        assert booking.pickup_time == booking.created_at
        assert len(booking.reservation_code) == 8
        assert set(booking.reservation_code) <= set(RESERVATION_CODE_ALPHABET)
        assert await booking_manager.get(booking.id) == booking

        events = event_sink.of_type("booking:create")
        assert len(events) == 1
        assert events[0].booking_id == booking.id

    @pytest.mark.asyncio
    async def test_price_from_pricing_store(
        self,
        booking_manager: BookingLifecycleManager,
        pricing_store: InMemoryPricingConfigStore,
        draft: dict[str, Any],
        pickup: GeoPoint,
        dropoff: GeoPoint,
    ) -> None:
        booking = await booking_manager.create(draft)
        expected = compute_trip_pricing(haversine_km(pickup, dropoff), await pricing_store.get())

        assert booking.pricing == expected
        assert booking.base_price == expected.driver_fare
        assert booking.final_price == expected.total

    @pytest.mark.asyncio
    async def test_explicit_price(self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]) -> None:
        booking = await booking_manager.create({**draft, "basePrice": 20.456})

        assert booking.base_price == 20.46
        assert booking.final_price == 20.46
        assert booking.pricing is None

    @pytest.mark.asyncio
    async def test_no_pricing_store_no_price(self, draft: dict[str, Any]) -> None:
        booking = await make_manager().create(draft)

        assert booking.base_price is None
        assert booking.final_price is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "override",
        [{"passengerCount": 0}, {"vehicleType": "tractor"}, {"pickupLocation": {"lat": 95, "lng": 0}}],
    )
    async def test_invalid_fields(
        self, booking_manager: BookingLifecycleManager, draft: dict[str, Any], override: dict[str, Any]
    ) -> None:
        with pytest.raises(InvalidPayload):
            await booking_manager.create({**draft, **override})

    @pytest.mark.asyncio
    async def test_requested_reservation_code(
        self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]
    ) -> None:
        booking = await booking_manager.create({**draft, "reservationCode": "ist2026"})
        assert booking.reservation_code == "IST2026"

        with pytest.raises(InvalidPayload):
            await booking_manager.create({**draft, "reservationCode": "IST2026"})

    @pytest.mark.asyncio
    async def test_concurrent_creates_get_unique_codes(self, draft: dict[str, Any]) -> None:
        """Параллельные создания не получают один и тот же сгенерированный код."""
        manager = BookingLifecycleManager(YieldingBookingRepository())
        # каждый код генератор выдаёт дважды подряд
        codes = iter(f"CODE{index // 2:04d}" for index in range(100))

        with patch(
            "ride_dispatch.core.bookings.service.generate_reservation_code",
            side_effect=lambda length: next(codes),
        ):
            bookings = await asyncio.gather(*(manager.create(draft) for _ in range(10)))

        assert len({b.reservation_code for b in bookings}) == 10

    def test_generate_reservation_code(self) -> None:
        code = generate_reservation_code(12)

        assert len(code) == 12
        assert not set(code) & set("01OI")


class TestLookup:
    """Тесты поиска бронирований."""

    @pytest.mark.asyncio
    async def test_get_unknown(self, booking_manager: BookingLifecycleManager) -> None:
        with pytest.raises(NotFound):
            await booking_manager.get("bk_missing")

    @pytest.mark.asyncio
    async def test_guest_lookup(self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]) -> None:
        booking = await booking_manager.create(
            {**draft, "guestName": "Ayşe", "guestPhone": "+905551112233", "reservationCode": "GUEST42"}
        )

        assert (await booking_manager.find_by_reservation_code(" guest42 ")).id == booking.id
        assert (await booking_manager.find_by_reservation_code("GUEST42", phone="+905551112233")).id == booking.id

        with pytest.raises(NotFound):
            await booking_manager.find_by_reservation_code("GUEST42", phone="+900000000000")
        with pytest.raises(NotFound):
            await booking_manager.find_by_reservation_code("NOPE")

    @pytest.mark.asyncio
    async def test_lists(
        self,
        booking_manager: BookingLifecycleManager,
        registry: DriverRegistry,
        make_driver: Callable[..., Driver],
        draft: dict[str, Any],
    ) -> None:
        await registry.register(make_driver("d1"))
        first = await booking_manager.create({**draft, "customerId": "c1"})
        second = await booking_manager.create({**draft, "customerId": "c1"})
        await booking_manager.create({**draft, "customerId": "c2"})

        await booking_manager.assign_driver(first.id, "d1")
        await booking_manager.assign_driver(second.id, "d1")
        await booking_manager.cancel(first.id, "customer changed plans")

        assert [b.id for b in await booking_manager.list_by_customer("c1")] == [first.id, second.id]
        assert [b.id for b in await booking_manager.list_by_driver("d1")] == [first.id, second.id]
        assert (await booking_manager.active_for_driver("d1")).id == second.id
        assert [b.id for b in await booking_manager.history_for_driver("d1")] == [first.id]
        assert await booking_manager.active_for_driver("d9") is None


class TestStatus:
    """Тесты переходов статуса."""

    @pytest.mark.asyncio
    async def test_full_path_timestamps(
        self, ticking_manager: BookingLifecycleManager, draft: dict[str, Any]
    ) -> None:
        booking = await ticking_manager.create(draft)

        in_progress = await drive_to(ticking_manager, booking.id, BookingStatus.IN_PROGRESS)
        assert in_progress.picked_up_at is not None
        assert in_progress.picked_up_at >= booking.created_at
        assert in_progress.completed_at is None

        completed = await ticking_manager.set_status(booking.id, "completed")
        assert completed.status == BookingStatus.COMPLETED
        assert completed.completed_at >= completed.picked_up_at
        assert completed.picked_up_at == in_progress.picked_up_at
        assert completed.is_terminal is True

    @pytest.mark.asyncio
    async def test_illegal_transition(
        self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]
    ) -> None:
        booking = await booking_manager.create(draft)

        with pytest.raises(InvalidTransition) as exc_info:
            await booking_manager.set_status(booking.id, BookingStatus.COMPLETED)

        assert exc_info.value.current == "pending"
        assert exc_info.value.target == "completed"
        assert (await booking_manager.get(booking.id)).status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_status(self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]) -> None:
        booking = await booking_manager.create(draft)

        with pytest.raises(InvalidPayload):
            await booking_manager.set_status(booking.id, "flying")

    @pytest.mark.asyncio
    async def test_unknown_booking(self, booking_manager: BookingLifecycleManager) -> None:
        with pytest.raises(NotFound):
            await booking_manager.set_status("bk_missing", "accepted")

    @pytest.mark.asyncio
    async def test_same_status_is_noop(
        self,
        ticking_manager: BookingLifecycleManager,
        event_sink: InMemoryEventSink,
        draft: dict[str, Any],
    ) -> None:
        booking = await ticking_manager.create(draft)
        accepted = await ticking_manager.set_status(booking.id, "accepted")

        again = await ticking_manager.set_status(booking.id, "accepted")

        assert again.updated_at == accepted.updated_at
        assert len(event_sink.of_type("booking:update")) == 1

    @pytest.mark.asyncio
    async def test_cancel(self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]) -> None:
        booking = await booking_manager.create(draft)
        await drive_to(booking_manager, booking.id, BookingStatus.DRIVER_ARRIVED)

        cancelled = await booking_manager.cancel(booking.id, "no show")

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert cancelled.cancellation_reason == "no show"

    @pytest.mark.asyncio
    async def test_cancel_completed(self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]) -> None:
        booking = await booking_manager.create(draft)
        await drive_to(booking_manager, booking.id, BookingStatus.COMPLETED)

        with pytest.raises(InvalidTransition):
            await booking_manager.cancel(booking.id)

    @pytest.mark.asyncio
    async def test_status_events(
        self,
        booking_manager: BookingLifecycleManager,
        event_sink: InMemoryEventSink,
        draft: dict[str, Any],
    ) -> None:
        booking = await booking_manager.create(draft)
        await drive_to(booking_manager, booking.id, BookingStatus.DRIVER_EN_ROUTE)

        changes = [(e.old_status, e.new_status) for e in event_sink.of_type("booking:update")]
        assert changes == [("pending", "accepted"), ("accepted", "driver_en_route")]


class TestDriverAssignment:
    """Тесты назначения водителя."""

    @pytest.mark.asyncio
    async def test_assign_driver(
        self,
        booking_manager: BookingLifecycleManager,
        registry: DriverRegistry,
        make_driver: Callable[..., Driver],
        draft: dict[str, Any],
    ) -> None:
        await registry.register(make_driver("d1"))
        booking = await booking_manager.create(draft)

        assigned = await booking_manager.assign_driver(booking.id, "d1")

        assert assigned.status == BookingStatus.ACCEPTED
        assert assigned.driver_id == "d1"
        assert assigned.is_active is True
        assert (await registry.get("d1")).available is False

    @pytest.mark.asyncio
    async def test_assign_taken_booking(
        self,
        booking_manager: BookingLifecycleManager,
        registry: DriverRegistry,
        make_driver: Callable[..., Driver],
        draft: dict[str, Any],
    ) -> None:
        await registry.register(make_driver("d1"))
        await registry.register(make_driver("d2"))
        booking = await booking_manager.create(draft)
        await booking_manager.assign_driver(booking.id, "d1")

        with pytest.raises(InvalidTransition):
            await booking_manager.assign_driver(booking.id, "d2")

        assert (await booking_manager.get(booking.id)).driver_id == "d1"

    @pytest.mark.asyncio
    async def test_assign_unknown_driver(
        self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]
    ) -> None:
        booking = await booking_manager.create(draft)

        with pytest.raises(NotFound):
            await booking_manager.assign_driver(booking.id, "ghost")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("finish", ["complete", "cancel"])
    async def test_driver_released_on_finish(
        self,
        booking_manager: BookingLifecycleManager,
        registry: DriverRegistry,
        make_driver: Callable[..., Driver],
        draft: dict[str, Any],
        finish: str,
    ) -> None:
        await registry.register(make_driver("d1"))
        booking = await booking_manager.create(draft)
        await booking_manager.assign_driver(booking.id, "d1")
        await drive_to(booking_manager, booking.id, BookingStatus.IN_PROGRESS)

        if finish == "complete":
            await booking_manager.set_status(booking.id, BookingStatus.COMPLETED)
        else:
            await booking_manager.cancel(booking.id)

        assert (await registry.get("d1")).available is True


class TestRoute:
    """Тесты трека маршрута."""

    @pytest.mark.asyncio
    async def test_attach_route(
        self,
        booking_manager: BookingLifecycleManager,
        event_sink: InMemoryEventSink,
        draft: dict[str, Any],
        pickup: GeoPoint,
    ) -> None:
        booking = await booking_manager.create(draft)

        updated = await booking_manager.attach_route(
            booking.id,
            [pickup, {"lat": 41.02, "lng": 28.99}],
            customer_path=[{"lat": 41.0, "lng": 28.9}],
        )

        assert len(updated.route.driver_path) == 2
        assert updated.route.driver_path[0].lat == pickup.lat
        assert len(updated.route.customer_path) == 1
        event = event_sink.of_type("booking:route")[0]
        assert (event.driver_points, event.customer_points) == (2, 1)

    @pytest.mark.asyncio
    async def test_empty_route(self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]) -> None:
        booking = await booking_manager.create(draft)

        with pytest.raises(InvalidRoute) as exc_info:
            await booking_manager.attach_route(booking.id, [])

        assert isinstance(exc_info.value, InvalidPayload)
        assert (await booking_manager.get(booking.id)).route is None

    @pytest.mark.asyncio
    async def test_invalid_point(self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]) -> None:
        booking = await booking_manager.create(draft)

        with pytest.raises(InvalidRoute):
            await booking_manager.attach_route(booking.id, [{"lat": 200, "lng": 0}])

    @pytest.mark.asyncio
    async def test_route_for_unknown_booking(self, booking_manager: BookingLifecycleManager) -> None:
        with pytest.raises(NotFound):
            await booking_manager.attach_route("bk_missing", [{"lat": 1, "lng": 1}])


class TestPayment:
    """Тесты оплаты."""

    @pytest.mark.asyncio
    async def test_pay_without_gateway(
        self,
        booking_manager: BookingLifecycleManager,
        event_sink: InMemoryEventSink,
        draft: dict[str, Any],
    ) -> None:
        booking = await booking_manager.create(draft)

        paid = await booking_manager.pay(booking.id)

        assert paid.payment_status == PaymentStatus.PAID
        assert paid.is_paid is True
        assert paid.payment_method == PaymentMethod.CARD
        assert paid.paid_at is not None
        assert paid.payment_breakdown.gross == booking.final_price
        assert len(event_sink.of_type("booking:paid")) == 1

    @pytest.mark.asyncio
    async def test_pay_is_idempotent(self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]) -> None:
        booking = await booking_manager.create(draft)
        first = await booking_manager.pay(booking.id, amount=30)

        second = await booking_manager.pay(booking.id, amount=99)

        assert second.final_price == 30.0
        assert second.paid_at == first.paid_at

    @pytest.mark.asyncio
    async def test_amount_overrides_final_price(
        self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]
    ) -> None:
        booking = await booking_manager.create(draft)

        paid = await booking_manager.pay(booking.id, amount=50, method="cash")

        assert paid.final_price == 50.0
        assert paid.payment_method == PaymentMethod.CASH
        assert paid.payment_breakdown.tax == 9.0
        assert paid.payment_breakdown.platform_fee == 1.0
        assert paid.payment_breakdown.net == 40.0

    @pytest.mark.asyncio
    async def test_invalid_payment_input(
        self, booking_manager: BookingLifecycleManager, draft: dict[str, Any]
    ) -> None:
        booking = await booking_manager.create(draft)

        with pytest.raises(InvalidPayload):
            await booking_manager.pay(booking.id, amount=-5)
        with pytest.raises(InvalidPayload):
            await booking_manager.pay(booking.id, method="barter")

        assert (await booking_manager.get(booking.id)).is_paid is False

    @pytest.mark.asyncio
    async def test_card_goes_through_gateway(self, draft: dict[str, Any]) -> None:
        gateway = FakeGateway(PaymentResult(success=True, transaction_id="txn_1"))
        manager = make_manager(gateway)
        booking = await manager.create({**draft, "basePrice": 25})

        paid = await manager.pay(booking.id, method=PaymentMethod.CARD)

        assert paid.payment_reference == "txn_1"
        assert gateway.calls == [
            {"booking_id": booking.id, "amount": 25.0, "currency": "EUR", "method": PaymentMethod.CARD}
        ]

    @pytest.mark.asyncio
    async def test_cash_skips_gateway(self, draft: dict[str, Any]) -> None:
        gateway = FakeGateway(PaymentResult(success=True, transaction_id="txn_1"))
        manager = make_manager(gateway)
        booking = await manager.create({**draft, "basePrice": 25})

        paid = await manager.pay(booking.id, method="cash")

        assert paid.is_paid is True
        assert paid.payment_reference is None
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_declined_payment(self, draft: dict[str, Any]) -> None:
        gateway = FakeGateway(PaymentResult(success=False, error="card_expired"))
        manager = make_manager(gateway)
        booking = await manager.create({**draft, "basePrice": 25})

        with pytest.raises(PaymentDeclined) as exc_info:
            await manager.pay(booking.id)

        assert exc_info.value.details["reason"] == "card_expired"
        assert (await manager.get(booking.id)).payment_status == PaymentStatus.UNPAID


class TestPostgresBookingRepository:
    """Тесты репозитория бронирований в PostgreSQL."""

    @pytest.mark.asyncio
    async def test_roundtrip_through_jsonb(
        self, mock_db: AsyncMock, booking_manager: BookingLifecycleManager, draft: dict[str, Any]
    ) -> None:
        booking = await booking_manager.create({**draft, "customerId": "c1"})
        repo = PostgresBookingRepository(mock_db)

        await repo.save(booking)

        query, *args = mock_db.execute.call_args.args
        assert "ON CONFLICT (id) DO UPDATE" in query
        assert args[:5] == [booking.id, booking.reservation_code, "c1", None, "pending"]

        mock_db.fetchval = AsyncMock(return_value=args[5])
        assert await repo.get(booking.id) == booking

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_db: AsyncMock) -> None:
        repo = PostgresBookingRepository(mock_db)

        assert await repo.get("bk_missing") is None
        assert await repo.find_by_reservation_code("NOPE") is None

    @pytest.mark.asyncio
    async def test_list_all(
        self, mock_db: AsyncMock, booking_manager: BookingLifecycleManager, draft: dict[str, Any]
    ) -> None:
        booking = await booking_manager.create(draft)
        mock_db.fetch = AsyncMock(return_value=[{"data": booking.model_dump_json()}])
        repo = PostgresBookingRepository(mock_db)

        assert await repo.list_all() == [booking]
