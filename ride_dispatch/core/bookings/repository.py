# ride_dispatch/core/bookings/repository.py
"""
Репозитории бронирований: в памяти процесса и PostgreSQL.
"""

from __future__ import annotations

from typing import Protocol

from ride_dispatch.common.logger import log_error
from ride_dispatch.core.bookings.models import Booking
from ride_dispatch.infra.database import DatabaseManager


class BookingRepository(Protocol):
    """Хранилище бронирований. Бронирования не удаляются."""

    async def get(self, booking_id: str) -> Booking | None:
        ...

    async def save(self, booking: Booking) -> Booking:
        ...

    async def list_all(self) -> list[Booking]:
        ...

    async def find_by_reservation_code(self, code: str) -> Booking | None:
        ...


class InMemoryBookingRepository:
    """Бронирования в словаре."""

    def __init__(self) -> None:
        self._bookings: dict[str, Booking] = {}

    async def get(self, booking_id: str) -> Booking | None:
        return self._bookings.get(booking_id)

    async def save(self, booking: Booking) -> Booking:
        self._bookings[booking.id] = booking
        return booking

    async def list_all(self) -> list[Booking]:
        return list(self._bookings.values())

    async def find_by_reservation_code(self, code: str) -> Booking | None:
        return next((b for b in self._bookings.values() if b.reservation_code == code), None)


class PostgresBookingRepository:
    """
    Репозиторий бронирований в PostgreSQL.
    Документ целиком хранится в JSONB, поля для поиска вынесены в колонки.
    """

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get(self, booking_id: str) -> Booking | None:
        data = await self._db.fetchval("SELECT data FROM bookings WHERE id = $1", booking_id)
        return Booking.model_validate_json(data) if data is not None else None

    async def save(self, booking: Booking) -> Booking:
        try:
            await self._db.execute(
                """
                INSERT INTO bookings (
                    id, reservation_code, customer_id, driver_id, status, data, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8)
                ON CONFLICT (id) DO UPDATE SET
                    reservation_code = EXCLUDED.reservation_code,
                    customer_id = EXCLUDED.customer_id,
                    driver_id = EXCLUDED.driver_id,
                    status = EXCLUDED.status,
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
                """,
                booking.id,
                booking.reservation_code,
                booking.customer_id,
                booking.driver_id,
                booking.status.value,
                booking.model_dump_json(),
                booking.created_at,
                booking.updated_at,
            )
        except Exception as e:
            await log_error(f"Ошибка сохранения бронирования {booking.id}: {e}")
            raise
        return booking

    async def list_all(self) -> list[Booking]:
        rows = await self._db.fetch("SELECT data FROM bookings ORDER BY created_at")
        return [Booking.model_validate_json(row["data"]) for row in rows]

    async def find_by_reservation_code(self, code: str) -> Booking | None:
        data = await self._db.fetchval("SELECT data FROM bookings WHERE reservation_code = $1 LIMIT 1", code)
        return Booking.model_validate_json(data) if data is not None else None
