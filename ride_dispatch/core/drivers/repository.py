# ride_dispatch/core/drivers/repository.py
"""
Репозитории водителей: в памяти процесса и PostgreSQL.
"""

from __future__ import annotations

from typing import Protocol

from asyncpg import Record

from ride_dispatch.common.constants import ApprovalStatus, VehicleClass
from ride_dispatch.common.logger import log_error
from ride_dispatch.core.drivers.models import Driver
from ride_dispatch.infra.database import DatabaseManager
from ride_dispatch.shared.models.geo import GeoPoint


class DriverRepository(Protocol):
    """Хранилище водителей. list_all возвращает водителей в порядке регистрации."""

    async def get(self, driver_id: str) -> Driver | None:
        ...

    async def save(self, driver: Driver) -> Driver:
        ...

    async def list_all(self) -> list[Driver]:
        ...


class InMemoryDriverRepository:
    """Водители в словаре (порядок вставки сохраняется)."""

    def __init__(self) -> None:
        self._drivers: dict[str, Driver] = {}

    async def get(self, driver_id: str) -> Driver | None:
        return self._drivers.get(driver_id)

    async def save(self, driver: Driver) -> Driver:
        self._drivers[driver.id] = driver
        return driver

    async def list_all(self) -> list[Driver]:
        return list(self._drivers.values())


class PostgresDriverRepository:
    """Репозиторий водителей в PostgreSQL (таблица drivers)."""

    _COLUMNS = """
        id, name, vehicle_class, vehicle_model, license_plate,
        latitude, longitude, address, available, approval, rejection_reason,
        rating, total_rides, created_at, updated_at
    """

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get(self, driver_id: str) -> Driver | None:
        row = await self._db.fetchrow(
            f"SELECT {self._COLUMNS} FROM drivers WHERE id = $1",
            driver_id,
        )
        return self._row_to_driver(row) if row is not None else None

    async def save(self, driver: Driver) -> Driver:
        """Upsert по id; порядковый номер регистрации не меняется."""
        try:
            await self._db.execute(
                """
                INSERT INTO drivers (
                    id, name, vehicle_class, vehicle_model, license_plate,
                    latitude, longitude, address, available, approval, rejection_reason,
                    rating, total_rides, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    vehicle_class = EXCLUDED.vehicle_class,
                    vehicle_model = EXCLUDED.vehicle_model,
                    license_plate = EXCLUDED.license_plate,
                    latitude = EXCLUDED.latitude,
                    longitude = EXCLUDED.longitude,
                    address = EXCLUDED.address,
                    available = EXCLUDED.available,
                    approval = EXCLUDED.approval,
                    rejection_reason = EXCLUDED.rejection_reason,
                    rating = EXCLUDED.rating,
                    total_rides = EXCLUDED.total_rides,
                    updated_at = EXCLUDED.updated_at
                """,
                driver.id,
                driver.name,
                driver.vehicle_class.value,
                driver.vehicle_model,
                driver.license_plate,
                driver.location.lat,
                driver.location.lng,
                driver.location.address,
                driver.available,
                driver.approval.value,
                driver.rejection_reason,
                driver.rating,
                driver.total_rides,
                driver.created_at,
                driver.updated_at,
            )
        except Exception as e:
            await log_error(f"Ошибка сохранения водителя {driver.id}: {e}")
            raise
        return driver

    async def list_all(self) -> list[Driver]:
        rows = await self._db.fetch(f"SELECT {self._COLUMNS} FROM drivers ORDER BY seq")
        return [self._row_to_driver(row) for row in rows]

    @staticmethod
    def _row_to_driver(row: Record) -> Driver:
        return Driver(
            id=row["id"],
            name=row["name"],
            vehicle_class=VehicleClass(row["vehicle_class"]),
            vehicle_model=row["vehicle_model"],
            license_plate=row["license_plate"],
            location=GeoPoint(lat=row["latitude"], lng=row["longitude"], address=row["address"]),
            available=row["available"],
            approval=ApprovalStatus(row["approval"]),
            rejection_reason=row["rejection_reason"],
            rating=row["rating"],
            total_rides=row["total_rides"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
