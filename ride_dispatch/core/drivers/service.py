# ride_dispatch/core/drivers/service.py
"""
Реестр водителей.
Единственный источник истины о допуске, доступности и позиции водителя.
"""

from __future__ import annotations

from typing import Any, Mapping

from ride_dispatch.common.constants import ApprovalStatus, DriverStatusFilter, TypeMsg, VehicleClass
from ride_dispatch.common.exceptions import InvalidPayload, NotFound
from ride_dispatch.common.locks import KeyedLock
from ride_dispatch.common.logger import log_info
from ride_dispatch.common.validation import parse_payload
from ride_dispatch.core.drivers.models import Driver, utcnow
from ride_dispatch.core.drivers.repository import DriverRepository
from ride_dispatch.shared.models.geo import GeoPoint

DEFAULT_REJECTION_REASON = "Rejected"


class DriverRegistry:
    """
    Сервис водителей.

    Запись сериализуется по id водителя, чтение не блокируется.
    """

    def __init__(self, repository: DriverRepository) -> None:
        """
        Args:
            repository: Хранилище водителей
        """
        self._repo = repository
        self._locks = KeyedLock()

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get(self, driver_id: str) -> Driver:
        """
        Получает водителя по ID.

        Raises:
            NotFound: водитель не зарегистрирован
        """
        driver = await self._repo.get(driver_id)
        if driver is None:
            raise NotFound("driver", driver_id)
        return driver

    async def list_by_status(self, status: DriverStatusFilter | str = DriverStatusFilter.ALL) -> list[Driver]:
        """
        Список водителей для модерации.

        pending: не одобрен и без причины отказа; rejected: есть причина отказа.
        """
        status = DriverStatusFilter(status)
        drivers = await self._repo.list_all()

        match status:
            case DriverStatusFilter.APPROVED:
                return [d for d in drivers if d.approved]
            case DriverStatusFilter.PENDING:
                return [d for d in drivers if not d.approved and not d.rejected_reason]
            case DriverStatusFilter.REJECTED:
                return [d for d in drivers if d.rejected_reason]
            case _:
                return drivers

    async def eligible_drivers(self, vehicle_class: VehicleClass) -> list[Driver]:
        """Одобренные свободные водители нужного класса в порядке реестра."""
        return [d for d in await self._repo.list_all() if d.is_eligible(vehicle_class)]

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def register(self, driver: Driver | Mapping[str, Any]) -> Driver:
        """
        Регистрирует или заменяет водителя (идемпотентный upsert).

        Повторная регистрация сохраняет исходное время создания.
        """
        parsed = parse_payload(Driver, driver)

        async with self._locks.hold(parsed.id):
            existing = await self._repo.get(parsed.id)
            update: dict[str, Any] = {"updated_at": utcnow()}
            if existing is not None:
                update["created_at"] = existing.created_at
            saved = await self._repo.save(parsed.model_copy(update=update))

        await log_info(
            f"Водитель {saved.id} {'обновлён' if existing else 'зарегистрирован'} ({saved.vehicle_class.value})",
            type_msg=TypeMsg.INFO,
        )
        return saved

    async def update_location(self, driver_id: str, point: GeoPoint | Mapping[str, Any]) -> Driver:
        """Обновляет позицию водителя (heartbeat)."""
        location = parse_payload(GeoPoint, point)
        driver = await self._update(driver_id, location=location)
        await log_info(
            f"Позиция водителя {driver_id}: {location.lat:.5f}, {location.lng:.5f}",
            type_msg=TypeMsg.DEBUG,
        )
        return driver

    async def set_availability(self, driver_id: str, available: bool) -> Driver:
        """Водитель выходит на линию или уходит с неё. Повторный вызов безопасен."""
        driver = await self._update(driver_id, available=bool(available))
        await log_info(f"Водитель {driver_id} {'на линии' if available else 'недоступен'}", type_msg=TypeMsg.DEBUG)
        return driver

    async def set_approval(self, driver_id: str, approved: bool, reason: str | None = None) -> Driver:
        """
        Решение администратора о допуске водителя.

        Args:
            driver_id: ID водителя
            approved: Одобрить (причина отказа сбрасывается)
            reason: Причина отказа; без неё неодобренный водитель возвращается в pending
        """
        reason = reason.strip() if reason else None
        if approved:
            approval, reason = ApprovalStatus.APPROVED, None
        elif reason:
            approval = ApprovalStatus.REJECTED
        else:
            approval = ApprovalStatus.PENDING

        driver = await self._update(driver_id, approval=approval, rejection_reason=reason)
        await log_info(
            f"Модерация водителя {driver_id}: {approval.value}" + (f" ({reason})" if reason else ""),
            type_msg=TypeMsg.INFO,
        )
        return driver

    async def reject(self, driver_id: str, reason: str | None = None) -> Driver:
        """Отклоняет водителя; пустая причина заменяется стандартной."""
        return await self.set_approval(driver_id, False, reason or DEFAULT_REJECTION_REASON)

    async def update_profile(
        self,
        driver_id: str,
        name: str | None = None,
        vehicle_model: str | None = None,
        license_plate: str | None = None,
    ) -> Driver:
        """Частичное обновление профиля (переданные поля)."""
        changes = {
            key: value
            for key, value in (("name", name), ("vehicle_model", vehicle_model), ("license_plate", license_plate))
            if value is not None
        }
        if "name" in changes and not changes["name"].strip():
            raise InvalidPayload("Driver name must not be empty", field="name")
        return await self._update(driver_id, **changes)

    async def _update(self, driver_id: str, **changes: Any) -> Driver:
        async with self._locks.hold(driver_id):
            driver = await self.get(driver_id)
            return await self._repo.save(driver.model_copy(update={**changes, "updated_at": utcnow()}))
