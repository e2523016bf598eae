# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from ride_dispatch.common.constants import ApprovalStatus, VehicleClass
from ride_dispatch.core.bookings import BookingLifecycleManager, InMemoryBookingRepository
from ride_dispatch.core.drivers import Driver, DriverRegistry, InMemoryDriverRepository
from ride_dispatch.core.negotiation import MinimumPricePolicy, NegotiationController
from ride_dispatch.core.pricing import InMemoryPricingConfigStore, PricingConfig
from ride_dispatch.core.requests import InMemoryRideRequestRepository, RideRequestService
from ride_dispatch.infra.event_bus import InMemoryEventSink
from ride_dispatch.shared.models.geo import GeoPoint


class FakeClock:
    """Управляемые монотонные часы для таймеров сессий."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Тестовая конфигурация",
        "PROJECT_NAME": "ride_dispatch_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "json",
        "STORAGE_BACKEND": "memory",
        "PRICING_STORE": "memory",
        "EVENT_SINK": "memory",
        "DB_HOST": "db.test",
        "DB_NAME": "ride_dispatch_test",
        "REDIS_NAMESPACE": "dispatch_test",
        "PER_KM_BASE": 1.2,
        "MIN_FARE": 5.0,
        "DRIVER_PER_KM": 1.5,
        "PLATFORM_FEE_PERCENT": 10.0,
        "CURRENCY": "TRY",
        "MAX_CANDIDATES": 5,
        "SESSION_TIMEOUT_SECONDS": 15.0,
        "COUNTER_OFFER_POLICY": "random",
        "RANDOM_SEED": 42,
        "RIDE_REQUEST_TTL_SECONDS": 120,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def event_sink() -> InMemoryEventSink:
    """Приёмник событий в памяти."""
    return InMemoryEventSink()


# =============================================================================
# ФИКСТУРЫ ДОМЕНА
# =============================================================================

@pytest.fixture
def pickup() -> GeoPoint:
    return GeoPoint(lat=41.0082, lng=28.9784, address="Sultanahmet, Istanbul")


@pytest.fixture
def dropoff() -> GeoPoint:
    return GeoPoint(lat=41.0422, lng=29.0083, address="Besiktas, Istanbul")


@pytest.fixture
def make_driver() -> Callable[..., Driver]:
    """Фабрика одобренных свободных водителей."""

    def factory(
        driver_id: str,
        lat: float = 41.0082,
        lng: float = 28.9784,
        vehicle_class: VehicleClass = VehicleClass.SEDAN,
        **overrides: Any,
    ) -> Driver:
        data: dict[str, Any] = {
            "id": driver_id,
            "name": f"Driver {driver_id}",
            "vehicle_class": vehicle_class,
            "vehicle_model": "Toyota Corolla",
            "license_plate": "34 ABC 123",
            "location": GeoPoint(lat=lat, lng=lng),
            "available": True,
            "approval": ApprovalStatus.APPROVED,
        }
        data.update(overrides)
        return Driver(**data)

    return factory


@pytest.fixture
def registry() -> DriverRegistry:
    return DriverRegistry(InMemoryDriverRepository())


@pytest.fixture
def pricing_store() -> InMemoryPricingConfigStore:
    return InMemoryPricingConfigStore(PricingConfig(driver_per_km=1.0, platform_fee_percent=3.0))


@pytest.fixture
def request_service(event_sink: InMemoryEventSink, registry: DriverRegistry) -> RideRequestService:
    return RideRequestService(
        InMemoryRideRequestRepository(),
        event_sink=event_sink,
        registry=registry,
        ttl_seconds=600,
    )


@pytest.fixture
def booking_manager(
    event_sink: InMemoryEventSink,
    registry: DriverRegistry,
    pricing_store: InMemoryPricingConfigStore,
) -> BookingLifecycleManager:
    return BookingLifecycleManager(
        InMemoryBookingRepository(),
        event_sink=event_sink,
        registry=registry,
        pricing_store=pricing_store,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def controller(
    request_service: RideRequestService,
    booking_manager: BookingLifecycleManager,
    event_sink: InMemoryEventSink,
    clock: FakeClock,
) -> NegotiationController:
    """Контроллер с управляемыми часами и детерминированной политикой."""
    return NegotiationController(
        request_service,
        booking_manager,
        policy=MinimumPricePolicy(0.9),
        event_sink=event_sink,
        timeout_seconds=30,
        clock=clock,
    )
