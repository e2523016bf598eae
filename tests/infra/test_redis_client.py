# tests/infra/test_redis_client.py
"""
Тесты для клиента Redis.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from ride_dispatch.core.pricing import PricingConfig
from ride_dispatch.infra.redis_client import RedisClient, get_redis


class TestRedisClient:
    """Тесты для RedisClient."""

    @pytest.fixture
    def redis_client(self) -> RedisClient:
        """Создаёт экземпляр RedisClient для тестов."""
        # Сбрасываем синглтон для каждого теста
        RedisClient._instance = None
        return RedisClient()

    @pytest.fixture
    def connected(self, redis_client: RedisClient) -> AsyncMock:
        """Подставляет мок соединения Redis."""
        mock_conn = AsyncMock()
        redis_client._client = mock_conn
        return mock_conn

    def test_singleton(self) -> None:
        """Проверяет паттерн Singleton."""
        RedisClient._instance = None

        assert RedisClient() is get_redis()

    def test_client_not_initialized(self, redis_client: RedisClient) -> None:
        """Проверяет ошибку при обращении к неинициализированному клиенту."""
        with pytest.raises(RuntimeError, match="Redis клиент не инициализирован"):
            _ = redis_client.client

    def test_make_key(self, redis_client: RedisClient) -> None:
        """Проверяет формирование ключа с namespace."""
        assert redis_client._make_key("pricing:config") == "dispatch:pricing:config"

    @pytest.mark.asyncio
    async def test_connect(self, redis_client: RedisClient) -> None:
        """Проверяет подключение к Redis."""
        mock_conn = AsyncMock()
        mock_conn.ping = AsyncMock(return_value=True)

        with patch("redis.asyncio.from_url", return_value=mock_conn) as from_url:
            await redis_client.connect(url="redis://localhost:6379/0", max_connections=10)

        assert redis_client.client is mock_conn
        assert from_url.call_args.kwargs["max_connections"] == 10
        mock_conn.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_already_connected(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        """Проверяет, что повторное подключение пропускается."""
        with patch("redis.asyncio.from_url") as from_url:
            await redis_client.connect(url="redis://localhost:6379/0")

        from_url.assert_not_called()
        assert redis_client.client is connected

    @pytest.mark.asyncio
    async def test_disconnect(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        await redis_client.disconnect()

        connected.aclose.assert_awaited_once()
        assert redis_client._client is None

    @pytest.mark.asyncio
    async def test_basic_operations_use_namespace(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        connected.get = AsyncMock(return_value="value")
        connected.set = AsyncMock(return_value=True)

        assert await redis_client.get("k") == "value"
        assert await redis_client.set("k", "v", ttl=60) is True

        connected.get.assert_awaited_once_with("dispatch:k")
        connected.set.assert_awaited_once_with("dispatch:k", "v", ex=60)

    @pytest.mark.asyncio
    async def test_model_roundtrip(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        config = PricingConfig(driver_per_km=1.7, platform_fee_percent=5)
        connected.set = AsyncMock(return_value=True)

        await redis_client.set_model("pricing:config", config)
        stored = connected.set.call_args.args[1]
        connected.get = AsyncMock(return_value=stored)

        assert await redis_client.get_model("pricing:config", PricingConfig) == config

    @pytest.mark.asyncio
    async def test_get_model_missing(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        connected.get = AsyncMock(return_value=None)

        assert await redis_client.get_model("pricing:config", PricingConfig) is None

    @pytest.mark.asyncio
    async def test_get_model_corrupted(self, redis_client: RedisClient, connected: AsyncMock) -> None:
        """Повреждённые данные дают None, а не исключение."""
        connected.get = AsyncMock(return_value='{"driver_per_km": "lots"}')

        assert await redis_client.get_model("pricing:config", PricingConfig) is None
