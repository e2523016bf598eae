# ride_dispatch/infra/__init__.py
"""
Инфраструктурный слой: PostgreSQL, Redis, RabbitMQ.
"""

from ride_dispatch.infra.database import DatabaseManager, get_db
from ride_dispatch.infra.event_bus import EventBus, InMemoryEventSink
from ride_dispatch.infra.redis_client import RedisClient, get_redis

__all__ = [
    "DatabaseManager",
    "get_db",
    "EventBus",
    "InMemoryEventSink",
    "RedisClient",
    "get_redis",
]
