# ride_dispatch/shared/events/base.py
"""
Базовые классы для доменных событий.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol
from uuid import uuid4

from pydantic import BaseModel, Field

from ride_dispatch.common.logger import log_error


class EventMetadata(BaseModel):
    """Метаданные события для трассировки и дедупликации."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str | None = None
    source_service: str = "ride_dispatch"
    version: int = 1


class DomainEvent(BaseModel):
    """
    Базовый класс для всех доменных событий.

    Доставка внешним транспортом: best-effort, at-least-once,
    поэтому обработчики должны быть идемпотентны по event_id.
    """

    event_type: str = ""
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    def to_json(self) -> str:
        """Сериализует событие в JSON."""
        return self.model_dump_json()

    @property
    def event_id(self) -> str:
        """Уникальный идентификатор события."""
        return self.metadata.event_id


class EventSink(Protocol):
    """Исходящий канал событий (RabbitMQ, память, websocket-шлюз)."""

    async def publish(self, event: DomainEvent) -> None:
        ...


async def publish_safely(sink: EventSink | None, event: DomainEvent) -> None:
    """
    Публикует событие, если канал задан.
    Ошибки транспорта логируются и не прерывают бизнес-операцию.
    """
    if sink is None:
        return

    try:
        await sink.publish(event)
    except Exception as e:
        await log_error(f"Ошибка публикации события {event.event_type}: {e}", exc_info=True)
