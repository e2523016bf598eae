# ride_dispatch/infra/event_bus.py
"""
Исходящие каналы доменных событий.
RabbitMQ (topic exchange, routing key = тип события) и in-memory приёмник.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone

import aio_pika
from aio_pika import ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_debug, log_error, log_info
from ride_dispatch.shared.events.base import DomainEvent


class EventBus:
    """
    Публикация событий в RabbitMQ.

    Доставка best-effort: ошибки транспорта логируются
    и не пробрасываются в бизнес-логику.
    """

    _instance: EventBus | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Инициализация (вызывается только один раз благодаря Singleton)."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._exchange_name = "dispatch.events"

    @property
    def is_connected(self) -> bool:
        """Проверяет, активно ли соединение."""
        return self._connection is not None and not self._connection.is_closed

    async def connect(self, url: str | None = None, exchange_name: str | None = None) -> None:
        """
        Подключается к RabbitMQ и объявляет exchange.

        Args:
            url: URL RabbitMQ (если None, берётся из конфига)
            exchange_name: Имя exchange
        """
        if self.is_connected:
            return

        if url is None:
            from ride_dispatch.config import settings
            url = settings.rabbitmq.url
            exchange_name = exchange_name or settings.rabbitmq.RABBITMQ_EXCHANGE

        if exchange_name:
            self._exchange_name = exchange_name

        await log_info("Подключение к RabbitMQ...", type_msg=TypeMsg.INFO)

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )

        await log_info("Подключение к RabbitMQ установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с RabbitMQ."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            await log_info("Соединение с RabbitMQ закрыто", type_msg=TypeMsg.INFO)

    async def publish(self, event: DomainEvent) -> None:
        """
        Публикует событие в exchange.

        Args:
            event: Доменное событие
        """
        if not self.is_connected or self._exchange is None:
            await log_error(f"Не удалось опубликовать {event.event_type}: нет соединения с RabbitMQ")
            return

        try:
            message = Message(
                body=event.to_json().encode(),
                content_type="application/json",
                message_id=event.event_id,
                timestamp=datetime.now(timezone.utc),
            )
            await self._exchange.publish(message, routing_key=event.event_type)
            await log_debug(f"Событие опубликовано: {event.event_type}")
        except (aio_pika.exceptions.AMQPError, ConnectionError) as e:
            await log_error(f"Ошибка публикации события {event.event_type}: {e}")


class InMemoryEventSink:
    """
    Приёмник событий в памяти процесса (локальный запуск и тесты).
    Хранит только последние max_events событий.
    """

    def __init__(self, max_events: int | None = None) -> None:
        if max_events is None:
            from ride_dispatch.config import settings
            max_events = settings.storage.EVENT_BUFFER_SIZE
        self.events: deque[DomainEvent] = deque(maxlen=max_events)

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)
        await log_debug(f"Событие записано: {event.event_type}")

    def of_type(self, event_type: str) -> list[DomainEvent]:
        """Возвращает события указанного типа в порядке публикации."""
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()
