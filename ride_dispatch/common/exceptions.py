# ride_dispatch/common/exceptions.py
"""
Исключения движка диспетчеризации.
Каждое исключение несёт стабильный машиночитаемый код.
"""

from __future__ import annotations

from typing import Any


class DispatchError(Exception):
    """Базовое исключение движка."""

    code: str = "dispatch_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Машиночитаемое представление ошибки."""
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidPayload(DispatchError):
    """Отсутствуют или некорректны обязательные поля."""
    code = "invalid_payload"


class InvalidRoute(InvalidPayload):
    """Пустой или некорректный маршрут."""
    code = "invalid_route"


class NotFound(DispatchError):
    """Сущность с указанным идентификатором не существует."""
    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(DispatchError):
    """Переход статуса бронирования нарушает граф состояний."""
    code = "invalid_transition"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Transition {current} -> {target} is not allowed", current=current, target=target)
        self.current = current
        self.target = target


class SessionClosed(DispatchError):
    """Действие над уже завершённой сессией согласования."""
    code = "session_closed"


class AlreadyAccepted(SessionClosed):
    """Заявка уже принята другим водителем."""
    code = "already_accepted"


class RateLimited(DispatchError):
    """Внешний сервис ограничил частоту запросов."""
    code = "rate_limited"


class PaymentDeclined(DispatchError):
    """Платёжный шлюз отклонил оплату."""
    code = "payment_declined"
