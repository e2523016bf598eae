# ride_dispatch/core/bookings/state_machine.py
"""
Граф допустимых переходов статуса бронирования.
"""

from __future__ import annotations

from ride_dispatch.common.constants import BookingStatus
from ride_dispatch.common.exceptions import InvalidPayload, InvalidTransition


class BookingStateMachine:
    """
    State machine для переходов между статусами бронирования.

    Допустимые переходы:
    - pending → accepted → driver_en_route → driver_arrived → in_progress → completed
    - любой незавершённый статус → cancelled
    """

    ALLOWED_TRANSITIONS: dict[BookingStatus, list[BookingStatus]] = {
        BookingStatus.PENDING: [BookingStatus.ACCEPTED, BookingStatus.CANCELLED],
        BookingStatus.ACCEPTED: [BookingStatus.DRIVER_EN_ROUTE, BookingStatus.CANCELLED],
        BookingStatus.DRIVER_EN_ROUTE: [BookingStatus.DRIVER_ARRIVED, BookingStatus.CANCELLED],
        BookingStatus.DRIVER_ARRIVED: [BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED],
        BookingStatus.IN_PROGRESS: [BookingStatus.COMPLETED, BookingStatus.CANCELLED],
        BookingStatus.COMPLETED: [],
        BookingStatus.CANCELLED: [],
    }

    TERMINAL: frozenset[BookingStatus] = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

    @staticmethod
    def parse_status(value: BookingStatus | str) -> BookingStatus:
        """Строка -> BookingStatus; неизвестный статус -> InvalidPayload."""
        try:
            return BookingStatus(value)
        except ValueError:
            raise InvalidPayload(f"Unknown booking status: {value}", status=str(value)) from None

    @classmethod
    def can_transition(cls, current: BookingStatus, target: BookingStatus) -> bool:
        """Проверяет, допустим ли переход. Повтор текущего статуса допустим."""
        if current == target:
            return True
        return target in cls.ALLOWED_TRANSITIONS.get(current, [])

    @classmethod
    def validate_transition(cls, current: BookingStatus, target: BookingStatus) -> None:
        """Проверяет переход и выбрасывает InvalidTransition при ошибке."""
        if not cls.can_transition(current, target):
            raise InvalidTransition(current.value, target.value)
