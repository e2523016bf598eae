# ride_dispatch/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class VehicleClass(str, Enum):
    """Классы автомобилей."""
    SEDAN = "sedan"
    SUV = "suv"
    VAN = "van"
    LUXURY = "luxury"


class ApprovalStatus(str, Enum):
    """Статус модерации водителя."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DriverStatusFilter(str, Enum):
    """Фильтр списка водителей для администратора."""
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"
    ALL = "all"


class RideRequestStatus(str, Enum):
    """Статусы заявки на поездку."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"


class SessionState(str, Enum):
    """Состояния сессии согласования."""
    OPEN = "open"
    CLOSED_ACCEPTED = "closed_accepted"
    CLOSED_EXPIRED = "closed_expired"


class OfferStatus(str, Enum):
    """Статусы предложения водителя."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class BookingStatus(str, Enum):
    """Статусы бронирования."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DRIVER_EN_ROUTE = "driver_en_route"
    DRIVER_ARRIVED = "driver_arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Статусы оплаты бронирования."""
    UNPAID = "unpaid"
    PAID = "paid"


class PaymentMethod(str, Enum):
    """Способы оплаты."""
    CARD = "card"
    CASH = "cash"


class Currency(str, Enum):
    """Поддерживаемые валюты."""
    EUR = "EUR"
    TRY = "TRY"
