# ride_dispatch/core/negotiation/models.py
"""
Модели сессии согласования: предложения водителей живут только внутри сессии.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from ride_dispatch.common.constants import OfferStatus, SessionState
from ride_dispatch.common.exceptions import NotFound
from ride_dispatch.core.matching.service import DriverCandidate
from ride_dispatch.core.requests.models import RideRequest


@dataclass
class Offer:
    """Предложение водителя. id совпадает с id водителя в рамках сессии."""
    id: str
    driver_id: str
    driver_name: str
    vehicle_model: str | None
    rating: float
    total_rides: int
    distance_km: float
    eta_minutes: int
    quoted_price: float
    negotiated_price: float | None = None
    counter_price: float | None = None
    counter_accepted: bool | None = None
    status: OfferStatus = OfferStatus.PENDING

    @classmethod
    def from_candidate(cls, candidate: DriverCandidate) -> "Offer":
        driver = candidate.driver
        return cls(
            id=driver.id,
            driver_id=driver.id,
            driver_name=driver.name,
            vehicle_model=driver.vehicle_model,
            rating=driver.rating,
            total_rides=driver.total_rides,
            distance_km=candidate.distance_km,
            eta_minutes=candidate.eta_minutes,
            quoted_price=candidate.quoted_price,
        )

    @property
    def has_counter_offer(self) -> bool:
        return self.counter_price is not None

    @property
    def final_price(self) -> float:
        """Согласованная цена, иначе котировка."""
        return self.negotiated_price if self.negotiated_price is not None else self.quoted_price


@dataclass
class NegotiationSession:
    """Сессия выбора водителя клиентом с ограничением по времени."""
    request: RideRequest
    offers: dict[str, Offer]
    deadline: float
    passenger_count: int = 1
    id: str = field(default_factory=lambda: str(uuid4()))
    state: SessionState = SessionState.OPEN
    accepted_offer_id: str | None = None
    booking_id: str | None = None
    closed_at: float | None = None
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    def offer(self, offer_id: str) -> Offer:
        offer = self.offers.get(offer_id)
        if offer is None:
            raise NotFound("offer", offer_id)
        return offer

    def reject_pending(self) -> None:
        """Все ещё ожидающие предложения отклоняются."""
        for offer in self.offers.values():
            if offer.status == OfferStatus.PENDING:
                offer.status = OfferStatus.REJECTED
