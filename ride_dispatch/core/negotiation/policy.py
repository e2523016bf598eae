# ride_dispatch/core/negotiation/policy.py
"""
Политики ответа водителя на встречное предложение цены.
"""

from __future__ import annotations

import random
from typing import Protocol

from ride_dispatch.core.negotiation.models import Offer
from ride_dispatch.core.pricing.fare import round2


class CounterOfferPolicy(Protocol):
    def should_accept_counter_offer(self, offer: Offer, counter_price: float) -> bool:
        ...


class MinimumPricePolicy:
    """Водитель соглашается, если встречная цена не ниже доли от котировки."""

    def __init__(self, min_ratio: float = 0.9) -> None:
        if min_ratio < 0:
            raise ValueError("min_ratio must be non-negative")
        self.min_ratio = min_ratio

    def minimum_price(self, offer: Offer) -> float:
        return round2(offer.quoted_price * self.min_ratio)

    def should_accept_counter_offer(self, offer: Offer, counter_price: float) -> bool:
        return counter_price >= self.minimum_price(offer)


class RandomAcceptancePolicy:
    """
    Случайное согласие с заданной вероятностью.
    Заглушка для демо-стендов; seed делает поведение воспроизводимым.
    """

    def __init__(self, probability: float = 0.5, seed: int | None = None) -> None:
        if not 0 <= probability <= 1:
            raise ValueError("probability must be within [0, 1]")
        self.probability = probability
        self._rng = random.Random(seed)

    def should_accept_counter_offer(self, offer: Offer, counter_price: float) -> bool:
        return self._rng.random() < self.probability


def build_policy(name: str | None = None) -> CounterOfferPolicy:
    """Создаёт политику по имени из конфига (minimum_price | random)."""
    from ride_dispatch.config import settings

    cfg = settings.negotiation
    name = name or cfg.COUNTER_OFFER_POLICY

    match name:
        case "minimum_price":
            return MinimumPricePolicy(cfg.MIN_ACCEPTABLE_RATIO)
        case "random":
            return RandomAcceptancePolicy(cfg.RANDOM_ACCEPT_PROBABILITY, cfg.RANDOM_SEED)
        case _:
            raise ValueError(f"Unknown counter-offer policy: {name}")
