# ride_dispatch/core/pricing/__init__.py
"""
Ценообразование: оценка стоимости, разбивка поездки и платежа, конфигурация.
"""

from ride_dispatch.core.pricing.config_store import (
    InMemoryPricingConfigStore,
    RedisPricingConfigStore,
    normalize_pricing_patch,
)
from ride_dispatch.core.pricing.fare import (
    FareCalculator,
    compute_payment,
    compute_trip_pricing,
    estimate_fare,
    round2,
    round_half_up,
)
from ride_dispatch.core.pricing.models import PaymentBreakdown, PricingConfig, TripPricing

__all__ = [
    "FareCalculator",
    "estimate_fare",
    "compute_trip_pricing",
    "compute_payment",
    "round2",
    "round_half_up",
    "PricingConfig",
    "TripPricing",
    "PaymentBreakdown",
    "InMemoryPricingConfigStore",
    "RedisPricingConfigStore",
    "normalize_pricing_patch",
]
