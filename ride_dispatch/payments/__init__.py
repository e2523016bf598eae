# ride_dispatch/payments/__init__.py
"""Платёжный шлюз."""

from ride_dispatch.payments.gateway import HttpPaymentGateway, PaymentGateway, PaymentResult, charge_or_raise

__all__ = [
    "HttpPaymentGateway",
    "PaymentGateway",
    "PaymentResult",
    "charge_or_raise",
]
