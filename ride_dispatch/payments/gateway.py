# ride_dispatch/payments/gateway.py
"""
Клиент внешнего платёжного шлюза.
Ядро передаёт сумму, валюту и способ оплаты и получает успех или отказ.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from ride_dispatch.common.constants import PaymentMethod, TypeMsg
from ride_dispatch.common.exceptions import PaymentDeclined, RateLimited
from ride_dispatch.common.logger import log_error, log_info


@dataclass
class PaymentResult:
    """Результат списания."""
    success: bool
    transaction_id: str | None = None
    error: str | None = None


class PaymentGateway(Protocol):
    """Платёжный шлюз."""

    async def charge(
        self,
        *,
        booking_id: str,
        amount: float,
        currency: str,
        method: PaymentMethod,
    ) -> PaymentResult:
        ...


class HttpPaymentGateway:
    """
    HTTP-шлюз: POST {base_url}/charges с Bearer-ключом.

    Ответ 402 или success=false означает отказ, 429 поднимает RateLimited.
    Остальные HTTP-ошибки пробрасываются как httpx.HTTPStatusError.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        from ride_dispatch.config import settings

        payment_settings = settings.payments
        headers = {}
        key = api_key if api_key is not None else payment_settings.PAYMENT_GATEWAY_API_KEY
        if key:
            headers["Authorization"] = f"Bearer {key}"

        self.base_url = base_url if base_url is not None else payment_settings.PAYMENT_GATEWAY_URL
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else payment_settings.PAYMENT_GATEWAY_TIMEOUT,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def charge(
        self,
        *,
        booking_id: str,
        amount: float,
        currency: str,
        method: PaymentMethod,
    ) -> PaymentResult:
        payload: dict[str, Any] = {
            "booking_id": booking_id,
            "amount": amount,
            "currency": currency,
            "method": PaymentMethod(method).value,
        }

        response = await self.client.post("/charges", json=payload)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            await log_error(f"Платёжный шлюз ограничил запросы для {booking_id}")
            raise RateLimited("Payment gateway rate limit exceeded", booking_id=booking_id, retry_after=retry_after)
        if response.status_code == 402:
            return PaymentResult(success=False, error=self._error_text(response))

        response.raise_for_status()
        data = response.json()

        if not data.get("success", False):
            return PaymentResult(success=False, error=str(data.get("error") or "declined"))

        await log_info(
            f"Списание {amount} {currency} по бронированию {booking_id}: {data.get('transaction_id')}",
            type_msg=TypeMsg.INFO,
        )
        return PaymentResult(success=True, transaction_id=data.get("transaction_id"))

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            return str(response.json().get("error") or "declined")
        except ValueError:
            return response.text or "declined"


async def charge_or_raise(
    gateway: PaymentGateway,
    *,
    booking_id: str,
    amount: float,
    currency: str,
    method: PaymentMethod,
) -> PaymentResult:
    """Списание; отказ шлюза превращается в PaymentDeclined."""
    result = await gateway.charge(booking_id=booking_id, amount=amount, currency=currency, method=method)
    if not result.success:
        raise PaymentDeclined(
            f"Payment declined for booking {booking_id}: {result.error}",
            booking_id=booking_id,
            reason=result.error,
        )
    return result
