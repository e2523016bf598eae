# ride_dispatch/core/requests/repository.py
"""
Хранилище заявок на поездку.
"""

from __future__ import annotations

from typing import Protocol

from ride_dispatch.core.requests.models import RideRequest


class RideRequestRepository(Protocol):
    async def get(self, request_id: str) -> RideRequest | None:
        ...

    async def save(self, request: RideRequest) -> RideRequest:
        ...

    async def list_all(self) -> list[RideRequest]:
        ...


class InMemoryRideRequestRepository:
    """Заявки живут недолго (TTL), поэтому хранятся в памяти процесса."""

    def __init__(self) -> None:
        self._requests: dict[str, RideRequest] = {}

    async def get(self, request_id: str) -> RideRequest | None:
        return self._requests.get(request_id)

    async def save(self, request: RideRequest) -> RideRequest:
        self._requests[request.id] = request
        return request

    async def list_all(self) -> list[RideRequest]:
        return list(self._requests.values())
