# ride_dispatch/shared/models/geo.py
"""
Геоточки и расчёт расстояний.
"""

from __future__ import annotations

import math

from pydantic import BaseModel, Field


EARTH_RADIUS_KM = 6371.0


class GeoPoint(BaseModel):
    """Точка на карте (широта, долгота, необязательный адрес)."""
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: str | None = None

    class Config:
        from_attributes = True
        frozen = True


def planar_distance(a: GeoPoint, b: GeoPoint) -> float:
    """
    Расстояние по разнице координат (hypot в градусах).
    Используется только для ранжирования водителей на коротких дистанциях.
    """
    return math.hypot(a.lat - b.lat, a.lng - b.lng)


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Вычисляет расстояние между двумя точками (в км) по формуле Haversine."""
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)

    h = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) *
         math.sin(dlng / 2) ** 2)

    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
