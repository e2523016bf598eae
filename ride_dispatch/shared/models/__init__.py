# ride_dispatch/shared/models/__init__.py
from ride_dispatch.shared.models.geo import GeoPoint, haversine_km, planar_distance

__all__ = ["GeoPoint", "haversine_km", "planar_distance"]
