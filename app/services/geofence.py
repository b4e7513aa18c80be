"""
Geofence evaluation: great-circle distance and circular membership.

Pure functions, no I/O.
"""

from __future__ import annotations

import math
from typing import NamedTuple

from app.core.exceptions import InvalidCoordinates

EARTH_RADIUS_M = 6_371_000.0


class Position(NamedTuple):
    lat: float
    lng: float


class GeofenceResult(NamedTuple):
    inside: bool
    distance_m: float


def _validate(pos: Position) -> None:
    lat, lng = pos
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidCoordinates(f"Non-finite coordinate: ({lat}, {lng})")
    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinates(f"Latitude out of range: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise InvalidCoordinates(f"Longitude out of range: {lng}")


def distance_m(a: Position, b: Position) -> float:
    """Haversine distance between two positions, in meters."""
    _validate(a)
    _validate(b)

    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    delta_lat = math.radians(b.lat - a.lat)
    delta_lng = math.radians(b.lng - a.lng)

    h = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def evaluate(pos: Position, center: Position, radius_m: float) -> GeofenceResult:
    if not math.isfinite(radius_m) or radius_m < 0:
        raise InvalidCoordinates(f"Invalid geofence radius: {radius_m}")
    d = distance_m(pos, center)
    return GeofenceResult(inside=d <= radius_m, distance_m=d)


def is_inside(pos: Position, center: Position, radius_m: float) -> bool:
    return evaluate(pos, center, radius_m).inside
