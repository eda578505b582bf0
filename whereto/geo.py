"""Geographic helpers (haversine distance, centroid, bounding box)"""

import math
from typing import Iterable, NamedTuple, Optional, Tuple

EARTH_RADIUS_M = 6371000.0
METERS_PER_DEGREE = 111000.0


class Point(NamedTuple):
    lat: float
    lng: float


class BoundingBox(NamedTuple):
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


def haversine_distance(a: Point, b: Point) -> float:
    """Great-circle distance between two points in meters"""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def centroid(points: Iterable[Tuple[float, float]]) -> Optional[Point]:
    """Unweighted arithmetic mean of lat and of lng; None for no points"""
    points = list(points)
    if not points:
        return None
    lat = sum(p[0] for p in points) / len(points)
    lng = sum(p[1] for p in points) / len(points)
    return Point(lat, lng)


def bounding_box(center: Point, radius_m: float) -> BoundingBox:
    """Approximate box enclosing the circle (1 degree lat ~ 111 km)"""
    lat_delta = radius_m / METERS_PER_DEGREE
    lng_delta = radius_m / (METERS_PER_DEGREE * max(math.cos(math.radians(center.lat)), 1e-6))
    return BoundingBox(
        min_lat=center.lat - lat_delta,
        max_lat=center.lat + lat_delta,
        min_lng=center.lng - lng_delta,
        max_lng=center.lng + lng_delta,
    )
