from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

from report_errors import DecodeFailure

R_EARTH = 6371000.0

Point = Tuple[float, float]


def haversine(a: Point, b: Point) -> float:
    """Great-circle distance in metres between two (lat, lng) points."""
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    s = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * R_EARTH * math.asin(math.sqrt(s))


def path_length_m(points: Sequence[Point]) -> float:
    return sum(haversine(points[i - 1], points[i]) for i in range(1, len(points)))


def _next_value(encoded: str, index: int) -> Tuple[int, int]:
    result = shift = 0
    while True:
        if index >= len(encoded):
            raise DecodeFailure("encoded path ends in the middle of a coordinate")
        b = ord(encoded[index]) - 63
        if b < 0 or b > 0x3F:
            raise DecodeFailure(f"invalid character {encoded[index]!r} in encoded path")
        index += 1
        result |= (b & 0x1F) << shift
        shift += 5
        if b < 0x20:
            break
    value = ~(result >> 1) if (result & 1) else (result >> 1)
    return value, index


def decode_polyline(encoded: str, precision: int = 5) -> List[Point]:
    """Decode a Google encoded polyline into (lat, lng) points."""
    if not isinstance(encoded, str):
        raise DecodeFailure("encoded path must be a string")
    factor = 10 ** precision
    points: List[Point] = []
    index = lat = lng = 0
    while index < len(encoded):
        dlat, index = _next_value(encoded, index)
        dlng, index = _next_value(encoded, index)
        lat += dlat
        lng += dlng
        point = (lat / factor, lng / factor)
        if abs(point[0]) > 90 or abs(point[1]) > 180:
            raise DecodeFailure(f"decoded point out of range: {point}")
        points.append(point)
    return points


def bounds(points: Sequence[Point]) -> Optional[Tuple[Point, Point]]:
    """South-west and north-east corners enclosing ``points``."""
    if not points:
        return None
    lats = [p[0] for p in points]
    lngs = [p[1] for p in points]
    return (min(lats), min(lngs)), (max(lats), max(lngs))
