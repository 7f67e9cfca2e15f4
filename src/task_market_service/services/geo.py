"""Great-circle distance helpers for location filtering."""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6378.1


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the great-circle distance in kilometres between two points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def _is_finite_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def is_valid_coordinate(latitude: object, longitude: object) -> bool:
    """Check that a latitude/longitude pair is numeric and in range."""
    if not (_is_finite_number(latitude) and _is_finite_number(longitude)):
        return False
    return -90 <= float(latitude) <= 90 and -180 <= float(longitude) <= 180  # type: ignore[arg-type]
