"""Great-circle helpers for the two-phase geo filter."""

import math
from typing import List, Optional, Tuple

EARTH_RADIUS_M = 6_371_008.8


def haversine_m(lat1: Optional[float], lon1: Optional[float],
                lat2: Optional[float], lon2: Optional[float]) -> Optional[float]:
    """Distance in meters between two WGS84 points; None if any coordinate is missing."""
    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return None
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(lat: float, lon: float, distance_m: float
                 ) -> Tuple[Tuple[float, float], List[Tuple[float, float]]]:
    """
    Cheap pre-filter box around a point.

    Returns ((min_lat, max_lat), lon_ranges). lon_ranges is empty when the
    box covers every longitude (near a pole), and has two entries when it
    wraps across the antimeridian.
    """
    d_lat = math.degrees(distance_m / EARTH_RADIUS_M)
    min_lat = lat - d_lat
    max_lat = lat + d_lat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return (max(min_lat, -90.0), min(max_lat, 90.0)), []

    # Widest longitude span sits at the latitude edge closest to a pole
    widest = max(abs(min_lat), abs(max_lat))
    d_lon = math.degrees(distance_m / (EARTH_RADIUS_M * math.cos(math.radians(widest))))
    if d_lon >= 180.0:
        return (min_lat, max_lat), []

    west = lon - d_lon
    east = lon + d_lon
    if west < -180.0:
        return (min_lat, max_lat), [(west + 360.0, 180.0), (-180.0, east)]
    if east > 180.0:
        return (min_lat, max_lat), [(west, 180.0), (-180.0, east - 360.0)]
    return (min_lat, max_lat), [(west, east)]
