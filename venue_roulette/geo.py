"""Geospatial helpers."""
from __future__ import annotations

import math
from typing import Any, Mapping, Optional

from . import config


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = config.EARTH_RADIUS_M
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def search_radius_m(
    bbox: Optional[Mapping[str, Any]],
    lat: Any,
    lon: Any,
    default: float = config.DEFAULT_RADIUS_M,
) -> float:
    """Radius of a circle around (lat, lon) that covers the bounding box.

    The farthest edge distance is padded and clamped so the Overpass query
    stays bounded. Missing or non-finite input yields ``default``.
    """
    lat = _as_float(lat)
    lon = _as_float(lon)
    if not bbox or not math.isfinite(lat) or not math.isfinite(lon):
        return default

    south = _as_float(bbox.get("south"))
    west = _as_float(bbox.get("west"))
    north = _as_float(bbox.get("north"))
    east = _as_float(bbox.get("east"))
    if not all(math.isfinite(v) for v in (south, west, north, east)):
        return default

    d_north = haversine_m(lat, lon, north, lon)
    d_south = haversine_m(lat, lon, south, lon)
    d_east = haversine_m(lat, lon, lat, east)
    d_west = haversine_m(lat, lon, lat, west)
    radius = max(d_north, d_south, d_east, d_west) * config.RADIUS_PADDING
    if not math.isfinite(radius) or radius <= 0:
        radius = default
    return max(config.MIN_RADIUS_M, min(config.MAX_RADIUS_M, radius))
