"""City search against Nominatim with a Photon fallback."""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from . import config
from .http import (
    EmptyResultError,
    ExhaustedSourcesError,
    HttpClient,
    TransportError,
    attempt_with_fallback,
)
from .models import BoundingBox, Location, LocationCandidate

logger = logging.getLogger(__name__)

CITY_PLACE_TYPES = frozenset(
    {
        "city",
        "town",
        "village",
        "borough",
        "hamlet",
        "suburb",
        "neighbourhood",
        "city_district",
        "municipality",
        "township",
        "locality",
        "cdp",
    }
)
PHOTON_PLACE_TYPES = frozenset(
    {
        "city",
        "town",
        "village",
        "borough",
        "hamlet",
        "suburb",
        "neighbourhood",
        "municipality",
        "locality",
    }
)
_ADDRESS_CITY_KEYS = ("city", "town", "village", "borough", "municipality")
_LABEL_CITY_KEYS = ("city", "town", "village", "borough", "hamlet", "municipality", "county")
_STATE_CODE_RE = re.compile(r"\b([A-Z]{2})\b")


def _to_float(value: Any) -> Optional[float]:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def is_city_like(item: Mapping[str, Any]) -> bool:
    cls = item.get("class")
    place_type = item.get("type")
    address_type = item.get("addresstype") or ""
    address = item.get("address") or {}
    if cls == "place" and place_type in CITY_PLACE_TYPES:
        return True
    if cls == "boundary" and place_type == "administrative":
        if address_type in CITY_PLACE_TYPES:
            return True
        if any(address.get(k) for k in _ADDRESS_CITY_KEYS):
            return True
    return False


def format_city_label(item: Mapping[str, Any]) -> str:
    address = item.get("address") or {}
    city = next((address[k] for k in _LABEL_CITY_KEYS if address.get(k)), "")
    state = address.get("state") or address.get("region") or ""
    short_state = address.get("state_code") or ""
    if not short_state and state:
        match = _STATE_CODE_RE.search(state)
        if match:
            short_state = match.group(1)
    state_out = short_state.upper() or state
    label = f"{city}{', ' if city and state_out else ''}{state_out}".strip()
    return label or item.get("display_name") or "Unknown"


def parse_nominatim_item(item: Mapping[str, Any], source: str = "nominatim") -> LocationCandidate:
    bbox = tuple(_to_float(v) for v in (item.get("boundingbox") or []))
    return LocationCandidate(
        label=format_city_label(item),
        display_name=item.get("display_name") or "",
        osm_class=str(item.get("class") or ""),
        osm_type=str(item.get("type") or ""),
        osm_id=str(item.get("osm_id") or ""),
        lat=_to_float(item.get("lat")),
        lon=_to_float(item.get("lon")),
        boundingbox=bbox,
        source=source,
    )


def photon_to_nominatim(feature: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Rewrite a Photon feature in Nominatim's shape, or None if not a city."""
    props = feature.get("properties") or {}
    geometry = feature.get("geometry") or {}
    coords = geometry.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        coords = [None, None]
    lon = _to_float(coords[0])
    lat = _to_float(coords[1])
    value = str(props.get("osm_value") or props.get("type") or "")
    key = str(props.get("osm_key") or "")
    name = props.get("name") or props.get("city") or ""
    if key != "place" or value not in PHOTON_PLACE_TYPES:
        return None

    extent = props.get("extent")
    if isinstance(extent, (list, tuple)) and len(extent) == 4:
        # Photon extent is west, south, east, north
        west, south, east, north = (_to_float(v) for v in extent)
        bbox = [south, north, west, east]
    elif lat is not None and lon is not None:
        d = config.PHOTON_POINT_EXTENT_DEG
        bbox = [lat - d, lat + d, lon - d, lon + d]
    else:
        return None

    state = props.get("state") or ""
    return {
        "class": "place",
        "type": value,
        "addresstype": value,
        "address": {
            "city": props.get("city") or name,
            "state": state,
            "state_code": "",
            "country_code": str(props.get("countrycode") or "").upper(),
        },
        "display_name": f"{name}{', ' + state if state else ''}",
        "lat": lat,
        "lon": lon,
        "boundingbox": bbox,
        "osm_id": f"photon:{props.get('osm_type') or ''}:{props.get('osm_id') or name}",
    }


def dedupe_candidates(items: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    seen = set()
    out: List[Mapping[str, Any]] = []
    for item in items:
        key = f"{item.get('class')}:{item.get('osm_id')}"
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def choose_location(candidate: LocationCandidate) -> Location:
    """Commit a geocoding hit as a Location (bbox reordered to S/W/N/E)."""
    bb = list(candidate.boundingbox) + [None] * (4 - len(candidate.boundingbox))
    south, north, west, east = (math.nan if v is None else v for v in bb[:4])
    return Location(
        name=candidate.label,
        display_name=candidate.display_name or candidate.label,
        lat=math.nan if candidate.lat is None else candidate.lat,
        lon=math.nan if candidate.lon is None else candidate.lon,
        bbox=BoundingBox(south=south, west=west, north=north, east=east),
    )


class LocationResolver:
    def __init__(
        self,
        http_client: HttpClient,
        country_codes: Optional[str] = None,
        limit: int = config.GEOCODE_RESULT_LIMIT,
    ) -> None:
        self.http = http_client
        self.country_codes = country_codes
        self.limit = limit

    def resolve(self, query: str) -> List[LocationCandidate]:
        """Ranked city candidates for free text; empty list means no results."""
        query = (query or "").strip()
        if len(query) < config.GEOCODE_MIN_QUERY_LENGTH:
            return []
        try:
            items = attempt_with_fallback(
                [
                    [lambda: self._search_nominatim(query)],
                    [lambda: self._search_photon(query)],
                ],
                label="Geocoding",
            )
        except ExhaustedSourcesError:
            logger.info("No geocoding results for %r", query)
            return []
        return [parse_nominatim_item(item, source=item.get("_source", "nominatim")) for item in items]

    def _get(self, url: str, params: Dict[str, Any]) -> Any:
        try:
            return self.http.get_json(url, params=params, kind="geocode")
        except TransportError as exc:
            logger.warning("Geocoding request failed: %s", exc)
            return []

    def _search_nominatim(self, query: str) -> List[Mapping[str, Any]]:
        base = {
            "format": "jsonv2",
            "addressdetails": "1",
            "limit": str(self.limit),
            "countrycodes": self.country_codes or config.GEOCODE_COUNTRY_CODES,
        }
        # Free-form first, then structured by city name
        free_form = self._get(config.NOMINATIM_SEARCH_URL, {**base, "q": query})
        by_city = self._get(config.NOMINATIM_SEARCH_URL, {**base, "city": query})
        merged = [
            item
            for batch in (free_form, by_city)
            if isinstance(batch, list)
            for item in batch
            if isinstance(item, dict)
        ]
        deduped = dedupe_candidates(item for item in merged if is_city_like(item))
        if not deduped:
            raise EmptyResultError("Nominatim returned no city-like results")
        return deduped[: self.limit]

    def _search_photon(self, query: str) -> List[Mapping[str, Any]]:
        params = {
            "q": query,
            "lang": "en",
            "limit": str(self.limit),
            "bbox": config.PHOTON_BBOX,
        }
        payload = self._get(config.PHOTON_SEARCH_URL, params)
        features = payload.get("features") if isinstance(payload, dict) else None
        if not isinstance(features, list):
            raise EmptyResultError("Photon returned no features")
        out: List[Mapping[str, Any]] = []
        for feature in features:
            item = photon_to_nominatim(feature) if isinstance(feature, dict) else None
            if item is not None:
                item["_source"] = "photon"
                out.append(item)
        if not out:
            raise EmptyResultError("Photon returned no city-like results")
        return out[: self.limit]
