"""Overpass API client with mirror fallback and response parsing."""
from __future__ import annotations

import logging
import random
import time
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from . import config
from .categories import VenueProfile
from .geo import search_radius_m
from .http import (
    EmptyResultError,
    HttpClient,
    NoLocationSelectedError,
    RetryPolicy,
    TransportError,
    attempt_with_fallback,
)
from .models import Location, Venue

logger = logging.getLogger(__name__)


class VenueFetcher:
    def __init__(
        self,
        http_client: HttpClient,
        profile: VenueProfile,
        rng: Optional[random.Random] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        urls: Optional[Sequence[str]] = None,
    ) -> None:
        self.http = http_client
        self.profile = profile
        self.rng = rng or random.Random()
        self.retry_policy = retry_policy or RetryPolicy(
            base_delay=config.RETRY_BASE_DELAY_SECONDS,
            delay_increment=config.RETRY_DELAY_INCREMENT_SECONDS,
        )
        self.sleep = sleep
        self.urls = list(urls) if urls is not None else None

    def fetch_elements(self, location: Optional[Location]) -> List[Dict[str, Any]]:
        """Raw Overpass elements for a location, broad query first.

        Raises ``ExhaustedSourcesError`` when no mirror answered either query
        with at least one element.
        """
        if location is None:
            raise NoLocationSelectedError("No city selected")
        radius = search_radius_m(
            location.bbox.as_dict(), location.lat, location.lon, self.profile.default_radius_m
        )
        broad = build_overpass_query(
            location.lat, location.lon, radius, self.profile.amenities, self.profile.extra_tags
        )
        core = build_overpass_query(
            location.lat, location.lon, radius, self.profile.core_amenities, self.profile.extra_tags
        )
        logger.debug("Overpass broad query: %s", broad)

        endpoints = list(self.urls if self.urls is not None else config.OVERPASS_URLS)
        self.rng.shuffle(endpoints)

        def tier(query: str) -> List[Callable[[], List[Dict[str, Any]]]]:
            return [lambda url=url: self._query_mirror(url, query) for url in endpoints]

        return attempt_with_fallback(
            [tier(broad), tier(core)],
            policy=self.retry_policy,
            sleep=self.sleep,
            label="Overpass",
        )

    def fetch(self, location: Optional[Location]) -> List[Venue]:
        logger.info(
            "Fetching %s near %s",
            self.profile.description or self.profile.name,
            location.name if location else "your city",
        )
        elements = self.fetch_elements(location)
        venues = parse_overpass_elements(elements, self.profile)
        logger.info("Overpass returned %s elements, %s venues", len(elements), len(venues))
        return venues

    def _query_mirror(self, url: str, query: str) -> List[Dict[str, Any]]:
        payload = self.http.post_form(url, {"data": query}, kind="venues")
        elements = payload.get("elements") if isinstance(payload, dict) else None
        if not isinstance(elements, list):
            raise TransportError(f"Malformed Overpass payload from {url}")
        if not elements:
            if self.http.metrics is not None:
                self.http.metrics.inc_empty("venues")
            raise EmptyResultError(f"Overpass returned no elements @ {url}")
        return elements


def build_overpass_query(
    lat: float,
    lon: float,
    radius_m: float,
    amenities: Iterable[str],
    extra_tags: Iterable[Sequence[str]] = (),
    timeout: int = config.OVERPASS_TIMEOUT_SECONDS,
) -> str:
    around = f"(around:{int(round(radius_m))},{lat},{lon})"
    filters = [f'["amenity"~"{"|".join(amenities)}"]']
    filters.extend(f'["{key}"="{value}"]' for key, value in extra_tags)
    lines = [f"[out:json][timeout:{timeout}];", "("]
    for tag_filter in filters:
        lines.append(f"  node{tag_filter}{around};")
        lines.append(f"  way{tag_filter}{around};")
    lines.append(");")
    lines.append("out center;")
    return "\n".join(lines)


def normalize_element(element: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten node/way/relation shapes to ``{id, type, lat, lon, tags}``."""
    el_type = element.get("type")
    if el_type == "node":
        lat = element.get("lat")
        lon = element.get("lon")
    else:
        center = element.get("center") or {}
        lat = center.get("lat")
        lon = center.get("lon")
    return {
        "id": element.get("id"),
        "type": el_type,
        "lat": lat,
        "lon": lon,
        "tags": element.get("tags") or {},
    }


def to_venue(record: Dict[str, Any], profile: VenueProfile) -> Venue:
    tags = record["tags"]
    return Venue(
        id=f"{record['type']}/{record['id']}",
        name=tags.get("name") or "Unnamed",
        categories=profile.categorize(tags),
        tags=MappingProxyType(dict(tags)),
        lat=record.get("lat"),
        lon=record.get("lon"),
        website=tags.get("website") or tags.get("url") or "",
        phone=tags.get("phone") or tags.get("contact:phone") or "",
        street=tags.get("addr:street") or "",
        city=tags.get("addr:city") or "",
    )


def dedupe_by_id(venues: Iterable[Venue]) -> List[Venue]:
    seen = set()
    out: List[Venue] = []
    for venue in venues:
        if venue.id in seen:
            continue
        seen.add(venue.id)
        out.append(venue)
    return out


# Adapter/mapper for Overpass elements

def parse_overpass_elements(
    elements: Iterable[Dict[str, Any]], profile: VenueProfile
) -> List[Venue]:
    venues: List[Venue] = []
    for element in elements:
        record = normalize_element(element)
        if record["id"] is None or not record["type"]:
            continue
        if not profile.is_relevant(record["tags"]):
            continue
        venue = to_venue(record, profile)
        if profile.requires_category and not venue.categories:
            continue
        venues.append(venue)
    return dedupe_by_id(venues)
