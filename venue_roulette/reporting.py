"""Result card and status text for the rendering surface."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

from . import config
from .categories import VenueProfile
from .models import Location, Venue

_WORD_START_RE = re.compile(r"\b([a-z])")

STATUS_SELECT_LOCATION = "Select a city to start."
STATUS_SELECT_FIRST = "Select a city first."
STATUS_LOADING = "Loading data…"
STATUS_FETCH_FAILED = "Failed to load data from Overpass. Please try Reload."
STATUS_NO_PLACES = "No places after filters. Adjust filters and reload."
STATUS_NO_RESULTS = "No results"


def title_case(text: str) -> str:
    return _WORD_START_RE.sub(lambda m: m.group(1).upper(), text)


def status_ready(count: int) -> str:
    if count == 0:
        return STATUS_NO_PLACES
    return f"{count} places ready. Click SPIN!"


def status_fetching(profile: VenueProfile, location: Optional[Location]) -> str:
    name = location.name if location else "your city"
    return f"Fetching {profile.description or 'places'} near {name}…"


def page_title(profile: VenueProfile, location: Optional[Location]) -> str:
    if location is None:
        return profile.title
    return f"{profile.title} — {location.name}"


def format_address(venue: Venue) -> str:
    return ", ".join(part for part in (venue.street, venue.city) if part)


def osm_link(venue: Venue) -> str:
    return f"{config.OSM_BROWSE_URL}/{venue.id}"


def maps_link(venue: Venue, location: Optional[Location]) -> str:
    address = format_address(venue)
    fallback = location.name if location else ""
    query = f"{venue.name} {address or fallback}"
    params = urlencode({"api": "1", "query": query}, quote_via=quote)
    return f"{config.GOOGLE_MAPS_SEARCH_URL}?{params}"


def build_result_card(
    venue: Venue, profile: VenueProfile, location: Optional[Location] = None
) -> Dict[str, Any]:
    categories = ", ".join(title_case(c) for c in venue.categories) or "Unspecified"
    links: List[Dict[str, str]] = [
        {"label": "Open in Google Maps", "href": maps_link(venue, location)},
        {"label": "OpenStreetMap", "href": osm_link(venue)},
    ]
    if venue.website:
        links.append({"label": "Website", "href": venue.website})
    return {
        "name": venue.name,
        "category_line": f"{profile.category_label}: {categories}",
        "address": format_address(venue),
        "phone": venue.phone,
        "links": links,
    }
