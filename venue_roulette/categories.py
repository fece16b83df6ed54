"""Venue category extraction.

Two profiles share the pipeline: ``food`` (restaurants, fast food, cafes,
categorised by cuisine) and ``drinks`` (bars and alcohol-serving venues,
categorised by venue kind plus an additive ``brewery`` category).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from . import config

Tags = Mapping[str, str]

DRINK_TAG_KEYS = ("drink:beer", "drink:wine", "drink:spirits", "drink:cocktails", "drink:liquor")
NIGHTLIFE_AMENITIES = ("bar", "pub", "biergarten", "nightclub")

ALCOHOL_NAME_RE = re.compile(
    r"(\bbar\b|\bpub\b|tap|brew|ale|lager|ipa\b|wine|spirits|cocktail|whiskey"
    r"|tavern|saloon|lounge|distill|cider|mead)",
    re.IGNORECASE,
)
BREWERY_NAME_RE = re.compile(r"tap ?room|brewery|brewing")


def _lower(tags: Tags, *keys: str) -> str:
    """First non-empty value among ``keys``, lower-cased."""
    for key in keys:
        value = tags.get(key)
        if value:
            return str(value).lower()
    return ""


def _unique(values: List[str]) -> Tuple[str, ...]:
    seen = set()
    out: List[str] = []
    for v in values:
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return tuple(out)


def cuisine_categories(tags: Tags) -> Tuple[str, ...]:
    # OSM cuisine values are semicolon-delimited
    raw = str(tags.get("cuisine") or "")
    return _unique([part.strip().lower() for part in raw.split(";")])


def drink_categories(tags: Tags) -> Tuple[str, ...]:
    out: List[str] = []
    amenity = tags.get("amenity")
    name_lower = str(tags.get("name") or "").lower()

    if amenity in NIGHTLIFE_AMENITIES:
        out.append(amenity)

    alcohol_yes = _lower(tags, "alcohol", "serves:alcohol") == "yes"
    drink_yes = any(str(tags.get(k) or "").lower() == "yes" for k in DRINK_TAG_KEYS)
    name_suggests = bool(ALCOHOL_NAME_RE.search(name_lower))
    if amenity in ("restaurant", "cafe") and (alcohol_yes or drink_yes or name_suggests):
        out.append(amenity)

    craft = str(tags.get("craft") or "").lower()
    brewery_yes = _lower(tags, "brewery", "microbrewery", "craft_beer") == "yes"
    taproom_yes = _lower(tags, "taproom", "tap_room") == "yes"
    brewpub = "brewpub" in _lower(tags, "brewery:type", "brewery")
    if (
        craft == "brewery"
        or brewery_yes
        or taproom_yes
        or brewpub
        or BREWERY_NAME_RE.search(name_lower)
    ):
        out.append("brewery")

    return _unique(out)


@dataclass(frozen=True)
class VenueProfile:
    name: str
    title: str
    category_label: str
    amenities: Tuple[str, ...]
    core_amenities: Tuple[str, ...]
    classify: Callable[[Tags], Tuple[str, ...]]
    extra_tags: Tuple[Tuple[str, str], ...] = ()
    subtype_toggles: Tuple[str, ...] = ()
    default_radius_m: float = config.DEFAULT_RADIUS_M
    requires_category: bool = False
    description: str = field(default="", compare=False)

    def is_relevant(self, tags: Tags) -> bool:
        """Whether a raw record carries the tags this profile asked for."""
        if tags.get("amenity") in self.amenities:
            return True
        return any(str(tags.get(k) or "").lower() == v for k, v in self.extra_tags)

    def categorize(self, tags: Tags) -> Tuple[str, ...]:
        return self.classify(tags)


FOOD = VenueProfile(
    name="food",
    title="Food Roulette",
    category_label="Cuisine",
    amenities=("restaurant", "fast_food", "cafe"),
    core_amenities=("restaurant",),
    classify=cuisine_categories,
    subtype_toggles=("fast_food", "cafe"),
    default_radius_m=9000.0,
    description="restaurants",
)

DRINKS = VenueProfile(
    name="drinks",
    title="Booze Roulette",
    category_label="Type",
    amenities=NIGHTLIFE_AMENITIES + ("restaurant", "cafe"),
    core_amenities=NIGHTLIFE_AMENITIES,
    classify=drink_categories,
    extra_tags=(("craft", "brewery"),),
    default_radius_m=12000.0,
    requires_category=True,
    description="alcohol venues",
)

PROFILES: Dict[str, VenueProfile] = {p.name: p for p in (FOOD, DRINKS)}


def get_profile(name: Optional[str] = None) -> VenueProfile:
    key = (name or config.DEFAULT_PROFILE).lower()
    if key not in PROFILES:
        raise ValueError(f"Unknown profile: {key}")
    return PROFILES[key]
