"""Category collection, exclusion toggles and the candidate filter."""
from __future__ import annotations

from typing import AbstractSet, Iterable, List, Mapping, Optional

from .models import Venue


def collect_categories(venues: Iterable[Venue]) -> List[str]:
    found = set()
    for venue in venues:
        found.update(venue.categories)
    return sorted(found)


def toggle_exclusion(excluded: AbstractSet[str], category: str, exclude: bool) -> frozenset:
    out = set(excluded)
    if exclude:
        out.add(category)
    else:
        out.discard(category)
    return frozenset(out)


def exclude_all(categories: Iterable[str]) -> frozenset:
    return frozenset(categories)


def exclude_none() -> frozenset:
    return frozenset()


def apply_filters(
    venues: Iterable[Venue],
    excluded: AbstractSet[str],
    subtype_toggles: Optional[Mapping[str, bool]] = None,
) -> List[Venue]:
    """Venues that survive the subtype toggles and the category exclusions.

    A disabled subtype toggle drops every venue of that amenity. A venue with
    categories stays while any one of them is not excluded; a venue without
    categories always stays.
    """
    toggles = subtype_toggles or {}
    out: List[Venue] = []
    for venue in venues:
        if toggles.get(venue.amenity or "", True) is False:
            continue
        if venue.categories and all(c in excluded for c in venue.categories):
            continue
        out.append(venue)
    return out


def filter_category_options(categories: Iterable[str], text: str) -> List[str]:
    needle = (text or "").strip().lower()
    if not needle:
        return list(categories)
    return [c for c in categories if needle in c.lower()]
