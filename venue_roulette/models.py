"""Immutable records passed between pipeline stages."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class BoundingBox:
    south: float
    west: float
    north: float
    east: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Location:
    name: str
    display_name: str
    lat: float
    lon: float
    bbox: BoundingBox

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "lat": self.lat,
            "lon": self.lon,
            "bbox": self.bbox.as_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Location":
        bbox = data["bbox"]
        return cls(
            name=str(data.get("name") or ""),
            display_name=str(data.get("displayName") or data.get("name") or ""),
            lat=float(data["lat"]),
            lon=float(data["lon"]),
            bbox=BoundingBox(
                south=float(bbox["south"]),
                west=float(bbox["west"]),
                north=float(bbox["north"]),
                east=float(bbox["east"]),
            ),
        )


@dataclass(frozen=True)
class LocationCandidate:
    """One geocoding hit, in Nominatim's field layout.

    ``boundingbox`` keeps Nominatim's order: south, north, west, east.
    """

    label: str
    display_name: str
    osm_class: str
    osm_type: str
    osm_id: str
    lat: Optional[float]
    lon: Optional[float]
    boundingbox: Tuple[float, ...]
    source: str = "nominatim"

    @property
    def dedup_key(self) -> str:
        return f"{self.osm_class}:{self.osm_id}"


@dataclass(frozen=True)
class Venue:
    id: str
    name: str
    categories: Tuple[str, ...]
    tags: Mapping[str, str] = field(compare=False, hash=False)
    lat: Optional[float] = None
    lon: Optional[float] = None
    website: str = ""
    phone: str = ""
    street: str = ""
    city: str = ""

    @property
    def amenity(self) -> Optional[str]:
        return self.tags.get("amenity")
