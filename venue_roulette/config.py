"""Project configuration.

Loads user-defined settings from roulette_config.json and environment
variables when available, falling back to sensible defaults. Keep endpoint
URLs and request shapes centralized here.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- API endpoints ---

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
PHOTON_SEARCH_URL = "https://photon.komoot.io/api/"
OVERPASS_URLS: List[str] = [
    "https://overpass-api.de/api/interpreter",
    "https://z.overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://overpass.osm.ch/api/interpreter",
    "https://overpass.openstreetmap.ru/api/interpreter",
]
OSM_BROWSE_URL = "https://www.openstreetmap.org"
GOOGLE_MAPS_SEARCH_URL = "https://www.google.com/maps/search/"

# --- Geocoding ---

GEOCODE_COUNTRY_CODES = "us"
GEOCODE_RESULT_LIMIT = 15
GEOCODE_MIN_QUERY_LENGTH = 2
# Contiguous US as west,south,east,north
PHOTON_BBOX = "-124.848974,24.396308,-66.885444,49.384358"
PHOTON_POINT_EXTENT_DEG = 0.05

# --- Search radius ---

EARTH_RADIUS_M = 6371000.0
RADIUS_PADDING = 1.05
MIN_RADIUS_M = 2500.0
MAX_RADIUS_M = 30000.0
DEFAULT_RADIUS_M = 9000.0

# --- Overpass ---

OVERPASS_TIMEOUT_SECONDS = 60

# --- Retry policy ---

RETRY_BASE_DELAY_SECONDS = 0.5
RETRY_DELAY_INCREMENT_SECONDS = 0.3

# --- Wheel ---

MAX_VISUAL_SLICES = 200
SPIN_ANIMATION_SECONDS = 5.0
SPIN_REVEAL_SECONDS = 5.2
SPIN_EXTRA_TURNS_MIN = 4
SPIN_EXTRA_TURNS_SPAN = 4
LABEL_MAX_CHARS = 28
SLICE_COLOR_COUNT = 8

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 30
HTTP_USER_AGENT = "venue-roulette/0.1 (+https://www.openstreetmap.org/copyright)"

# --- Persisted state ---

STATE_DB_PATH = "roulette_state.db"
SELECTED_LOCATION_KEY = "fr_selected_city"

# --- Profile ---

DEFAULT_PROFILE = "food"


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _REPO_ROOT
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path, override=False)


def apply_env_overrides(environ: Optional[Dict[str, str]] = None) -> None:
    env = os.environ if environ is None else environ
    globals_ref = globals()

    user_agent = (env.get("ROULETTE_USER_AGENT") or "").strip()
    if user_agent:
        globals_ref["HTTP_USER_AGENT"] = user_agent

    countries = (env.get("ROULETTE_COUNTRY_CODES") or "").strip()
    if countries:
        globals_ref["GEOCODE_COUNTRY_CODES"] = countries.lower()

    timeout = (env.get("ROULETTE_HTTP_TIMEOUT") or "").strip()
    if timeout:
        globals_ref["HTTP_TIMEOUT_SECONDS"] = int(timeout)

    state_path = (env.get("ROULETTE_STATE_PATH") or "").strip()
    if state_path:
        globals_ref["STATE_DB_PATH"] = state_path


def load_roulette_config(path: Optional[str] = None) -> bool:
    """Load settings from a JSON file.

    Updates module-level globals with values from the config file.
    Returns True if config was loaded, False if file not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "roulette_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)

    globals_ref = globals()

    profile = data.get("profile")
    if profile:
        globals_ref["DEFAULT_PROFILE"] = str(profile)

    countries = data.get("country_codes")
    if countries:
        globals_ref["GEOCODE_COUNTRY_CODES"] = str(countries).lower()

    mirrors = data.get("overpass_urls", [])
    if mirrors:
        globals_ref["OVERPASS_URLS"] = list(mirrors)

    retry = data.get("retry", {})
    if "base_delay_seconds" in retry:
        globals_ref["RETRY_BASE_DELAY_SECONDS"] = float(retry["base_delay_seconds"])
    if "delay_increment_seconds" in retry:
        globals_ref["RETRY_DELAY_INCREMENT_SECONDS"] = float(retry["delay_increment_seconds"])

    timeout = data.get("http_timeout_seconds")
    if timeout is not None:
        globals_ref["HTTP_TIMEOUT_SECONDS"] = int(timeout)

    user_agent = data.get("user_agent")
    if user_agent:
        globals_ref["HTTP_USER_AGENT"] = str(user_agent)

    return True
