"""Session state and the controller that drives the roulette pipeline.

Rendering surfaces call the controller's public methods in response to user
events (search, pick a city, toggle a category, spin) and read back
``controller.session`` plus the wheel slices.
"""
from __future__ import annotations

import logging
import random
import threading
from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from . import config
from .categories import VenueProfile, get_profile
from .filters import apply_filters, collect_categories, exclude_all, exclude_none, toggle_exclusion
from .geocoder import LocationResolver, choose_location
from .http import ExhaustedSourcesError, HttpClient, NoLocationSelectedError, RequestMetrics
from .models import Location, LocationCandidate, Venue
from .overpass_client import VenueFetcher
from .reporting import (
    STATUS_FETCH_FAILED,
    STATUS_LOADING,
    STATUS_NO_RESULTS,
    STATUS_SELECT_FIRST,
    STATUS_SELECT_LOCATION,
    build_result_card,
    status_fetching,
    status_ready,
)
from .storage import KeyValueStore, MemoryStore, SqliteStore, load_location, save_location
from .wheel import SelectionEngine, Slice, SpinOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouletteSession:
    location: Optional[Location] = None
    venues: Tuple[Venue, ...] = ()
    categories: Tuple[str, ...] = ()
    excluded: frozenset = frozenset()
    subtype_toggles: Dict[str, bool] = field(default_factory=dict)
    filtered: Tuple[Venue, ...] = ()
    status: str = STATUS_SELECT_LOCATION
    result_card: Optional[Dict[str, object]] = None
    generation: int = 0
    ready: bool = False


def with_location(session: RouletteSession, location: Location) -> RouletteSession:
    return replace(
        session, location=location, status=STATUS_LOADING, result_card=None, ready=False
    )


def with_venues(session: RouletteSession, venues: List[Venue]) -> RouletteSession:
    """Fresh fetch result: new category list, exclusions cleared."""
    updated = replace(
        session,
        venues=tuple(venues),
        categories=tuple(collect_categories(venues)),
        excluded=exclude_none(),
        ready=True,
    )
    return refilter(updated)


def with_exclusions(session: RouletteSession, excluded: frozenset) -> RouletteSession:
    return refilter(replace(session, excluded=frozenset(excluded)))


def with_subtype(session: RouletteSession, subtype: str, enabled: bool) -> RouletteSession:
    toggles = dict(session.subtype_toggles)
    toggles[subtype] = bool(enabled)
    return refilter(replace(session, subtype_toggles=toggles))


def refilter(session: RouletteSession) -> RouletteSession:
    filtered = apply_filters(session.venues, session.excluded, session.subtype_toggles)
    # a failed or pending load keeps its status message
    status = status_ready(len(filtered)) if session.ready else session.status
    return replace(session, filtered=tuple(filtered), status=status)


class RouletteController:
    def __init__(
        self,
        profile: Optional[VenueProfile] = None,
        resolver: Optional[LocationResolver] = None,
        fetcher: Optional[VenueFetcher] = None,
        engine: Optional[SelectionEngine] = None,
        store: Optional[KeyValueStore] = None,
        rng: Optional[random.Random] = None,
        on_change: Optional[Callable[[RouletteSession], None]] = None,
    ) -> None:
        self.profile = profile or get_profile()
        self.rng = rng or random.Random()
        http_client: Optional[HttpClient] = None
        if resolver is None or fetcher is None:
            http_client = HttpClient(
                timeout=config.HTTP_TIMEOUT_SECONDS,
                user_agent=config.HTTP_USER_AGENT,
                metrics=RequestMetrics(),
            )
        self.resolver = resolver or LocationResolver(http_client)
        self.fetcher = fetcher or VenueFetcher(http_client, self.profile, rng=self.rng)
        self.metrics: Optional[RequestMetrics] = getattr(
            getattr(self.fetcher, "http", None), "metrics", None
        )
        self.engine = engine or SelectionEngine(rng=self.rng)
        self.engine.on_reveal = self._on_reveal
        self.store = store if store is not None else MemoryStore()
        self.on_change = on_change
        # Reveals arrive on the scheduler's thread; every session update holds this.
        self._lock = threading.RLock()
        self._spin_location: Optional[Location] = None
        self.session = RouletteSession(
            subtype_toggles={s: True for s in self.profile.subtype_toggles}
        )

    @classmethod
    def from_config(
        cls,
        root_dir: Optional[Path] = None,
        config_path: Optional[str] = None,
        profile_name: Optional[str] = None,
        **kwargs,
    ) -> "RouletteController":
        """Controller wired from .env, ROULETTE_* variables and roulette_config.json.

        Environment variables win over the JSON file. The selected location
        is persisted in the sqlite file at ``config.STATE_DB_PATH``.
        """
        config.load_env(root_dir=root_dir)
        if config.load_roulette_config(config_path):
            logger.info("Loaded roulette config")
        config.apply_env_overrides()
        if "store" not in kwargs:
            kwargs["store"] = SqliteStore(config.STATE_DB_PATH)
        return cls(profile=get_profile(profile_name), **kwargs)

    def _commit(self, session: RouletteSession) -> None:
        with self._lock:
            self.session = session
            self.engine.set_candidates(session.filtered if session.ready else ())
            if self.on_change is not None:
                self.on_change(session)

    def _update(self, transition: Callable[[RouletteSession], RouletteSession]) -> RouletteSession:
        with self._lock:
            self._commit(transition(self.session))
            return self.session

    # --- Location ---

    def startup(self) -> RouletteSession:
        location = load_location(self.store)
        if location is not None:
            self._update(lambda s: replace(s, location=location))
        return self.load()

    def search_locations(self, query: str) -> List[LocationCandidate]:
        candidates = self.resolver.resolve(query)
        if not candidates and len((query or "").strip()) >= config.GEOCODE_MIN_QUERY_LENGTH:
            logger.info("%s for %r", STATUS_NO_RESULTS, query)
        if self.metrics is not None:
            logger.debug("Request totals: %s", self.metrics.summary())
        return candidates

    def choose_location(self, candidate: LocationCandidate) -> RouletteSession:
        location = choose_location(candidate)
        save_location(self.store, location)
        logger.info("Selected %s", location.name)
        self._update(lambda s: with_location(s, location))
        return self.load()

    def reload(self) -> RouletteSession:
        if self.session.location is None:
            return self._update(lambda s: replace(s, status=STATUS_SELECT_FIRST))
        return self.load()

    def load(self) -> RouletteSession:
        """Fetch venues for the current location and rebuild the wheel.

        The wheel stays empty until this load succeeds. A newer load started
        while this one was waiting on the network wins; this one's result is
        dropped.
        """
        with self._lock:
            generation = self.session.generation + 1
            location = self.session.location
            if location is None:
                self._commit(
                    replace(
                        self.session,
                        generation=generation,
                        status=STATUS_SELECT_LOCATION,
                        filtered=(),
                        ready=False,
                    )
                )
                return self.session
            self._commit(
                replace(
                    self.session,
                    generation=generation,
                    status=status_fetching(self.profile, location),
                    result_card=None,
                    ready=False,
                )
            )

        try:
            venues = self.fetcher.fetch(location)
        except NoLocationSelectedError:
            with self._lock:
                if generation == self.session.generation:
                    self._commit(replace(self.session, status=STATUS_SELECT_LOCATION))
                return self.session
        except ExhaustedSourcesError as exc:
            logger.error("Venue fetch failed: %s (last error: %s)", exc, exc.last_error)
            with self._lock:
                if generation == self.session.generation:
                    self._commit(replace(self.session, status=STATUS_FETCH_FAILED))
                return self.session
        finally:
            if self.metrics is not None:
                logger.info("Request totals: %s", self.metrics.summary())

        with self._lock:
            if generation != self.session.generation:
                logger.info("Dropping stale venue fetch for %s", location.name)
                return self.session
            self._commit(with_venues(self.session, venues))
            return self.session

    # --- Filters ---

    def toggle_category(self, category: str, exclude: bool) -> RouletteSession:
        return self._update(
            lambda s: with_exclusions(s, toggle_exclusion(s.excluded, category, exclude))
        )

    def select_all(self) -> RouletteSession:
        return self._update(lambda s: with_exclusions(s, exclude_all(s.categories)))

    def select_none(self) -> RouletteSession:
        return self._update(lambda s: with_exclusions(s, exclude_none()))

    def set_subtype(self, subtype: str, enabled: bool) -> RouletteSession:
        return self._update(lambda s: with_subtype(s, subtype, enabled))

    # --- Wheel ---

    def slices(self) -> List[Slice]:
        return self.engine.slices()

    @property
    def can_spin(self) -> bool:
        return self.engine.can_spin

    def spin(self) -> Optional[SpinOutcome]:
        with self._lock:
            outcome = self.engine.spin()
            if outcome is not None:
                self._spin_location = self.session.location
                self._update(lambda s: replace(s, result_card=None))
            return outcome

    def _on_reveal(self, outcome: SpinOutcome) -> None:
        with self._lock:
            card = build_result_card(outcome.venue, self.profile, self._spin_location)
            self._update(lambda s: replace(s, result_card=card))
