from __future__ import annotations

import json
import random
import threading
from typing import Callable, List, Optional

from venue_roulette import config
from venue_roulette.categories import DRINKS, FOOD
from venue_roulette.http import ExhaustedSourcesError
from venue_roulette.models import BoundingBox, Location, LocationCandidate, Venue
from venue_roulette.overpass_client import to_venue
from venue_roulette.reporting import (
    STATUS_FETCH_FAILED,
    STATUS_NO_PLACES,
    STATUS_SELECT_FIRST,
    STATUS_SELECT_LOCATION,
)
from venue_roulette.session import RouletteController
from venue_roulette.storage import MemoryStore, SqliteStore, load_location, save_location
from venue_roulette.wheel import SelectionEngine

CANDIDATE = LocationCandidate(
    label="Lafayette, IN",
    display_name="Lafayette, Tippecanoe County, Indiana, United States",
    osm_class="place",
    osm_type="city",
    osm_id="123",
    lat=40.4167,
    lon=-86.8753,
    boundingbox=(40.35, 40.47, -86.95, -86.80),
)

CHICAGO = LocationCandidate(
    label="Chicago, IL",
    display_name="Chicago, Cook County, Illinois, United States",
    osm_class="place",
    osm_type="city",
    osm_id="456",
    lat=41.8781,
    lon=-87.6298,
    boundingbox=(41.64, 42.02, -87.94, -87.52),
)


def _venue(osm_id: int, cuisine: Optional[str] = None, amenity: str = "restaurant") -> Venue:
    tags = {"amenity": amenity, "name": f"Place {osm_id}"}
    if cuisine:
        tags["cuisine"] = cuisine
    return to_venue({"id": osm_id, "type": "node", "lat": 40.4, "lon": -86.9, "tags": tags}, FOOD)


class FakeResolver:
    def __init__(self, candidates: List[LocationCandidate]):
        self.candidates = candidates
        self.queries: List[str] = []

    def resolve(self, query):
        self.queries.append(query)
        return list(self.candidates)


class FakeFetcher:
    def __init__(self, results):
        self.results = list(results)
        self.locations: List[Location] = []
        self.before_return: Optional[Callable[[], None]] = None

    def fetch(self, location):
        self.locations.append(location)
        result = self.results.pop(0)
        if self.before_return is not None:
            hook, self.before_return = self.before_return, None
            hook()
        if isinstance(result, Exception):
            raise result
        return result


class ManualScheduler:
    def __init__(self):
        self.pending = []

    def __call__(self, delay, callback):
        self.pending.append(callback)

    def fire(self):
        callbacks, self.pending = self.pending, []
        for cb in callbacks:
            cb()


def make_controller(results, store=None, candidates=(CANDIDATE,)):
    scheduler = ManualScheduler()
    engine = SelectionEngine(rng=random.Random(11), scheduler=scheduler)
    fetcher = FakeFetcher(results)
    controller = RouletteController(
        profile=FOOD,
        resolver=FakeResolver(list(candidates)),
        fetcher=fetcher,
        engine=engine,
        store=store if store is not None else MemoryStore(),
        rng=random.Random(11),
    )
    return controller, fetcher, scheduler


def test_startup_without_location_prompts_and_disables_spin():
    controller, fetcher, _ = make_controller([])
    session = controller.startup()
    assert session.status == STATUS_SELECT_LOCATION
    assert fetcher.locations == []
    assert not controller.can_spin
    assert controller.spin() is None


def test_reload_without_location_asks_for_city():
    controller, _, _ = make_controller([])
    assert controller.reload().status == STATUS_SELECT_FIRST


def test_choose_location_persists_and_fetches():
    store = MemoryStore()
    venues = [_venue(1, "italian;pizza"), _venue(2, "thai"), _venue(3)]
    controller, fetcher, _ = make_controller([venues], store=store)

    (candidate,) = controller.search_locations("Lafayette")
    session = controller.choose_location(candidate)

    assert load_location(store) == session.location
    assert fetcher.locations == [session.location]
    assert session.categories == ("italian", "pizza", "thai")
    assert session.excluded == frozenset()
    assert [v.id for v in session.filtered] == ["node/1", "node/2", "node/3"]
    assert session.status == "3 places ready. Click SPIN!"
    assert controller.can_spin
    assert len(controller.slices()) == 3


def test_startup_restores_saved_location():
    store = MemoryStore()
    save_location(
        store,
        Location("Lafayette, IN", "Lafayette", 40.4, -86.9, BoundingBox(40.35, -86.95, 40.47, -86.80)),
    )
    controller, fetcher, _ = make_controller([[_venue(1)]], store=store)
    session = controller.startup()
    assert session.location.name == "Lafayette, IN"
    assert len(fetcher.locations) == 1
    assert [v.id for v in session.filtered] == ["node/1"]


def test_filter_changes_do_not_refetch():
    venues = [_venue(1, "italian;pizza"), _venue(2, "thai"), _venue(3, "burger", amenity="fast_food")]
    controller, fetcher, _ = make_controller([venues])
    controller.choose_location(CANDIDATE)

    session = controller.toggle_category("italian", True)
    assert [v.id for v in session.filtered] == ["node/1", "node/2", "node/3"]
    session = controller.toggle_category("pizza", True)
    assert [v.id for v in session.filtered] == ["node/2", "node/3"]
    session = controller.set_subtype("fast_food", False)
    assert [v.id for v in session.filtered] == ["node/2"]

    session = controller.select_all()
    assert session.filtered == ()
    assert session.status == STATUS_NO_PLACES
    assert not controller.can_spin

    session = controller.select_none()
    assert [v.id for v in session.filtered] == ["node/1", "node/2"]
    assert len(fetcher.locations) == 1


def test_failed_fetch_keeps_previous_data():
    venues = [_venue(1, "thai")]
    controller, _, _ = make_controller([venues, ExhaustedSourcesError("all down")])
    controller.choose_location(CANDIDATE)
    controller.toggle_category("thai", True)

    session = controller.reload()
    assert session.status == STATUS_FETCH_FAILED
    assert [v.id for v in session.venues] == ["node/1"]
    assert session.excluded == {"thai"}


def test_stale_fetch_is_dropped():
    stale = [_venue(1)]
    fresh = [_venue(2), _venue(3)]
    controller, fetcher, _ = make_controller([stale, fresh])
    controller.choose_location(CANDIDATE)
    assert [v.id for v in controller.session.filtered] == ["node/1"]

    controller, fetcher, _ = make_controller([stale, fresh])
    # a second load starts and finishes while the first is still waiting
    fetcher.before_return = controller.reload
    controller.choose_location(CANDIDATE)
    assert [v.id for v in controller.session.venues] == ["node/2", "node/3"]


def test_spin_reveals_result_card():
    controller, _, scheduler = make_controller([[_venue(1, "thai")]])
    controller.choose_location(CANDIDATE)

    outcome = controller.spin()
    assert outcome.venue.id == "node/1"
    assert controller.spin() is None
    assert controller.session.result_card is None

    scheduler.fire()
    card = controller.session.result_card
    assert card["name"] == "Place 1"
    assert card["category_line"] == "Cuisine: Thai"
    assert {link["label"] for link in card["links"]} == {"Open in Google Maps", "OpenStreetMap"}
    assert controller.can_spin


def test_wheel_is_locked_while_new_location_loads_and_after_it_fails():
    controller, fetcher, _ = make_controller([[_venue(1, "thai")], ExhaustedSourcesError("all down")])
    controller.choose_location(CANDIDATE)
    assert controller.can_spin

    during_load = []
    fetcher.before_return = lambda: during_load.append(controller.can_spin)
    session = controller.choose_location(CHICAGO)

    assert during_load == [False]
    assert session.location.name == "Chicago, IL"
    assert session.status == STATUS_FETCH_FAILED
    assert [v.id for v in session.venues] == ["node/1"]
    assert not controller.can_spin
    assert controller.spin() is None
    assert controller.slices() == []

    # filter changes on the old data keep the failure visible and the wheel locked
    session = controller.toggle_category("thai", False)
    assert session.status == STATUS_FETCH_FAILED
    assert not controller.can_spin


def test_reveal_keeps_venues_committed_during_spin():
    controller, _, scheduler = make_controller([[_venue(1, "thai")], [_venue(2, "thai"), _venue(3)]])
    controller.choose_location(CANDIDATE)
    controller.spin()

    controller.choose_location(CHICAGO)
    scheduler.fire()

    session = controller.session
    assert session.result_card["name"] == "Place 1"
    assert "Lafayette" in session.result_card["links"][0]["href"]
    assert [v.id for v in session.venues] == ["node/2", "node/3"]
    assert [v.id for v in session.filtered] == ["node/2", "node/3"]
    assert [v.id for v in controller.engine.candidates] == ["node/2", "node/3"]


def test_reveal_from_timer_thread_waits_for_pending_update():
    controller, _, scheduler = make_controller([[_venue(1, "thai"), _venue(2, "pizza")]])
    controller.choose_location(CANDIDATE)
    controller.spin()

    with controller._lock:
        revealer = threading.Thread(target=scheduler.fire)
        revealer.start()
        revealer.join(timeout=0.1)
        assert revealer.is_alive()
        assert controller.session.result_card is None
        controller.toggle_category("pizza", True)
    revealer.join(timeout=5)

    session = controller.session
    assert session.result_card is not None
    assert session.excluded == {"pizza"}
    assert [v.id for v in session.filtered] == ["node/1"]


def test_from_config_persists_location_in_sqlite(tmp_path, monkeypatch):
    for name in (
        "DEFAULT_PROFILE",
        "STATE_DB_PATH",
        "OVERPASS_URLS",
        "RETRY_BASE_DELAY_SECONDS",
        "RETRY_DELAY_INCREMENT_SECONDS",
        "GEOCODE_COUNTRY_CODES",
        "HTTP_TIMEOUT_SECONDS",
        "HTTP_USER_AGENT",
    ):
        monkeypatch.setattr(config, name, getattr(config, name))
    for var in ("ROULETTE_USER_AGENT", "ROULETTE_COUNTRY_CODES", "ROULETTE_HTTP_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)
    db_path = tmp_path / "state.db"
    monkeypatch.setenv("ROULETTE_STATE_PATH", str(db_path))
    config_path = tmp_path / "roulette_config.json"
    config_path.write_text(json.dumps({"profile": "drinks"}), encoding="utf-8")

    controller = RouletteController.from_config(
        root_dir=tmp_path,
        config_path=str(config_path),
        fetcher=FakeFetcher([]),
        resolver=FakeResolver([CANDIDATE]),
    )
    assert controller.profile is DRINKS
    assert isinstance(controller.store, SqliteStore)
    assert controller.store.db_path == str(db_path)

    save_location(
        controller.store,
        Location("Chicago, IL", "Chicago", 41.88, -87.63, BoundingBox(41.64, -87.94, 42.02, -87.52)),
    )
    controller.store.close()

    reopened = RouletteController.from_config(root_dir=tmp_path, config_path=str(config_path))
    assert load_location(reopened.store).name == "Chicago, IL"
    assert reopened.metrics is not None
    reopened.store.close()
