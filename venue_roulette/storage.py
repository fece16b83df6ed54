"""Key-value persistence for the selected location."""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from . import config
from .models import Location

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class SqliteStore:
    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or config.STATE_DB_PATH
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._configure_conn()
        self._init_db()

    def _configure_conn(self) -> None:
        cur = self.conn.cursor()
        try:
            cur.execute("PRAGMA journal_mode=WAL")
            cur.fetchone()
        except sqlite3.DatabaseError:
            pass
        try:
            cur.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError:
            pass

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.commit()
        self.conn.close()

    def get(self, key: str) -> Optional[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = cur.fetchone()
        if not row:
            return None
        return row["value"]

    def set(self, key: str, value: str) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT OR REPLACE INTO kv_store (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            (key, value, utc_now_iso()),
        )
        self.conn.commit()


def save_location(
    store: KeyValueStore, location: Location, key: str = config.SELECTED_LOCATION_KEY
) -> None:
    try:
        store.set(key, json.dumps(location.to_dict()))
    except sqlite3.Error as exc:
        logger.warning("Could not persist selected location: %s", exc)


def load_location(
    store: KeyValueStore, key: str = config.SELECTED_LOCATION_KEY
) -> Optional[Location]:
    """Last saved location, or None when absent or unreadable."""
    try:
        raw = store.get(key)
    except sqlite3.Error as exc:
        logger.warning("Could not read selected location: %s", exc)
        return None
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring unreadable stored location")
        return None
    if not isinstance(data, dict) or not data.get("bbox"):
        return None
    try:
        return Location.from_dict(data)
    except (KeyError, TypeError, ValueError):
        logger.warning("Ignoring malformed stored location")
        return None
