"""Per-user tracking settings persistence."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import Any, Protocol

from .location_types import TrackingConfig

DEFAULT_DB_PATH = "memory/location/geotrack.db"
_SETTINGS_FIELDS = frozenset(
    {
        "enabled",
        "poll_interval_sec",
        "last_known_latitude",
        "last_known_longitude",
        "last_known_place_name",
    }
)


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def resolve_settings_db_path(path: str | Path | None) -> Path:
    candidate = Path(path or DEFAULT_DB_PATH)
    if not candidate.is_absolute():
        candidate = _repo_root() / candidate
    return candidate.resolve()


def merge_partial_config(current: TrackingConfig, partial: dict[str, Any]) -> TrackingConfig:
    unknown = set(partial) - _SETTINGS_FIELDS
    if unknown:
        raise ValueError(f"Unknown tracking settings field(s): {', '.join(sorted(unknown))}")
    merged = current.to_dict()
    merged.update(partial)
    return TrackingConfig.from_dict(merged)


class SettingsPersistence(Protocol):
    def load_config(self, user_id: str) -> TrackingConfig: ...

    def save_config(self, user_id: str, partial: dict[str, Any]) -> None: ...


class SettingsStore:
    """SQLite-backed tracking settings, one row per user."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._db_path = resolve_settings_db_path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self.ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS tracking_settings (
                    user_id TEXT PRIMARY KEY,
                    enabled INTEGER NOT NULL DEFAULT 0 CHECK (enabled IN (0, 1)),
                    poll_interval_sec INTEGER NOT NULL CHECK (poll_interval_sec > 0),
                    last_known_latitude REAL,
                    last_known_longitude REAL,
                    last_known_place_name TEXT,
                    updated_at TEXT NOT NULL
                );
                """
            )

    def load_config(self, user_id: str) -> TrackingConfig:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT enabled, poll_interval_sec, last_known_latitude, last_known_longitude, last_known_place_name
                FROM tracking_settings
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
        if row is None:
            return TrackingConfig()
        return TrackingConfig.from_dict(
            {
                "enabled": bool(row["enabled"]),
                "poll_interval_sec": int(row["poll_interval_sec"]),
                "last_known_latitude": row["last_known_latitude"],
                "last_known_longitude": row["last_known_longitude"],
                "last_known_place_name": row["last_known_place_name"],
            }
        )

    def save_config(self, user_id: str, partial: dict[str, Any]) -> None:
        with self._lock:
            merged = merge_partial_config(self.load_config(user_id), partial)
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO tracking_settings (
                        user_id, enabled, poll_interval_sec,
                        last_known_latitude, last_known_longitude, last_known_place_name, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        enabled = excluded.enabled,
                        poll_interval_sec = excluded.poll_interval_sec,
                        last_known_latitude = excluded.last_known_latitude,
                        last_known_longitude = excluded.last_known_longitude,
                        last_known_place_name = excluded.last_known_place_name,
                        updated_at = excluded.updated_at
                    """,
                    (
                        user_id,
                        1 if merged.enabled else 0,
                        merged.poll_interval_sec,
                        merged.last_known_latitude,
                        merged.last_known_longitude,
                        merged.last_known_place_name,
                        _utc_now_iso(),
                    ),
                )


class InMemorySettingsStore:
    """Dict-backed store with a write log; used for tests and embedding."""

    def __init__(self, initial: dict[str, TrackingConfig] | None = None) -> None:
        self._lock = RLock()
        self._rows: dict[str, TrackingConfig] = dict(initial or {})
        self.writes: list[tuple[str, dict[str, Any]]] = []

    def load_config(self, user_id: str) -> TrackingConfig:
        with self._lock:
            current = self._rows.get(user_id)
            return TrackingConfig.from_dict(current.to_dict()) if current is not None else TrackingConfig()

    def save_config(self, user_id: str, partial: dict[str, Any]) -> None:
        with self._lock:
            self._rows[user_id] = merge_partial_config(self.load_config(user_id), partial)
            self.writes.append((user_id, dict(partial)))
