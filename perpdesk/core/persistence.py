from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import asdict, dataclass, is_dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Optional


@dataclass
class Event:
    ts: float
    kind: str
    data: Dict[str, Any]


class _EnhancedJSONEncoder(json.JSONEncoder):
    def default(self, o: Any):  # type: ignore[override]
        if isinstance(o, Decimal):
            return str(o)
        if is_dataclass(o) and not isinstance(o, type):
            return asdict(o)
        try:
            return super().default(o)
        except TypeError:
            return str(o)


def dumps_safe(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, cls=_EnhancedJSONEncoder)


class StateStore:
    """SQLite kv table plus an append-only event journal.

    One store may be shared by loops running on different threads; every
    statement runs under a single lock.
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._setup()

    def _setup(self) -> None:
        with self._lock:
            c = self._conn.cursor()
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    k TEXT PRIMARY KEY,
                    v TEXT NOT NULL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts REAL NOT NULL,
                    kind TEXT NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            self._conn.commit()

    def put(self, key: str, value: Dict[str, Any]) -> None:
        payload = dumps_safe(value)
        with self._lock:
            self._conn.execute("INSERT OR REPLACE INTO kv (k, v) VALUES (?, ?)", (key, payload))
            self._conn.commit()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute("SELECT v FROM kv WHERE k = ?", (key,)).fetchone()
        if not row:
            return None
        return json.loads(row[0])

    def last_run(self, strategy_name: str) -> Optional[float]:
        got = self.get(f"strategy:{strategy_name}:last_run")
        return float(got["ts"]) if got else None

    def set_last_run(self, strategy_name: str, ts: float) -> None:
        self.put(f"strategy:{strategy_name}:last_run", {"ts": ts})

    def append_event(self, event: Event) -> None:
        payload = dumps_safe(event.data)
        with self._lock:
            self._conn.execute("INSERT INTO events (ts, kind, data) VALUES (?, ?, ?)", (event.ts, event.kind, payload))
            self._conn.commit()

    def record_cycle(self, result: Any) -> None:
        data = asdict(result) if is_dataclass(result) else dict(result)
        # round-trip through the encoder so Decimals land as strings
        self.append_event(Event(ts=float(data.get("timestamp", 0.0)), kind=f"cycle.{data.get('kind')}", data=json.loads(dumps_safe(data))))

    def iter_events(self, kind: Optional[str] = None) -> Iterable[Event]:
        with self._lock:
            if kind is None:
                rows = self._conn.execute("SELECT ts, kind, data FROM events ORDER BY id ASC").fetchall()
            else:
                rows = self._conn.execute("SELECT ts, kind, data FROM events WHERE kind = ? ORDER BY id ASC", (kind,)).fetchall()
        for ts, k, data in rows:
            yield Event(ts=ts, kind=k, data=json.loads(data))

    def close(self) -> None:
        with self._lock:
            self._conn.close()
