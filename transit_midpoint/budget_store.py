"""
Key/value persistence for provider budget state.
"""
from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
from typing import Dict, Optional


class BudgetStore:
    """Minimal key/value surface the BudgetLedger persists through."""

    def get(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set(self, key: str, value: dict) -> None:
        raise NotImplementedError


class InMemoryBudgetStore(BudgetStore):
    def __init__(self, initial: Optional[Dict[str, dict]] = None):
        self._data: Dict[str, dict] = {k: dict(v) for k, v in (initial or {}).items()}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            value = self._data.get(key)
            return dict(value) if value is not None else None

    def set(self, key: str, value: dict) -> None:
        with self._lock:
            self._data[key] = dict(value)


class SqliteBudgetStore(BudgetStore):
    """Budget state survives process restarts in a small SQLite table."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        directory = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(directory, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS budget_state (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )
            self._conn.commit()

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value_json FROM budget_state WHERE key = ?", (key,)
            ).fetchone()
        if not row:
            return None
        try:
            value = json.loads(row[0])
        except ValueError:
            return None
        return value if isinstance(value, dict) else None

    def set(self, key: str, value: dict) -> None:
        payload = json.dumps(value)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO budget_state (key, value_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json,
                                               updated_at = excluded.updated_at
                """,
                (key, payload, int(time.time())),
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
