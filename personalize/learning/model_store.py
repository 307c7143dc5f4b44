"""
Model Store for per-user UserModel snapshots

Holds the current snapshot for each user in memory, backed by the user_models
table. Readers always get a complete snapshot: replace() persists the new
model first and only then swaps the reference under the lock, so a failed
write leaves the previous snapshot in place.

Usage:
    from personalize.learning.model_store import ModelStore

    store = ModelStore()
    model = store.get("alice")          # neutral model on first read
    with store.build_lock("alice"):
        store.replace(new_model)

Dependencies:
    - sqlite3 (stdlib)
    - threading (stdlib)
"""

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from personalize.errors import ModelUnavailable
from personalize.learning import DB_PATH
from personalize.learning.models import UserModel
from personalize.logging_config import get_logger

logger = get_logger(__name__)


class ModelStore:
    """Thread-safe, persisted map of user_id -> UserModel.

    Args:
        db_path: SQLite file holding the user_models table.
        timeout: Seconds to wait on a locked database or a busy build lock.
    """

    def __init__(self, db_path: Path | str | None = None, timeout: float = 5.0):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.timeout = timeout
        self._models: dict[str, UserModel] = {}
        self._lock = threading.Lock()
        self._build_locks: dict[str, threading.Lock] = {}

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("""
            CREATE TABLE IF NOT EXISTS user_models (
                user_id TEXT PRIMARY KEY,
                model_data TEXT NOT NULL,
                samples_used INTEGER DEFAULT 0,
                confidence REAL DEFAULT 0,
                version INTEGER DEFAULT 1,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
        return conn

    def get(self, user_id: str) -> UserModel:
        """Current snapshot for a user.

        Falls back to the persisted row, then to a fresh neutral model. A
        storage failure is logged and answered with the neutral model, which
        is not cached so the next read retries storage.
        """
        with self._lock:
            model = self._models.get(user_id)
        if model is not None:
            return model

        try:
            loaded = self._load(user_id)
        except ModelUnavailable as e:
            logger.warning("model_store_read_failed", user_id=user_id, error=str(e))
            return UserModel.neutral(user_id)

        with self._lock:
            # Another thread may have swapped in a newer model meanwhile
            current = self._models.get(user_id)
            if current is not None:
                return current
            model = loaded or UserModel.neutral(user_id)
            self._models[user_id] = model
        return model

    def _load(self, user_id: str) -> UserModel | None:
        try:
            conn = self.get_connection()
            try:
                row = conn.execute(
                    "SELECT model_data FROM user_models WHERE user_id = ?", (user_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ModelUnavailable(f"could not read model for {user_id}: {e}") from e

        if row is None:
            return None
        try:
            return UserModel.from_dict(json.loads(row["model_data"]))
        except (ValueError, KeyError, TypeError) as e:
            raise ModelUnavailable(f"stored model for {user_id} is unreadable: {e}") from e

    def replace(self, model: UserModel) -> int:
        """Persist a new snapshot, then make it current. Returns the new version."""
        try:
            conn = self.get_connection()
            try:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO user_models
                        (user_id, model_data, samples_used, confidence, version, updated_at)
                        VALUES (?, ?, ?, ?, 1, ?)
                        ON CONFLICT(user_id) DO UPDATE SET
                            model_data = excluded.model_data,
                            samples_used = excluded.samples_used,
                            confidence = excluded.confidence,
                            version = user_models.version + 1,
                            updated_at = excluded.updated_at
                        """,
                        (
                            model.user_id,
                            json.dumps(model.to_dict()),
                            model.samples_used,
                            model.overall_confidence,
                            datetime.now().isoformat(),
                        ),
                    )
                    version = conn.execute(
                        "SELECT version FROM user_models WHERE user_id = ?", (model.user_id,)
                    ).fetchone()["version"]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ModelUnavailable(f"could not persist model for {model.user_id}: {e}") from e

        with self._lock:
            self._models[model.user_id] = model

        logger.info(
            "model_replaced",
            user_id=model.user_id,
            version=version,
            samples=model.samples_used,
            confidence=model.overall_confidence,
        )
        return version

    def version(self, user_id: str) -> int:
        """Persisted version for a user, 0 when none has been stored."""
        try:
            conn = self.get_connection()
            try:
                row = conn.execute(
                    "SELECT version FROM user_models WHERE user_id = ?", (user_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ModelUnavailable(f"could not read model version for {user_id}: {e}") from e
        return row["version"] if row else 0

    @contextmanager
    def build_lock(self, user_id: str) -> Iterator[None]:
        """Serialise model builds for one user. Raises ModelUnavailable on timeout."""
        with self._lock:
            lock = self._build_locks.setdefault(user_id, threading.Lock())

        if not lock.acquire(timeout=self.timeout):
            raise ModelUnavailable(f"timed out waiting for model build lock for {user_id}")
        try:
            yield
        finally:
            lock.release()

    def invalidate(self, user_id: str) -> None:
        """Drop the cached snapshot so the next get() reloads from storage."""
        with self._lock:
            self._models.pop(user_id, None)

    def delete(self, user_id: str) -> None:
        """Remove the persisted and cached model for a user, and its idle build lock."""
        try:
            conn = self.get_connection()
            try:
                with conn:
                    conn.execute("DELETE FROM user_models WHERE user_id = ?", (user_id,))
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise ModelUnavailable(f"could not delete model for {user_id}: {e}") from e
        self.invalidate(user_id)
        with self._lock:
            lock = self._build_locks.get(user_id)
            if lock is not None and not lock.locked():
                del self._build_locks[user_id]

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {"cached_users": len(self._models), "db_path": str(self.db_path)}
