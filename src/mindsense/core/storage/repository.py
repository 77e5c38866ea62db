"""State repository: key-value access to the coaching state store.

Each coaching entity (metrics, session history, experiments, ...) is stored
as one JSON document under a stable, versioned key. When a FieldEncryptor is
configured the document is Fernet-encrypted before it reaches SQLite.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from mindsense.core.storage.database import StateDatabase
from mindsense.core.storage.encryption import EncryptionError, FieldEncryptor

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when a stored payload cannot be decrypted or parsed."""


class StateRepository:
    """Key-value repository over the ``kv_store`` and ``repair_log`` tables.

    ``get`` distinguishes a missing key (returns ``None``) from a key whose
    payload is present but undecodable (raises :class:`RepositoryError`).
    ``None`` values are never stored; ``put(key, None)`` deletes the key.

    Usage::

        db = StateDatabase(":memory:")
        db.initialize()
        repo = StateRepository(db, FieldEncryptor(key="..."))

        repo.put("demo.metrics.v1", {"load": 50, "readiness": 74, "consistency": 78})
        repo.get("demo.metrics.v1")
    """

    def __init__(self, database: StateDatabase, encryptor: FieldEncryptor | None = None) -> None:
        self._db = database
        self._enc = encryptor

    @property
    def encrypted(self) -> bool:
        return self._enc is not None

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Key-value access
    # ------------------------------------------------------------------

    def get_raw(self, key: str) -> tuple[str, bool] | None:
        """Return ``(payload, encrypted)`` exactly as stored, or None."""
        with self._db.lock:
            row = self._db.connection.execute(
                "SELECT payload, encrypted FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return row["payload"], bool(row["encrypted"])

    def get(self, key: str) -> Any:
        """Load and decode the value stored under ``key``.

        Returns:
            The decoded JSON value, or None when the key is absent.

        Raises:
            RepositoryError: If the payload is present but cannot be
                decrypted or parsed.
        """
        raw = self.get_raw(key)
        if raw is None:
            return None
        payload, encrypted = raw
        return self._decode(key, payload, encrypted)

    def _decode(self, key: str, payload: str, encrypted: bool) -> Any:
        if encrypted:
            if self._enc is None:
                raise RepositoryError(f"Value for {key!r} is encrypted but no key is configured")
            try:
                return self._enc.decrypt(payload)
            except EncryptionError as exc:
                raise RepositoryError(f"Value for {key!r} could not be decrypted: {exc}") from exc
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise RepositoryError(f"Value for {key!r} is not valid JSON: {exc}") from exc

    def put(self, key: str, value: Any) -> None:
        """Serialize and store ``value`` under ``key`` (last write wins)."""
        if value is None:
            self.delete(key)
            return
        if self._enc is not None:
            payload = self._enc.encrypt(value)
        else:
            payload = json.dumps(value, separators=(",", ":"))
        with self._db.lock:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO kv_store (key, payload, encrypted, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       payload = excluded.payload,
                       encrypted = excluded.encrypted,
                       updated_at = excluded.updated_at""",
                (key, payload, 1 if self._enc is not None else 0, self._now_iso()),
            )
            conn.commit()
        logger.debug("Stored %s (%d bytes)", key, len(payload))

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if a row was deleted."""
        with self._db.lock:
            conn = self._db.connection
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        return cursor.rowcount > 0

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``. Returns the row count."""
        with self._db.lock:
            conn = self._db.connection
            cursor = conn.execute(
                "DELETE FROM kv_store WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            )
            conn.commit()
        if cursor.rowcount:
            logger.info("Deleted %d keys with prefix %r", cursor.rowcount, prefix)
        return cursor.rowcount

    def keys(self) -> list[str]:
        """Return all stored keys, sorted."""
        with self._db.lock:
            rows = self._db.connection.execute(
                "SELECT key FROM kv_store ORDER BY key"
            ).fetchall()
        return [row["key"] for row in rows]

    # ------------------------------------------------------------------
    # Repair log
    # ------------------------------------------------------------------

    def log_repair(self, key: str, message: str) -> str:
        """Record that ``key`` was replaced by a fallback value."""
        repair_id = str(uuid.uuid4())
        with self._db.lock:
            conn = self._db.connection
            conn.execute(
                "INSERT INTO repair_log (id, key, message, detected_at) VALUES (?, ?, ?, ?)",
                (repair_id, key, message, self._now_iso()),
            )
            conn.commit()
        return repair_id

    def repair_history(self, *, limit: int = 50) -> list[dict[str, Any]]:
        """Return recorded repairs, newest first."""
        with self._db.lock:
            rows = self._db.connection.execute(
                "SELECT * FROM repair_log ORDER BY detected_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [dict(row) for row in rows]
