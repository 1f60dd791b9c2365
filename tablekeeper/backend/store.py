"""Key-value persistence interfaces and implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
import logging
import time
from typing import Any, Callable, Protocol, TypeVar

from tablekeeper.backend.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyValueStore(Protocol):
    backend_name: str

    def get(self, key: str) -> Any | None:
        """Return the JSON value stored under key, or None when absent or expired."""

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Replace the value under key, optionally expiring after ttl_seconds."""

    def delete(self, key: str) -> None:
        """Remove key; missing keys are ignored."""

    def add_to_set(self, key: str, member: str) -> None:
        """Add member to the set stored under key."""

    def set_members(self, key: str) -> list[str]:
        """Return the members of the set under key in sorted order."""


@dataclass
class InMemoryKeyValueStore:
    clock: Callable[[], float] = time.time
    backend_name: str = field(default="memory", init=False)

    def __post_init__(self) -> None:
        self._values: dict[str, tuple[str, float | None]] = {}
        self._sets: dict[str, set[str]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            self._values.pop(key, None)
            return None
        # Values are kept serialized so callers never share mutable state with the store.
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = self.clock() + ttl_seconds if ttl_seconds is not None else None
        self._values[key] = (json.dumps(value), expires_at)

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def add_to_set(self, key: str, member: str) -> None:
        self._sets.setdefault(key, set()).add(member)

    def set_members(self, key: str) -> list[str]:
        return sorted(self._sets.get(key, set()))


@dataclass
class PostgresKeyValueStore:
    database_url: str
    backend_name: str = field(default="postgres", init=False)

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def _run(self, operation: Callable[[Any], T]) -> T:
        import psycopg

        try:
            with self._connect() as conn:
                result = operation(conn)
                conn.commit()
                return result
        except psycopg.Error as exc:
            logger.exception("Key-value operation failed")
            raise StorageError("Storage backend unavailable") from exc

    def get(self, key: str) -> Any | None:
        def operation(conn: Any) -> Any | None:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT value::text
                    FROM kv_entries
                    WHERE key = %s
                      AND (expires_at IS NULL OR expires_at > now())
                    """,
                    (key,),
                )
                row = cur.fetchone()
            if row is None:
                return None
            return json.loads(row[0])

        return self._run(operation)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)

        def operation(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO kv_entries (key, value, expires_at, updated_at)
                    VALUES (%s, %s::jsonb, %s, now())
                    ON CONFLICT (key) DO UPDATE
                    SET value = EXCLUDED.value, expires_at = EXCLUDED.expires_at, updated_at = now()
                    """,
                    (key, json.dumps(value), expires_at),
                )

        self._run(operation)

    def delete(self, key: str) -> None:
        def operation(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM kv_entries WHERE key = %s", (key,))

        self._run(operation)

    def add_to_set(self, key: str, member: str) -> None:
        def operation(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO kv_set_members (key, member)
                    VALUES (%s, %s)
                    ON CONFLICT (key, member) DO NOTHING
                    """,
                    (key, member),
                )

        self._run(operation)

    def set_members(self, key: str) -> list[str]:
        def operation(conn: Any) -> list[str]:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT member FROM kv_set_members WHERE key = %s ORDER BY member",
                    (key,),
                )
                rows = cur.fetchall()
            return [row[0] for row in rows]

        return self._run(operation)


def create_store(database_url: str | None) -> KeyValueStore:
    if database_url:
        return PostgresKeyValueStore(database_url=database_url)
    return InMemoryKeyValueStore()
