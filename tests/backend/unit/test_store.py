import pytest

from tablekeeper.backend.errors import StorageError
from tablekeeper.backend.store import InMemoryKeyValueStore, PostgresKeyValueStore, create_store


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_create_store_returns_postgres_store_when_database_url_present() -> None:
    store = create_store(database_url="postgresql://local")

    assert isinstance(store, PostgresKeyValueStore)
    assert store.backend_name == "postgres"


def test_create_store_returns_in_memory_store_when_database_url_missing() -> None:
    store = create_store(database_url=None)

    assert isinstance(store, InMemoryKeyValueStore)
    assert store.backend_name == "memory"


def test_in_memory_store_round_trips_json_values_without_sharing_them() -> None:
    store = InMemoryKeyValueStore()
    value = {"npcs": [{"name": "Archivist"}]}

    store.set("k", value)
    value["npcs"].append({"name": "Mutated"})
    loaded = store.get("k")

    assert loaded == {"npcs": [{"name": "Archivist"}]}
    loaded["npcs"].clear()
    assert store.get("k") == {"npcs": [{"name": "Archivist"}]}


def test_in_memory_store_expires_values_after_ttl() -> None:
    clock = _Clock()
    store = InMemoryKeyValueStore(clock=clock)

    store.set("session", {"username": "aria"}, ttl_seconds=60)
    clock.now += 59
    assert store.get("session") == {"username": "aria"}

    clock.now += 1
    assert store.get("session") is None


def test_in_memory_store_delete_and_sets() -> None:
    store = InMemoryKeyValueStore()
    store.set("k", 1)
    store.delete("k")
    store.delete("missing")

    store.add_to_set("users", "brom")
    store.add_to_set("users", "aria")
    store.add_to_set("users", "aria")

    assert store.get("k") is None
    assert store.set_members("users") == ["aria", "brom"]
    assert store.set_members("nobody") == []


class _FakeCursor:
    def __init__(self, rows: list[tuple]) -> None:
        self.commands: list[tuple[str, tuple]] = []
        self._rows = rows

    def execute(self, sql: str, params: tuple) -> None:
        self.commands.append((sql, params))

    def fetchone(self) -> tuple | None:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> list[tuple]:
        return list(self._rows)

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _FakeConnection:
    def __init__(self, rows: list[tuple]) -> None:
        self.cursor_instance = _FakeCursor(rows)
        self.committed = False

    def cursor(self) -> _FakeCursor:
        return self.cursor_instance

    def commit(self) -> None:
        self.committed = True

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _PostgresStoreWithFakeConnection(PostgresKeyValueStore):
    def __init__(self, rows: list[tuple] | None = None) -> None:
        super().__init__(database_url="postgresql://local")
        self.fake_connection = _FakeConnection(rows or [])

    def _connect(self) -> _FakeConnection:
        return self.fake_connection


def test_postgres_set_upserts_json_value() -> None:
    pytest.importorskip("psycopg")
    store = _PostgresStoreWithFakeConnection()

    store.set("tablekeeper:npcs:default", {"npcs": []}, ttl_seconds=None)

    commands = store.fake_connection.cursor_instance.commands
    assert store.fake_connection.committed is True
    assert len(commands) == 1
    assert "INSERT INTO kv_entries" in commands[0][0]
    assert "ON CONFLICT (key) DO UPDATE" in commands[0][0]
    assert commands[0][1] == ("tablekeeper:npcs:default", '{"npcs": []}', None)


def test_postgres_set_with_ttl_passes_expiry() -> None:
    pytest.importorskip("psycopg")
    store = _PostgresStoreWithFakeConnection()

    store.set("session", {"username": "aria"}, ttl_seconds=60)

    expires_at = store.fake_connection.cursor_instance.commands[0][1][2]
    assert expires_at is not None
    assert expires_at.tzinfo is not None


def test_postgres_get_decodes_stored_text() -> None:
    pytest.importorskip("psycopg")
    store = _PostgresStoreWithFakeConnection(rows=[('{"unlocked": ["stonecross"]}',)])

    value = store.get("tablekeeper:map-unlocks:default")

    assert value == {"unlocked": ["stonecross"]}
    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert "expires_at IS NULL OR expires_at > now()" in sql
    assert params == ("tablekeeper:map-unlocks:default",)


def test_postgres_get_returns_none_for_missing_key() -> None:
    pytest.importorskip("psycopg")
    store = _PostgresStoreWithFakeConnection(rows=[])

    assert store.get("missing") is None


def test_postgres_set_members_reads_sorted_members() -> None:
    pytest.importorskip("psycopg")
    store = _PostgresStoreWithFakeConnection(rows=[("aria",), ("brom",)])

    assert store.set_members("tablekeeper:users") == ["aria", "brom"]
    assert "ORDER BY member" in store.fake_connection.cursor_instance.commands[0][0]


def test_postgres_driver_errors_become_storage_errors() -> None:
    psycopg = pytest.importorskip("psycopg")

    class _BrokenStore(PostgresKeyValueStore):
        def _connect(self):
            raise psycopg.OperationalError("connection refused")

    store = _BrokenStore(database_url="postgresql://local")

    with pytest.raises(StorageError) as excinfo:
        store.get("anything")

    assert excinfo.value.status_code == 503
