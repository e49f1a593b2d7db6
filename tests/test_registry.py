"""Unit tests for the tag registry (pools backed by in-memory connections)."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
from pydantic import BaseModel

import tagsql.registry as registry_mod
from tagsql import (
    ConfigError,
    ConnectionPool,
    DbConfig,
    DecodeError,
    ExecResult,
    NotFoundError,
    Registry,
    get_registry,
    many,
    one,
)
from tests.utils.fake_db import FakeConnection, FakeCursor


class Which(BaseModel):
    db: str = ""
    thread: int = 0


def _cfg(tag: str, **overrides: object) -> DbConfig:
    data: dict[str, object] = {
        "type": "mysql",
        "tag": tag,
        "dbname": f"db_{tag}",
        "ip": "127.0.0.1",
        "port": 3306,
        "username": "u",
        "password": "secret",
        "max_idle_conns": 4,
    }
    data.update(overrides)
    return DbConfig.model_validate(data)


@pytest.fixture
def opened() -> list[FakeConnection]:
    """Patch the connector: each connection answers with its own database name."""
    conns: list[FakeConnection] = []
    lock = threading.Lock()

    def _connect(kwargs: dict, *, dialer: object = None) -> FakeConnection:
        database = kwargs["database"]
        conn = FakeConnection(
            name=database,
            cursor_factory=lambda: FakeCursor(
                ["db", "thread"], [(database, threading.get_ident())]
            ),
        )
        with lock:
            conns.append(conn)
        return conn

    with patch("tagsql.core.pool.manager.connect", side_effect=_connect):
        yield conns


def test_query_unknown_tag_raises_not_found(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a")])
    with pytest.raises(NotFoundError) as exc:
        reg.query("missing-tag", one(Which()), "SELECT 1")
    assert exc.value.tag == "missing-tag"
    assert opened == []


def test_exec_unknown_tag_raises_not_found(opened: list[FakeConnection]) -> None:
    with pytest.raises(NotFoundError):
        Registry().exec("missing-tag", "DELETE FROM t")
    assert opened == []


def test_handle_returns_pool_or_none(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a"), _cfg("b")])
    assert reg.handle("a").tag == "a"
    assert reg.handle("b").config.db_name == "db_b"
    assert reg.handle("zzz") is None
    assert reg.tags() == ("a", "b")


def test_init_accepts_config_document(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init({"sqldb": [{"type": "mysql", "tag": "x", "dbname": "d", "ip": "h"}]})
    assert reg.tags() == ("x",)


def test_init_pool_settings(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a", max_open_conns=0, max_idle_conns=0), _cfg("b", max_open_conns=7)])
    a = reg.handle("a").stats()
    b = reg.handle("b").stats()
    assert (a["max_open"], a["max_idle"]) == (0, 0)
    assert (b["max_open"], b["max_idle"]) == (7, 4)


def test_init_partial_failure_keeps_earlier_tags(opened: list[FakeConnection]) -> None:
    reg = Registry()
    with pytest.raises(ConfigError):
        reg.init([_cfg("a"), _cfg("b", type="postgres"), _cfg("c")])
    assert reg.tags() == ("a",)
    assert reg.handle("a").closed is False
    rec = Which()
    reg.query("a", one(rec), "SELECT DATABASE() AS db")
    assert rec.db == "db_a"


def test_init_registers_entries_before_a_malformed_one(opened: list[FakeConnection]) -> None:
    reg = Registry()
    entries = [
        _cfg("a").model_dump(by_alias=True),
        {"type": "mysql", "tag": "b", "port": "not-a-port"},
        _cfg("c").model_dump(by_alias=True),
    ]
    with pytest.raises(ConfigError):
        reg.init(entries)
    assert reg.tags() == ("a",)
    rec = Which()
    reg.query("a", one(rec), "SELECT DATABASE() AS db")
    assert rec.db == "db_a"

    other = Registry()
    with pytest.raises(ConfigError):
        other.init({"sqldb": entries})
    assert other.tags() == ("a",)


def test_atomic_init_rolls_back_on_malformed_entry(opened: list[FakeConnection]) -> None:
    reg = Registry()
    with pytest.raises(ConfigError):
        reg.init([_cfg("a"), {"type": "mysql", "tag": ""}], atomic=True)
    assert reg.tags() == ()


def test_atomic_init_rolls_back(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("keep")])
    with pytest.raises(ConfigError):
        reg.init([_cfg("a"), _cfg("b", type="postgres")], atomic=True)
    assert reg.tags() == ("keep",)


def test_duplicate_tag_replaces_and_closes_previous(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a")])
    first = reg.handle("a")
    reg.init([_cfg("a", dbname="other")])
    assert first.closed is True
    assert reg.handle("a").config.db_name == "other"


def test_dialer_is_scoped_to_init_call(opened: list[FakeConnection]) -> None:
    dialer = MagicMock()
    reg = Registry()
    reg.init([_cfg("a")], dialer=dialer)
    reg.init([_cfg("b")])
    assert reg.handle("a")._dialer is dialer
    assert reg.handle("b")._dialer is None


def test_query_one_and_many(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a")])

    rec = Which()
    dest = reg.query("a", one(rec), "SELECT DATABASE() AS db")
    assert dest.record is rec
    assert rec.db == "db_a"

    rows = reg.query("a", many(Which), "SELECT DATABASE() AS db").rows
    assert [r.db for r in rows] == ["db_a"]


def test_fetch_one_and_fetch_all(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a")])
    found = reg.fetch_one("a", Which, "SELECT DATABASE() AS db")
    assert found is not None and found.db == "db_a"
    assert [r.db for r in reg.fetch_all("a", Which, "SELECT DATABASE() AS db")] == ["db_a"]

    conn = reg.handle("a").get_connection()
    conn.queue(FakeCursor(["db"], []))
    reg.handle("a").release(conn)
    assert reg.fetch_one("a", Which, "SELECT db FROM t WHERE 0") is None


def test_fetch_one_refuses_required_field_without_column(opened: list[FakeConnection]) -> None:
    class Named(BaseModel):
        db: str
        label: str

    reg = Registry()
    reg.init([_cfg("a")])
    with pytest.raises(DecodeError, match="label"):
        reg.fetch_one("a", Named, "SELECT DATABASE() AS db")


def test_exec_delegates_to_pool(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a")])
    pool = reg.handle("a")
    conn = pool.get_connection()
    cur = FakeCursor(rowcount=2, lastrowid=0)
    conn.queue(cur)
    pool.release(conn)

    assert reg.exec("a", "DELETE FROM t WHERE id IN (%s, %s)", 1, 2) == ExecResult(2, 0)
    assert cur.executed == [("DELETE FROM t WHERE id IN (%s, %s)", (1, 2))]


def test_concurrent_queries_see_own_tag(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a", max_open_conns=4), _cfg("b", max_open_conns=4)])

    def _run(i: int) -> tuple[str, str]:
        tag = "a" if i % 2 == 0 else "b"
        rec = Which()
        reg.query(tag, one(rec), "SELECT DATABASE() AS db")
        return tag, rec.db

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(_run, range(100)))

    assert len(results) == 100
    for tag, db in results:
        assert db == f"db_{tag}"
    assert {c.name for c in opened} == {"db_a", "db_b"}
    assert sum(1 for c in opened if c.name == "db_a") <= 4
    assert sum(1 for c in opened if c.name == "db_b") <= 4


def test_concurrent_init_while_querying(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("base")])
    stop = threading.Event()
    failures: list[BaseException] = []

    def _reader() -> None:
        while not stop.is_set():
            try:
                rec = Which()
                reg.query("base", one(rec), "SELECT DATABASE() AS db")
                assert rec.db == "db_base"
                reg.handle("t0")
                reg.tags()
            except BaseException as e:
                failures.append(e)
                return

    readers = [threading.Thread(target=_reader) for _ in range(4)]
    for t in readers:
        t.start()
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: reg.init([_cfg(f"t{i}")]), range(32)))
    stop.set()
    for t in readers:
        t.join(5)

    assert failures == []
    assert set(reg.tags()) == {"base", *(f"t{i}" for i in range(32))}
    pools = [reg.handle(f"t{i}") for i in range(32)]
    assert len({id(p) for p in pools}) == 32
    assert not any(p.closed for p in pools)


def test_concurrent_init_of_one_tag_keeps_one_live_pool(opened: list[FakeConnection]) -> None:
    reg = Registry()
    created: list[ConnectionPool] = []
    lock = threading.Lock()

    def _make(*args: object, **kwargs: object) -> ConnectionPool:
        pool = ConnectionPool(*args, **kwargs)
        with lock:
            created.append(pool)
        return pool

    with patch.object(registry_mod, "ConnectionPool", side_effect=_make):
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: reg.init([_cfg("dup", dbname=f"d{i}")]), range(24)))

    assert reg.tags() == ("dup",)
    live = [p for p in created if not p.closed]
    assert len(created) == 24
    assert live == [reg.handle("dup")]


def test_teardown_closes_each_pool_once(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a"), _cfg("b"), _cfg("c")])
    reg.handle("b").close()  # closed externally
    mocks = {}
    for tag in ("a", "b", "c"):
        pool = reg.handle(tag)
        pool.close = MagicMock(wraps=pool.close)
        mocks[tag] = pool.close

    reg.teardown()

    for tag, m in mocks.items():
        m.assert_called_once_with()
    assert reg.tags() == ()
    reg.teardown()  # empty registry: no-op


def test_teardown_is_best_effort(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a"), _cfg("b")])
    a, b = reg.handle("a"), reg.handle("b")
    a.close = MagicMock(side_effect=RuntimeError("boom"))

    reg.teardown()

    a.close.assert_called_once()
    assert b.closed is True


def test_teardown_closes_idle_connections(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a")])
    reg.query("a", one(Which()), "SELECT DATABASE() AS db")
    assert opened[0].close_calls == 0
    reg.teardown()
    assert opened[0].close_calls == 1


def test_registry_context_manager(opened: list[FakeConnection]) -> None:
    with Registry() as reg:
        reg.init([_cfg("a")])
        pool = reg.handle("a")
    assert pool.closed is True


def test_ping_and_stats(opened: list[FakeConnection]) -> None:
    reg = Registry()
    reg.init([_cfg("a")])
    assert reg.ping("a") is True
    assert reg.stats()["a"]["idle"] == 1
    with pytest.raises(NotFoundError):
        reg.ping("nope")


def test_get_registry_singleton_from_config_file(
    opened: list[FakeConnection], tmp_path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = tmp_path / "sqldb.json"
    path.write_text('{"sqldb": [{"type": "mysql", "tag": "main", "dbname": "d", "ip": "h"}]}')
    monkeypatch.setattr(registry_mod, "_registry", None)
    monkeypatch.setattr(registry_mod.settings, "SQLDB_CONFIG_FILE", str(path))

    reg = get_registry()

    assert reg is get_registry()
    assert reg.tags() == ("main",)
    reg.teardown()
