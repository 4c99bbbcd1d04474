"""Tests for the storage drivers."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import pytest

from doclink.connection import Connection, DatabaseConnectionError
from doclink.drivers import MemoryDriver, PymongoDriver, _HeartbeatListener
from doclink.query import QueryHelpers
from doclink.types import ConnectionState, DriverEvent, QueryError

SCHEMA = {"employee": {"name": "String", "score": "Number"}}


class _FakeCursor:
    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents
        self.sort_spec: Any = None

    def sort(self, spec: Any) -> "_FakeCursor":
        self.sort_spec = spec
        return self

    def __aiter__(self) -> "_FakeCursor":
        self._iter = iter(self._documents)
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration from None


class _FakeCollection:
    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self.documents = documents
        self.find_one_calls: list[tuple[dict[str, Any], Any]] = []
        self.replaced: list[dict[str, Any]] = []

    async def find_one(self, filter: dict[str, Any], sort: Any = None) -> dict[str, Any] | None:
        self.find_one_calls.append((filter, sort))
        return self.documents[0] if self.documents else None

    def find(self, filter: dict[str, Any]) -> _FakeCursor:
        return _FakeCursor(self.documents)

    async def replace_one(self, filter: dict[str, Any], document: dict[str, Any], upsert: bool = False) -> None:
        self.replaced.append(document)


class _FakeAdmin:
    def __init__(self, error: Exception | None) -> None:
        self._error = error

    async def command(self, name: str) -> dict[str, int]:
        if self._error is not None:
            raise self._error
        return {"ok": 1}


class _FakeClient:
    instances: list["_FakeClient"] = []
    ping_error: Exception | None = None
    collection = _FakeCollection([])

    def __init__(self, credentials: str, **kwargs: Any) -> None:
        self.credentials = credentials
        self.kwargs = kwargs
        self.admin = _FakeAdmin(type(self).ping_error)
        self.closed = False
        type(self).instances.append(self)

    def get_default_database(self, default: str | None = None) -> dict[str, _FakeCollection]:
        return {"employee": type(self).collection}

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch) -> type[_FakeClient]:
    monkeypatch.setattr(_FakeClient, "instances", [])
    monkeypatch.setattr(_FakeClient, "ping_error", None)
    monkeypatch.setattr(_FakeClient, "collection", _FakeCollection([]))
    monkeypatch.setattr("doclink.drivers.AsyncMongoClient", _FakeClient)
    return _FakeClient


def _wait_for(connection: Connection) -> BaseException | None:
    done = threading.Event()
    outcome: list[BaseException | None] = []

    def _callback(error: BaseException | None, _connection: Connection) -> None:
        outcome.append(error)
        done.set()

    connection.connect(_callback)
    assert done.wait(timeout=2)
    return outcome[0]


def test_memory_handle_unsubscribe_stops_delivery() -> None:
    handle = MemoryDriver(auto_open=False).connect("memory://local")
    seen: list[str] = []
    unsubscribe = handle.subscribe(DriverEvent.OPEN, lambda: seen.append("open"))

    handle.emit(DriverEvent.OPEN)
    unsubscribe()
    handle.emit(DriverEvent.OPEN)

    assert seen == ["open"]
    assert handle.opened is True


def test_memory_handle_auto_open_emits_connected_then_open() -> None:
    handle = MemoryDriver().connect("memory://local")
    seen: list[str] = []
    handle.subscribe(DriverEvent.CONNECTED, lambda: seen.append("connected"))
    handle.subscribe(DriverEvent.OPEN, lambda: seen.append("open"))

    handle.open()

    assert seen == ["connected", "open"]


def test_memory_handle_rejects_queries_until_open() -> None:
    handle = MemoryDriver(auto_open=False).connect("memory://local")

    with pytest.raises(QueryError):
        handle.collection("employee")


def test_pymongo_driver_opens_and_queries(fake_client: type[_FakeClient]) -> None:
    fake_client.collection = _FakeCollection([{"_id": 1, "name": "alice", "score": 9}])
    driver = PymongoDriver(database="app", server_selection_timeout_ms=250)
    connection = Connection("mongodb://localhost/app", SCHEMA, driver=driver)
    try:
        assert _wait_for(connection) is None
        assert connection.state is ConnectionState.CONNECTED
        client = fake_client.instances[0]
        assert client.credentials == "mongodb://localhost/app"
        assert client.kwargs["serverSelectionTimeoutMS"] == 250

        done = threading.Event()
        results: list[tuple[Any, ...]] = []

        def _callback(*args: Any) -> None:
            results.append(args)
            done.set()

        QueryHelpers(connection).get_max("employee", "score", {"name": "alice"}, _callback)
        assert done.wait(timeout=2)
        error, value, document = results[0]
        assert error is None
        assert value == 9
        assert document["name"] == "alice"
        assert fake_client.collection.find_one_calls[0] == ({"name": "alice"}, [("score", -1)])
    finally:
        driver.shutdown()


def test_pymongo_driver_counts_and_saves(fake_client: type[_FakeClient]) -> None:
    fake_client.collection = _FakeCollection([{"_id": 1, "name": "alice", "tags": ["a"]}, {"_id": 2, "name": "bob"}])
    driver = PymongoDriver()
    connection = Connection("mongodb://localhost/app", SCHEMA, driver=driver)
    helpers = QueryHelpers(connection)
    try:
        assert _wait_for(connection) is None
        counted = threading.Event()
        totals: list[Any] = []

        def _count_callback(error: BaseException | None, result: Any) -> None:
            totals.append(result)
            counted.set()

        helpers.count("employee", ["name"], {}, _count_callback)
        assert counted.wait(timeout=2)
        assert totals == [{"name": 2}]

        found = threading.Event()
        documents: list[Any] = []

        def _found(error: BaseException | None, document: Any) -> None:
            documents.append(document)
            found.set()

        connection.model("employee").find_one({"_id": 1}).exec(_found)
        assert found.wait(timeout=2)

        saved = threading.Event()
        helpers.push_reference(documents[0], "tags", "b", lambda error, doc: saved.set())
        assert saved.wait(timeout=2)
        assert fake_client.collection.replaced[-1]["tags"] == ["a", "b"]
    finally:
        driver.shutdown()


def test_pymongo_driver_reports_connection_errors(fake_client: type[_FakeClient]) -> None:
    fake_client.ping_error = RuntimeError("no server")
    driver = PymongoDriver()
    connection = Connection("mongodb://localhost/app", SCHEMA, driver=driver)
    try:
        error = _wait_for(connection)
        assert isinstance(error, DatabaseConnectionError)
        assert isinstance(error.__cause__, RuntimeError)
        assert connection.state is ConnectionState.ERRORED
        assert connection.is_connected() is False
    finally:
        driver.shutdown()


def test_pymongo_driver_closes_client_on_disconnect(fake_client: type[_FakeClient]) -> None:
    driver = PymongoDriver()
    connection = Connection("mongodb://localhost/app", SCHEMA, driver=driver)
    try:
        assert _wait_for(connection) is None
        closed = threading.Event()
        calls: list[object] = []

        def _closed(error: object) -> None:
            calls.append(error)
            closed.set()

        connection.disconnect(_closed)
        assert closed.wait(timeout=2)
        assert calls == [None]
        assert fake_client.instances[0].closed is True
    finally:
        driver.shutdown()


def test_pymongo_handle_closed_before_open_releases_client(fake_client: type[_FakeClient]) -> None:
    driver = PymongoDriver()
    try:
        handle = driver.connect("mongodb://localhost/app")
        opened: list[str] = []
        handle.subscribe(DriverEvent.OPEN, lambda: opened.append("open"))

        handle.close()
        handle.open()

        for _ in range(200):
            if fake_client.instances and fake_client.instances[0].closed:
                break
            time.sleep(0.01)
        assert fake_client.instances[0].closed is True
        assert opened == []
    finally:
        driver.shutdown()


def test_heartbeat_listener_emits_transitions_once() -> None:
    driver = PymongoDriver()
    try:
        handle = driver.connect("mongodb://localhost/app")
        seen: list[str] = []
        handle.subscribe(DriverEvent.CONNECTED, lambda: seen.append("connected"))
        handle.subscribe(DriverEvent.DISCONNECTED, lambda: seen.append("disconnected"))
        listener = _HeartbeatListener(handle)

        listener.succeeded(None)  # type: ignore[arg-type]
        listener.succeeded(None)  # type: ignore[arg-type]
        listener.failed(None)  # type: ignore[arg-type]

        assert seen == ["connected", "disconnected"]
    finally:
        driver.shutdown()


def test_pymongo_driver_set_debug_adjusts_logger() -> None:
    driver = PymongoDriver()
    logger = logging.getLogger("pymongo")
    previous = logger.level
    try:
        driver.set_debug(True)
        assert logger.level == logging.DEBUG
        assert driver.debug is True
        driver.set_debug(False)
        assert logger.level == logging.WARNING
    finally:
        logger.setLevel(previous)
        driver.shutdown()
