"""Storage drivers that open handles and emit connection lifecycle events."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Coroutine, Mapping, Sequence

from pymongo import AsyncMongoClient, monitoring

from .documents import MemoryModel, PymongoModel
from .types import DriverEvent, EventListener, QueryCallback, QueryError, SaveCallback, Unsubscribe

LOG = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]


class _EventSource:
    """Minimal listener bookkeeping shared by the driver handles."""

    def __init__(self) -> None:
        self._listeners: dict[DriverEvent, list[EventListener]] = {}
        self._listener_lock = threading.Lock()

    def subscribe(self, event: DriverEvent, listener: EventListener) -> Unsubscribe:
        """Subscribe to a lifecycle event; returns an unsubscribe handle."""

        event = DriverEvent(event)
        with self._listener_lock:
            self._listeners.setdefault(event, []).append(listener)

        def _unsubscribe() -> None:
            with self._listener_lock:
                listeners = self._listeners.get(event, [])
                if listener in listeners:
                    listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: DriverEvent, *args: Any) -> None:
        with self._listener_lock:
            listeners = tuple(self._listeners.get(event, ()))
        for listener in listeners:
            listener(*args)


class _HeartbeatListener(monitoring.ServerHeartbeatListener):
    """Translates pymongo heartbeat monitoring into connected/disconnected events."""

    def __init__(self, handle: "PymongoHandle") -> None:
        self._handle = handle
        self._reachable: bool | None = None

    def started(self, event: monitoring.ServerHeartbeatStartedEvent) -> None:
        return None

    def succeeded(self, event: monitoring.ServerHeartbeatSucceededEvent) -> None:
        self._transition(True)

    def failed(self, event: monitoring.ServerHeartbeatFailedEvent) -> None:
        self._transition(False)

    def _transition(self, reachable: bool) -> None:
        if self._reachable is reachable:
            return
        self._reachable = reachable
        self._handle._emit(DriverEvent.CONNECTED if reachable else DriverEvent.DISCONNECTED)


class PymongoHandle(_EventSource):
    """Handle wrapping one ``AsyncMongoClient`` on the driver's event loop."""

    def __init__(self, driver: "PymongoDriver", credentials: str) -> None:
        super().__init__()
        self._driver = driver
        self._credentials = credentials
        self._client: Any = None
        self._database: Any = None
        self._closed = False

    @property
    def database(self) -> Any:
        if self._database is None:
            raise QueryError("Driver handle is not open")
        return self._database

    def open(self) -> None:
        """Start connecting; emits ``open`` after a successful ping, ``error`` otherwise."""

        self._driver.submit(self._open(), self._after_open)

    def submit(self, coro: Coroutine[Any, Any, Any], callback: QueryCallback) -> None:
        self._driver.submit(coro, callback)

    def close(self, callback: SaveCallback | None = None) -> None:
        self._closed = True
        self._close_client(callback)

    def _close_client(self, callback: SaveCallback | None = None) -> None:
        client, self._client, self._database = self._client, None, None
        if client is None:
            if callback is not None:
                callback(None)
            return

        def _closed(error: BaseException | None, _result: Any) -> None:
            if error is not None:
                LOG.warning("Closing MongoDB client failed: %s", error)
            if callback is not None:
                callback(None)

        self._driver.submit(client.close(), _closed)

    async def _open(self) -> None:
        client = self._driver.client_factory(
            self._credentials,
            event_listeners=[_HeartbeatListener(self)],
            serverSelectionTimeoutMS=self._driver.server_selection_timeout_ms,
        )
        self._client = client
        await client.admin.command("ping")
        self._database = client.get_default_database(self._driver.database_name)

    def _after_open(self, error: BaseException | None, _result: Any) -> None:
        if self._closed:
            LOG.debug("Handle closed while opening; releasing its client")
            self._close_client()
            return
        if error is not None:
            self._emit(DriverEvent.ERROR, error)
            return
        self._emit(DriverEvent.OPEN)


class PymongoDriver:
    """Driver backed by pymongo's asyncio client running on a background loop thread."""

    def __init__(
        self,
        *,
        database: str | None = None,
        server_selection_timeout_ms: int = 5000,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.database_name = database
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.client_factory: ClientFactory = client_factory or AsyncMongoClient
        self._debug = False
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name="doclink-pymongo-driver",
            daemon=True,
        )
        self._loop_thread.start()

    @property
    def debug(self) -> bool:
        return self._debug

    def connect(self, credentials: str) -> PymongoHandle:
        return PymongoHandle(self, credentials)

    def set_debug(self, flag: bool) -> None:
        """Toggle pymongo's own command/connection logging."""

        self._debug = bool(flag)
        logging.getLogger("pymongo").setLevel(logging.DEBUG if self._debug else logging.WARNING)

    def create_model(
        self,
        name: str,
        resolve_handle: Callable[[], Any],
        definition: Mapping[str, Any] | None = None,
    ) -> PymongoModel:
        return PymongoModel(name, resolve_handle, definition)

    def submit(self, coro: Coroutine[Any, Any, Any], callback: QueryCallback) -> None:
        """Run ``coro`` on the loop thread and report ``callback(error, result)`` from it."""

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)

        def _done(done: Future[Any]) -> None:
            try:
                result = done.result()
            except Exception as exc:
                callback(exc, None)
                return
            callback(None, result)

        future.add_done_callback(_done)

    def shutdown(self) -> None:
        """Stop the background event loop."""

        if not self._loop.is_running():  # pragma: no cover
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=1)

    def __del__(self) -> None:  # pragma: no cover - best effort cleanup
        try:
            self.shutdown()
        except Exception:
            pass


class MemoryHandle(_EventSource):
    """In-process handle over the collections held by a :class:`MemoryDriver`."""

    def __init__(
        self,
        store: dict[str, list[dict[str, Any]]],
        credentials: str,
        *,
        auto_open: bool = True,
        fail_with: BaseException | None = None,
    ) -> None:
        super().__init__()
        self.credentials = credentials
        self._store = store
        self._auto_open = auto_open
        self._fail_with = fail_with
        self.opened = False
        self.closed = False

    def open(self) -> None:
        if not self._auto_open:
            return
        if self._fail_with is not None:
            self.fail(self._fail_with)
            return
        self.emit(DriverEvent.CONNECTED)
        self.emit(DriverEvent.OPEN)

    def emit(self, event: DriverEvent, *args: Any) -> None:
        """Push a lifecycle event to listeners (testing helper)."""

        event = DriverEvent(event)
        if event is DriverEvent.OPEN:
            self.opened = True
        elif event is DriverEvent.ERROR:
            self.opened = False
        self._emit(event, *args)

    def fail(self, error: BaseException) -> None:
        self.emit(DriverEvent.ERROR, error)

    def collection(self, name: str) -> list[dict[str, Any]]:
        if self.closed or not self.opened:
            raise QueryError("Driver handle is not open")
        return self._store.setdefault(name, [])

    def close(self, callback: SaveCallback | None = None) -> None:
        self.closed = True
        self.opened = False
        if callback is not None:
            callback(None)


class MemoryDriver:
    """Driver keeping collections in process memory, for demos and tests."""

    def __init__(
        self,
        collections: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
        *,
        auto_open: bool = True,
        fail_with: BaseException | None = None,
    ) -> None:
        self._store: dict[str, list[dict[str, Any]]] = {
            name: [dict(document) for document in documents]
            for name, documents in (collections or {}).items()
        }
        self.auto_open = auto_open
        self.fail_with = fail_with
        self.debug = False
        self.handles: list[MemoryHandle] = []

    @property
    def last_handle(self) -> MemoryHandle | None:
        return self.handles[-1] if self.handles else None

    def connect(self, credentials: str) -> MemoryHandle:
        handle = MemoryHandle(self._store, credentials, auto_open=self.auto_open, fail_with=self.fail_with)
        self.handles.append(handle)
        return handle

    def set_debug(self, flag: bool) -> None:
        self.debug = bool(flag)

    def create_model(
        self,
        name: str,
        resolve_handle: Callable[[], Any],
        definition: Mapping[str, Any] | None = None,
    ) -> MemoryModel:
        return MemoryModel(name, resolve_handle, definition)

    def insert(self, name: str, *documents: Mapping[str, Any]) -> None:
        """Seed documents into a collection (testing helper)."""

        self._store.setdefault(name, []).extend(dict(document) for document in documents)

    def documents(self, name: str) -> list[dict[str, Any]]:
        return self._store.get(name, [])


__all__ = [
    "MemoryDriver",
    "MemoryHandle",
    "PymongoDriver",
    "PymongoHandle",
]
