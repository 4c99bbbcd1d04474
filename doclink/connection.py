"""Connection lifecycle state machine over a storage driver and a model registry."""

from __future__ import annotations

import asyncio
import logging
import threading
from functools import partial
from pathlib import Path
from typing import Any, Mapping

from .config import ConnectionOptions
from .drivers import PymongoDriver
from .handlers import HandlerQueue
from .models import ModelRegistry
from .registry import generate_id
from .schema import JsonSchemaBuilder, SchemaBuildError
from .types import (
    ConnectionHandler,
    ConnectionState,
    DoclinkError,
    DriverEvent,
    DriverHandle,
    ModelHandle,
    ModelRegistrationError,
    SaveCallback,
    SchemaBuilder,
    StorageDriver,
    Unsubscribe,
)

LOG = logging.getLogger(__name__)

SchemaSource = str | Path | Mapping[str, Any]


class DatabaseConnectionError(DoclinkError):
    """Delivered to pending handlers when the driver reports a connection error."""


class Connection:
    """One keyed connection: driver handle, model registry and pending handlers.

    Handlers and connect callbacks are called as ``handler(error, connection)``
    where ``error`` is ``None`` on success. Each handler fires exactly once, on
    the first terminal transition (open or error) after it was queued.

    Only the driver's ``open`` and ``error`` events resolve pending handlers.
    The lower level ``connected``/``disconnected`` events only flip the flag
    reported by :meth:`is_connected`.
    """

    def __init__(
        self,
        credentials: str,
        schema: SchemaSource,
        *,
        id: str | None = None,
        debug: bool = False,
        driver: StorageDriver | None = None,
        schema_builder: SchemaBuilder | None = None,
    ) -> None:
        self.id = id or generate_id()
        self.credentials = credentials
        self.schema_source: SchemaSource = schema
        self.models = ModelRegistry()
        self._debug = bool(debug)
        self._driver: StorageDriver = driver or PymongoDriver()
        self._schema_builder: SchemaBuilder = schema_builder or JsonSchemaBuilder(self._build_model)
        self._handle: DriverHandle | None = None
        self._subscriptions: list[Unsubscribe] = []
        self._pending: HandlerQueue[Connection] = HandlerQueue()
        self._state = ConnectionState.UNINITIALIZED
        self._lock = threading.RLock()
        self._connected = False

    @classmethod
    def from_options(
        cls,
        options: ConnectionOptions | Mapping[str, Any],
        *,
        driver: StorageDriver | None = None,
        schema_builder: SchemaBuilder | None = None,
    ) -> "Connection":
        """Build a connection from ``{id?, schema, credentials, debug?}`` options."""

        if not isinstance(options, ConnectionOptions):
            options = ConnectionOptions.model_validate(options)
        return cls(
            options.credentials,
            options.schema_source,
            id=options.id,
            debug=options.debug,
            driver=driver,
            schema_builder=schema_builder,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def debug(self) -> bool:
        return self._debug

    @property
    def handle(self) -> DriverHandle | None:
        return self._handle

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_connected(self) -> bool:
        return self._connected

    def connect(self, callback: ConnectionHandler | None = None) -> None:
        """Connect, building the schema first if no models are registered.

        While an attempt is outstanding further calls only queue their callback,
        so every caller observes the same outcome.
        """

        with self._lock:
            state = self._state
            if state is not ConnectionState.CONNECTED:
                if callback is not None:
                    self._pending.push(callback)
                if state in (ConnectionState.SCHEMA_BUILDING, ConnectionState.CONNECTING):
                    return
                building = not self.models
                if building:
                    self._state = ConnectionState.SCHEMA_BUILDING
                else:
                    self._state = ConnectionState.CONNECTING
                    stale, handle = self._attach_handle()
        if state is ConnectionState.CONNECTED:
            if callback is not None:
                callback(None, self)
            return
        if building:
            self._build_then_connect(state)
            return

        LOG.debug("Connection '%s' connecting", self.id)
        if self._debug:
            self._driver.set_debug(True)
        if stale is not None:
            stale.close()
        handle.open()

    def disconnect(self, callback: SaveCallback | None = None) -> None:
        """Tear down the driver handle; ``callback(None)`` runs once it is closed.

        Teardown errors are logged by the driver and never reach the callback.
        Models are kept so that a later :meth:`connect` skips the schema build.
        """

        with self._lock:
            handle = self._handle
            self._release_subscriptions()
            self._handle = None
            self._state = ConnectionState.DISCONNECTED
            self._connected = False
        LOG.debug("Connection '%s' disconnected", self.id)

        def _closed(_error: BaseException | None = None) -> None:
            if callback is not None:
                callback(None)

        if handle is None:
            _closed()
            return
        handle.close(_closed)

    def on_connected(self, fn: ConnectionHandler) -> None:
        """Run ``fn`` now if connected with nothing pending, otherwise on the next transition."""

        with self._lock:
            ready = self._state is ConnectionState.CONNECTED and not self._pending
            if not ready:
                self._pending.push(fn)
        if ready:
            fn(None, self)

    def rebuild_schema(
        self,
        schema_source: SchemaSource | None = None,
        callback: ConnectionHandler | None = None,
    ) -> None:
        """Rebuild the model registry; the current one is kept if the build fails."""

        source = self.schema_source if schema_source is None else schema_source

        def _built(error: BaseException | None, models: Mapping[str, ModelHandle] | None) -> None:
            registry = ModelRegistry()
            if error is None:
                try:
                    registry = models if isinstance(models, ModelRegistry) else ModelRegistry(models)
                except ModelRegistrationError as exc:
                    error = SchemaBuildError(str(exc))
                    error.__cause__ = exc
            if error is None and not registry:
                error = SchemaBuildError("Schema builder returned no models")
            if error is not None:
                if callback is None:
                    raise error
                callback(error, self)
                return
            self.models = registry
            self.schema_source = source
            LOG.debug("Connection '%s' loaded %d model(s)", self.id, len(registry))
            if callback is not None:
                callback(None, self)

        self._schema_builder.build(source, _built)

    def set_debug(self, flag: bool) -> None:
        self._debug = bool(flag)
        self._driver.set_debug(self._debug)

    def model(self, name: str) -> ModelHandle:
        """Return the model handle for a collection."""

        return self.models.get_model(name)

    async def wait_connected(self) -> "Connection":
        """Coroutine form of :meth:`connect`; raises the error handlers would receive."""

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Connection] = loop.create_future()

        def _settle(error: BaseException | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(self)

        def _resolve(error: BaseException | None, _connection: Connection) -> None:
            loop.call_soon_threadsafe(_settle, error)

        self.connect(_resolve)
        return await future

    def _build_then_connect(self, previous: ConnectionState) -> None:
        def _built(error: BaseException | None, _connection: Connection) -> None:
            with self._lock:
                self._state = previous
                batch = self._pending.take() if error is not None else []
            if error is None:
                self.connect()
                return
            self._fire(batch, error)

        self.rebuild_schema(self.schema_source, _built)

    def _attach_handle(self) -> tuple[DriverHandle | None, DriverHandle]:
        stale = self._handle
        self._release_subscriptions()
        handle = self._driver.connect(self.credentials)
        self._handle = handle
        self._subscriptions = [
            handle.subscribe(DriverEvent.ERROR, partial(self._on_error, handle)),
            handle.subscribe(DriverEvent.OPEN, partial(self._on_open, handle)),
            handle.subscribe(DriverEvent.CONNECTED, partial(self._on_link, handle, True)),
            handle.subscribe(DriverEvent.DISCONNECTED, partial(self._on_link, handle, False)),
        ]
        return stale, handle

    def _release_subscriptions(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for unsubscribe in subscriptions:
            unsubscribe()

    def _on_error(self, handle: DriverHandle, error: BaseException | None = None) -> None:
        with self._lock:
            if handle is not self._handle or self._state is ConnectionState.ERRORED:
                return
            self._state = ConnectionState.ERRORED
            self._connected = False
            batch = self._pending.take()
        LOG.error("Database error on connection '%s': %s", self.id, error)
        if isinstance(error, DatabaseConnectionError):
            failure = error
        else:
            failure = DatabaseConnectionError(f"Connection '{self.id}' failed: {error}")
            failure.__cause__ = error
        self._fire(batch, failure)

    def _on_open(self, handle: DriverHandle) -> None:
        with self._lock:
            if handle is not self._handle:
                return
            self._state = ConnectionState.CONNECTED
            self._connected = True
            batch = self._pending.take()
        LOG.debug("Connection '%s' open", self.id)
        self._fire(batch, None)

    def _on_link(self, handle: DriverHandle, connected: bool) -> None:
        with self._lock:
            if handle is self._handle:
                self._connected = connected

    def _fire(self, batch: list[ConnectionHandler], error: BaseException | None) -> None:
        for handler in batch:
            handler(error, self)

    def _current_handle(self) -> DriverHandle | None:
        return self._handle

    def _build_model(self, name: str, definition: Mapping[str, Any]) -> ModelHandle:
        return self._driver.create_model(name, self._current_handle, definition)

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, state={self._state.value!r})"


__all__ = ["Connection", "DatabaseConnectionError", "SchemaSource"]
