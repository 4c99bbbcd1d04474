"""Contract primitives shared between the connection core and its collaborators."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .connection import Connection

ConnectionHandler = Callable[[BaseException | None, "Connection"], Any]
QueryCallback = Callable[[BaseException | None, Any], Any]
SaveCallback = Callable[[BaseException | None], Any]
EventListener = Callable[..., Any]
Unsubscribe = Callable[[], None]


class ConnectionState(str, Enum):
    """Lifecycle states of a :class:`~doclink.connection.Connection`."""

    UNINITIALIZED = "uninitialized"
    SCHEMA_BUILDING = "schema_building"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERRORED = "errored"


class DriverEvent(str, Enum):
    """Lifecycle events emitted by a driver handle."""

    ERROR = "error"
    OPEN = "open"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@runtime_checkable
class QueryHandle(Protocol):
    """Unexecuted query returned by model handles."""

    def sort(self, spec: Any) -> "QueryHandle": ...

    def exec(self, callback: QueryCallback) -> None: ...


@runtime_checkable
class ModelHandle(Protocol):
    """Collection-scoped accessor produced by a schema builder."""

    name: str

    def find_one(self, filter: Mapping[str, Any] | None = None) -> QueryHandle: ...

    def find(self, filter: Mapping[str, Any] | None = None) -> QueryHandle: ...


class DriverHandle(Protocol):
    """Live (or opening) connection owned by a :class:`Connection`."""

    def subscribe(self, event: DriverEvent, listener: EventListener) -> Unsubscribe: ...

    def open(self) -> None: ...

    def close(self, callback: SaveCallback | None = None) -> None: ...


class StorageDriver(Protocol):
    """Driver collaborator: opens handles and builds collection models."""

    def connect(self, credentials: str) -> DriverHandle: ...

    def set_debug(self, flag: bool) -> None: ...

    def create_model(
        self,
        name: str,
        resolve_handle: Callable[[], DriverHandle | None],
        definition: Mapping[str, Any] | None = None,
    ) -> ModelHandle: ...


class SchemaBuilder(Protocol):
    """Schema collaborator: turns a declarative schema into model handles."""

    def build(
        self,
        schema_source: Any,
        callback: Callable[[BaseException | None, Mapping[str, ModelHandle] | None], Any],
    ) -> None: ...


class DoclinkError(RuntimeError):
    """Base error for the package."""


class QueryError(DoclinkError):
    """Raised when a query cannot be issued at all (no live driver handle)."""


class ModelRegistrationError(DoclinkError):
    """Raised when a model handle lacks the operations the query layer needs."""


class UnknownCollectionError(QueryError):
    """Raised when a collection name has no registered model."""


__all__ = [
    "ConnectionHandler",
    "ConnectionState",
    "DoclinkError",
    "DriverEvent",
    "DriverHandle",
    "EventListener",
    "ModelHandle",
    "ModelRegistrationError",
    "QueryCallback",
    "QueryError",
    "QueryHandle",
    "SaveCallback",
    "SchemaBuilder",
    "StorageDriver",
    "UnknownCollectionError",
    "Unsubscribe",
]
