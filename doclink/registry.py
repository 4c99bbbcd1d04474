"""Registry of named connections."""

from __future__ import annotations

import hashlib
import logging
import random
import time
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping

from .config import ConnectionOptions

if TYPE_CHECKING:
    from .connection import Connection
    from .types import SchemaBuilder, StorageDriver

LOG = logging.getLogger(__name__)


def generate_id() -> str:
    """Hash a high-resolution timestamp mixed with random bits into a hex id."""

    seed = f"{time.time_ns()}:{time.perf_counter_ns()}:{random.getrandbits(64)}"
    return hashlib.sha1(seed.encode("ascii")).hexdigest()


class ConnectionRegistry:
    """Holds connections by id; pass one instance to whatever needs lookups."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    generate_id = staticmethod(generate_id)

    def register(self, id: str, connection: "Connection") -> None:
        """Store ``connection`` under ``id``, replacing any previous entry."""

        if id in self._connections:
            LOG.debug("Replacing connection registered as '%s'", id)
        self._connections[id] = connection

    def use(self, id: str) -> "Connection | None":
        """Return the connection registered as ``id``, or ``None``."""

        return self._connections.get(id)

    def unregister(self, id: str) -> "Connection | None":
        return self._connections.pop(id, None)

    def create(
        self,
        options: ConnectionOptions | Mapping[str, Any],
        *,
        driver: "StorageDriver | None" = None,
        schema_builder: "SchemaBuilder | None" = None,
    ) -> "Connection":
        """Build a connection from options and register it under its id."""

        from .connection import Connection

        connection = Connection.from_options(options, driver=driver, schema_builder=schema_builder)
        self.register(connection.id, connection)
        return connection

    def ids(self) -> tuple[str, ...]:
        return tuple(self._connections)

    def disconnect_all(self, callback: Callable[[BaseException | None], Any] | None = None) -> None:
        """Disconnect every registered connection; ``callback(None)`` once all are closed."""

        remaining = len(self._connections)
        if remaining == 0:
            if callback is not None:
                callback(None)
            return

        def _closed(_error: BaseException | None) -> None:
            nonlocal remaining
            remaining -= 1
            if remaining == 0 and callback is not None:
                callback(None)

        for connection in tuple(self._connections.values()):
            connection.disconnect(_closed)

    def __contains__(self, id: object) -> bool:
        return id in self._connections

    def __iter__(self) -> Iterator["Connection"]:
        return iter(tuple(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)


__all__ = ["ConnectionRegistry", "generate_id"]
