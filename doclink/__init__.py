"""Connection lifecycle and schema-agnostic query helpers for document stores."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import ConnectionOptions, DoclinkConfig, load_config
from .connection import Connection, DatabaseConnectionError
from .documents import Document, MemoryModel, PymongoModel, Query
from .drivers import MemoryDriver, MemoryHandle, PymongoDriver, PymongoHandle
from .handlers import HandlerQueue
from .models import ModelRegistry
from .objectid import (
    Identifier,
    RawValue,
    contains_object_id,
    is_object_id,
    new_object_id,
    object_id_array_to_string,
    to_object_id,
)
from .query import QueryHelpers
from .registry import ConnectionRegistry, generate_id
from .schema import JsonSchemaBuilder, SchemaBuildError
from .types import (
    ConnectionState,
    DoclinkError,
    DriverEvent,
    ModelRegistrationError,
    QueryError,
    UnknownCollectionError,
)

__all__ = [
    "Connection",
    "ConnectionOptions",
    "ConnectionRegistry",
    "ConnectionState",
    "DatabaseConnectionError",
    "DoclinkConfig",
    "DoclinkError",
    "Document",
    "DriverEvent",
    "HandlerQueue",
    "Identifier",
    "JsonSchemaBuilder",
    "MemoryDriver",
    "MemoryHandle",
    "MemoryModel",
    "ModelRegistrationError",
    "ModelRegistry",
    "PymongoDriver",
    "PymongoHandle",
    "PymongoModel",
    "Query",
    "QueryError",
    "QueryHelpers",
    "RawValue",
    "SchemaBuildError",
    "UnknownCollectionError",
    "contains_object_id",
    "generate_id",
    "is_object_id",
    "load_config",
    "new_object_id",
    "object_id_array_to_string",
    "to_object_id",
    "__version__",
]
