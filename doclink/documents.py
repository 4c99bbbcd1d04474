"""Document, query and model handle implementations for the bundled drivers."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

from pymongo import ASCENDING, DESCENDING

from .objectid import new_object_id
from .types import QueryCallback, QueryError, SaveCallback

if TYPE_CHECKING:
    from .drivers import MemoryHandle, PymongoHandle

LOG = logging.getLogger(__name__)

SortSpec = list[tuple[str, int]]

_MISSING = object()


class Document(dict):
    """Mapping returned by queries that knows how to persist itself."""

    __slots__ = ("_model",)

    def __init__(self, data: Mapping[str, Any] | None = None, *, model: "CollectionModel | None" = None) -> None:
        super().__init__(data or {})
        self._model = model

    @property
    def model(self) -> "CollectionModel | None":
        return self._model

    def save(self, callback: SaveCallback | None = None) -> None:
        """Persist the document through the model that loaded it."""

        if self._model is None:
            error = QueryError("Document is not bound to a model and cannot be saved")
            if callback is None:
                raise error
            callback(error)
            return
        self._model.save(self, callback)


class Query:
    """Chainable, unexecuted query against a single model."""

    def __init__(self, model: "CollectionModel", filter: Mapping[str, Any] | None, *, single: bool) -> None:
        self.model = model
        self.filter: dict[str, Any] = dict(filter or {})
        self.single = single
        self.sort_spec: SortSpec = []

    def sort(self, spec: str | Mapping[str, int] | Sequence[tuple[str, int]]) -> "Query":
        """Append sort keys: ``"-field"``, ``{"field": -1}`` or ``[("field", -1)]``."""

        self.sort_spec.extend(normalize_sort(spec))
        return self

    def exec(self, callback: QueryCallback) -> None:
        """Run the query; ``callback(error, result)`` receives a document, ``None`` or a list."""

        self.model.execute(self, callback)

    def __repr__(self) -> str:
        kind = "find_one" if self.single else "find"
        return f"Query({self.model.name}.{kind}, filter={self.filter!r}, sort={self.sort_spec!r})"


def normalize_sort(spec: str | Mapping[str, int] | Sequence[tuple[str, int]]) -> SortSpec:
    if isinstance(spec, str):
        keys: SortSpec = []
        for token in spec.split():
            if token.startswith("-"):
                keys.append((token[1:], DESCENDING))
            elif token.startswith("+"):
                keys.append((token[1:], ASCENDING))
            else:
                keys.append((token, ASCENDING))
        return keys
    if isinstance(spec, Mapping):
        return [(str(field), DESCENDING if direction < 0 else ASCENDING) for field, direction in spec.items()]
    return [(str(field), DESCENDING if direction < 0 else ASCENDING) for field, direction in spec]


class CollectionModel:
    """Shared query construction for model handles."""

    def __init__(self, name: str, resolve_handle: Callable[[], Any], definition: Mapping[str, Any] | None = None) -> None:
        self.name = name
        self.definition: Mapping[str, Any] = definition or {}
        self._resolve_handle = resolve_handle

    def find_one(self, filter: Mapping[str, Any] | None = None) -> Query:
        return Query(self, filter, single=True)

    def find(self, filter: Mapping[str, Any] | None = None) -> Query:
        return Query(self, filter, single=False)

    def execute(self, query: Query, callback: QueryCallback) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def save(self, document: Document, callback: SaveCallback | None = None) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def _live_handle(self) -> Any:
        handle = self._resolve_handle()
        if handle is None:
            raise QueryError(f"Collection '{self.name}' has no live driver handle; connect first")
        return handle

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class PymongoModel(CollectionModel):
    """Model handle backed by ``pymongo.AsyncMongoClient``."""

    def execute(self, query: Query, callback: QueryCallback) -> None:
        try:
            handle: PymongoHandle = self._live_handle()
        except QueryError as exc:
            callback(exc, None)
            return
        handle.submit(self._run(handle, query), callback)

    def save(self, document: Document, callback: SaveCallback | None = None) -> None:
        try:
            handle: PymongoHandle = self._live_handle()
        except QueryError as exc:
            if callback is None:
                raise
            callback(exc)
            return

        def _done(error: BaseException | None, _result: Any) -> None:
            if error is not None:
                LOG.warning("Saving document in '%s' failed: %s", self.name, error)
            if callback is not None:
                callback(error)

        handle.submit(self._persist(handle, document), _done)

    async def _run(self, handle: "PymongoHandle", query: Query) -> Any:
        collection = handle.database[self.name]
        if query.single:
            raw = await collection.find_one(query.filter, sort=query.sort_spec or None)
            return None if raw is None else Document(raw, model=self)
        cursor = collection.find(query.filter)
        if query.sort_spec:
            cursor = cursor.sort(query.sort_spec)
        return [Document(raw, model=self) async for raw in cursor]

    async def _persist(self, handle: "PymongoHandle", document: Document) -> None:
        collection = handle.database[self.name]
        payload = dict(document)
        if "_id" not in payload:
            result = await collection.insert_one(payload)
            document["_id"] = result.inserted_id
            return
        await collection.replace_one({"_id": payload["_id"]}, payload, upsert=True)


class MemoryModel(CollectionModel):
    """Model handle over a :class:`~doclink.drivers.MemoryHandle`; runs in the calling turn."""

    def execute(self, query: Query, callback: QueryCallback) -> None:
        try:
            handle: MemoryHandle = self._live_handle()
            rows = handle.collection(self.name)
            matched = [row for row in rows if matches(row, query.filter)]
        except QueryError as exc:
            callback(exc, None)
            return
        ordered = sort_documents(matched, query.sort_spec)
        if query.single:
            result = Document(copy.deepcopy(ordered[0]), model=self) if ordered else None
        else:
            result = [Document(copy.deepcopy(row), model=self) for row in ordered]
        callback(None, result)

    def save(self, document: Document, callback: SaveCallback | None = None) -> None:
        try:
            handle: MemoryHandle = self._live_handle()
            rows = handle.collection(self.name)
        except QueryError as exc:
            if callback is None:
                raise
            callback(exc)
            return
        if "_id" not in document:
            document["_id"] = new_object_id()
        stored = copy.deepcopy(dict(document))
        for index, row in enumerate(rows):
            if row.get("_id") == stored["_id"]:
                rows[index] = stored
                break
        else:
            rows.append(stored)
        if callback is not None:
            callback(None)


def get_path(document: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path, returning a private sentinel when absent."""

    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def matches(document: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    return all(_match_field(get_path(document, path), condition) for path, condition in filter.items())


def _match_field(value: Any, condition: Any) -> bool:
    if isinstance(condition, Mapping) and condition and all(str(key).startswith("$") for key in condition):
        return all(_match_operator(value, op, operand) for op, operand in condition.items())
    return _equals(value, condition)


def _equals(value: Any, expected: Any) -> bool:
    if value is _MISSING:
        return False
    if isinstance(value, list) and not isinstance(expected, list):
        return expected in value
    return value == expected


def _match_operator(value: Any, op: str, operand: Any) -> bool:
    if op == "$eq":
        return _equals(value, operand)
    if op == "$ne":
        return not _equals(value, operand)
    if op == "$in":
        return any(_equals(value, item) for item in operand)
    if op == "$nin":
        return not any(_equals(value, item) for item in operand)
    if op == "$exists":
        return (value is not _MISSING) == bool(operand)
    if value is _MISSING or value is None:
        return False
    try:
        if op == "$gt":
            return value > operand
        if op == "$gte":
            return value >= operand
        if op == "$lt":
            return value < operand
        if op == "$lte":
            return value <= operand
    except TypeError:
        return False
    raise QueryError(f"Unsupported query operator '{op}' for the in-memory driver")


def sort_documents(rows: Iterable[Mapping[str, Any]], spec: SortSpec) -> list[Mapping[str, Any]]:
    ordered = list(rows)
    for field, direction in reversed(spec):
        ordered.sort(key=lambda row: _sort_key(get_path(row, field)), reverse=direction == DESCENDING)
    return ordered


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is _MISSING or value is None:
        return (0, 0)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, str(value))


__all__ = [
    "CollectionModel",
    "Document",
    "MemoryModel",
    "PymongoModel",
    "Query",
    "get_path",
    "matches",
    "normalize_sort",
    "sort_documents",
]
