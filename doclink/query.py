"""Collection-agnostic query helpers layered over a connection's models."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Mapping, MutableMapping, Sequence

from .objectid import new_object_id
from .types import QueryCallback, QueryHandle

if TYPE_CHECKING:
    from bson import ObjectId

    from .connection import Connection

SOFT_DELETE_FIELD = "deleted.isDeleted"

ExtremeCallback = Callable[[BaseException | None, Any, Any], Any]
ReferenceCallback = Callable[[BaseException | None, Any], Any]


class QueryHelpers:
    """Generic lookups and aggregations against ``connection.models``."""

    def __init__(self, connection: "Connection") -> None:
        self._connection = connection

    @property
    def connection(self) -> "Connection":
        return self._connection

    def get_by_id(self, collection: str, id: Any, callback: QueryCallback) -> None:
        """Fetch one non-deleted document by ``_id``; the driver result is passed through."""

        query = self._connection.model(collection).find_one({"_id": id, SOFT_DELETE_FIELD: False})
        query.exec(callback)

    find_by_id = get_by_id

    def build_max_query(self, collection: str, field_name: str, conditions: Mapping[str, Any] | None = None) -> QueryHandle:
        """Single-document query sorted descending on ``field_name``."""

        return self._extreme_query(collection, field_name, conditions, descending=True)

    def build_min_query(self, collection: str, field_name: str, conditions: Mapping[str, Any] | None = None) -> QueryHandle:
        return self._extreme_query(collection, field_name, conditions, descending=False)

    def fetch_max(
        self,
        collection: str,
        field_name: str,
        conditions: Mapping[str, Any] | None,
        callback: ExtremeCallback,
    ) -> None:
        """Run the max query and call back ``(error, value, document)``."""

        self._run_extreme(self.build_max_query(collection, field_name, conditions), field_name, callback)

    def fetch_min(
        self,
        collection: str,
        field_name: str,
        conditions: Mapping[str, Any] | None,
        callback: ExtremeCallback,
    ) -> None:
        self._run_extreme(self.build_min_query(collection, field_name, conditions), field_name, callback)

    def get_max(
        self,
        collection: str,
        field_name: str,
        conditions: Mapping[str, Any] | None = None,
        callback: ExtremeCallback | None = None,
    ) -> QueryHandle | None:
        """Without a callback return the unexecuted query, otherwise execute it."""

        if callback is None:
            return self.build_max_query(collection, field_name, conditions)
        self.fetch_max(collection, field_name, conditions, callback)
        return None

    def get_min(
        self,
        collection: str,
        field_name: str,
        conditions: Mapping[str, Any] | None = None,
        callback: ExtremeCallback | None = None,
    ) -> QueryHandle | None:
        if callback is None:
            return self.build_min_query(collection, field_name, conditions)
        self.fetch_min(collection, field_name, conditions, callback)
        return None

    find_max = get_max
    find_min = get_min

    def count(
        self,
        collection: str,
        fields: str | Sequence[str] | None,
        conditions: Mapping[str, Any] | None,
        callback: QueryCallback,
    ) -> None:
        """Count matching documents, or accumulate the given fields over them.

        With falsy ``fields`` the callback receives the number of matching
        documents. Otherwise it receives ``{field: total}`` where numeric values
        are summed and string values add one each; other values are ignored.
        Every matching document is loaded into memory in both modes.
        """

        count_documents = not fields
        if isinstance(fields, str):
            fields = [fields]
        totals: dict[str, int | float] = {} if count_documents else {name: 0 for name in fields}

        def _counted(error: BaseException | None, documents: Any) -> None:
            if error is not None:
                callback(error, None)
                return
            documents = documents or []
            if count_documents:
                callback(None, len(documents))
                return
            for document in documents:
                for name in totals:
                    value = document.get(name)
                    if isinstance(value, bool):
                        continue
                    if isinstance(value, (int, float)):
                        totals[name] += value
                    elif isinstance(value, str):
                        totals[name] += 1
            callback(None, totals)

        self._connection.model(collection).find(conditions or {}).exec(_counted)

    def push_reference(
        self,
        doc: MutableMapping[str, Any],
        field_name: str,
        value: Any,
        callback: ReferenceCallback | None = None,
    ) -> None:
        """Append ``value`` to a list field (or overwrite a scalar one) and save ``doc``."""

        current = doc.get(field_name)
        if isinstance(current, list):
            current.append(value)
        else:
            doc[field_name] = value

        def _saved(error: BaseException | None) -> None:
            if callback is not None:
                callback(error, doc)

        doc.save(_saved)  # type: ignore[attr-defined]

    @staticmethod
    def new_object_id() -> "ObjectId":
        return new_object_id()

    def _extreme_query(
        self,
        collection: str,
        field_name: str,
        conditions: Mapping[str, Any] | None,
        *,
        descending: bool,
    ) -> QueryHandle:
        query = self._connection.model(collection).find_one(conditions or {})
        return query.sort(f"-{field_name}" if descending else f"+{field_name}")

    @staticmethod
    def _run_extreme(query: QueryHandle, field_name: str, callback: ExtremeCallback) -> None:
        def _done(error: BaseException | None, document: Any) -> None:
            value = document.get(field_name) if error is None and document else None
            callback(error, value, document)

        query.exec(_done)


__all__ = ["QueryHelpers", "SOFT_DELETE_FIELD"]
