"""Schema builder that turns a JSON collection description into model handles."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Mapping

from .models import ModelRegistry
from .types import DoclinkError, ModelHandle, ModelRegistrationError

LOG = logging.getLogger(__name__)

ModelFactory = Callable[[str, Mapping[str, Any]], ModelHandle]
BuildCallback = Callable[[BaseException | None, ModelRegistry | None], Any]


class SchemaBuildError(DoclinkError):
    """Raised when a schema source cannot be turned into model handles."""


class JsonSchemaBuilder:
    """Builds a :class:`ModelRegistry` from a JSON file path or an in-memory mapping.

    The top-level keys of the schema are collection names and each value is the
    collection's field description. Field descriptions are handed to the model
    factory untouched.
    """

    def __init__(self, model_factory: ModelFactory) -> None:
        self._model_factory = model_factory

    def build(self, schema_source: str | Path | Mapping[str, Any], callback: BuildCallback) -> None:
        """Build models and report ``callback(error, registry)``; errors are ``SchemaBuildError``."""

        try:
            registry = self.build_registry(schema_source)
        except SchemaBuildError as exc:
            LOG.error("Schema build failed: %s", exc)
            callback(exc, None)
            return
        callback(None, registry)

    def build_registry(self, schema_source: str | Path | Mapping[str, Any]) -> ModelRegistry:
        description = self._load(schema_source)
        registry = ModelRegistry()
        for name, definition in description.items():
            if not isinstance(definition, Mapping):
                raise SchemaBuildError(f"Collection '{name}' must be described by an object")
            try:
                registry.register(str(name), self._model_factory(str(name), definition))
            except ModelRegistrationError as exc:
                raise SchemaBuildError(str(exc)) from exc
        if not registry:
            raise SchemaBuildError("Schema does not describe any collections")
        LOG.debug("Built models for collections: %s", ", ".join(registry))
        return registry

    @staticmethod
    def _load(schema_source: str | Path | Mapping[str, Any]) -> Mapping[str, Any]:
        if isinstance(schema_source, Mapping):
            return schema_source
        if schema_source is None:
            raise SchemaBuildError("No schema source provided")
        path = Path(schema_source)
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except OSError as exc:
            raise SchemaBuildError(f"Failed to read schema file '{path}': {exc}") from exc
        except json.JSONDecodeError as exc:
            raise SchemaBuildError(f"Schema file '{path}' is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise SchemaBuildError(f"Schema file '{path}' must contain a JSON object")
        return raw


__all__ = ["BuildCallback", "JsonSchemaBuilder", "ModelFactory", "SchemaBuildError"]
