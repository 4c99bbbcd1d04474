"""Tests for the JSON schema builder."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

import pytest

from doclink.documents import MemoryModel
from doclink.models import ModelRegistry
from doclink.schema import JsonSchemaBuilder, SchemaBuildError


def _factory(name: str, definition: Mapping[str, Any]) -> MemoryModel:
    return MemoryModel(name, lambda: None, definition)


def _build(source: Any) -> tuple[BaseException | None, ModelRegistry | None]:
    outcome: list[tuple[BaseException | None, ModelRegistry | None]] = []
    JsonSchemaBuilder(_factory).build(source, lambda error, models: outcome.append((error, models)))
    return outcome[0]


def test_builds_models_from_mapping() -> None:
    error, models = _build({"employee": {"name": "String"}, "team": {}})

    assert error is None
    assert models is not None
    assert sorted(models) == ["employee", "team"]
    assert models["employee"].definition == {"name": "String"}


def test_builds_models_from_json_file(tmp_path: Path) -> None:
    schema_path = tmp_path / "schema.json"
    schema_path.write_text(json.dumps({"employee": {"login": {"username": "String"}}}))

    error, models = _build(str(schema_path))

    assert error is None
    assert models is not None and list(models) == ["employee"]


def test_reports_missing_files(tmp_path: Path) -> None:
    error, models = _build(tmp_path / "missing.json")

    assert isinstance(error, SchemaBuildError)
    assert models is None


def test_reports_invalid_json(tmp_path: Path) -> None:
    schema_path = tmp_path / "schema.json"
    schema_path.write_text("{not json")

    error, _ = _build(schema_path)

    assert isinstance(error, SchemaBuildError)


@pytest.mark.parametrize("source", [{}, {"employee": "String"}])
def test_rejects_bad_shapes(source: Any) -> None:
    error, _ = _build(source)

    assert isinstance(error, SchemaBuildError)


def test_rejects_non_object_files(tmp_path: Path) -> None:
    schema_path = tmp_path / "schema.json"
    schema_path.write_text("[1, 2]")

    error, _ = _build(schema_path)

    assert isinstance(error, SchemaBuildError)


def test_rejects_models_without_query_operations() -> None:
    builder = JsonSchemaBuilder(lambda name, definition: object())  # type: ignore[arg-type,return-value]

    with pytest.raises(SchemaBuildError):
        builder.build_registry({"employee": {}})
