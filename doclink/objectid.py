"""Identifier validation and conversion helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from bson import ObjectId

_OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


@dataclass(frozen=True, slots=True)
class Identifier:
    """A value recognised as a store identifier."""

    value: ObjectId


@dataclass(frozen=True, slots=True)
class RawValue:
    """Any value that is not a store identifier."""

    value: Any


IdentifierLike = Identifier | RawValue


def is_object_id(value: object) -> bool:
    """Return True when ``value`` is a 24 character hexadecimal string."""

    return isinstance(value, str) and _OBJECT_ID_PATTERN.match(value) is not None


def to_object_id(value: str | ObjectId) -> ObjectId:
    """Convert a hex string to an ``ObjectId`` (invalid input raises ``bson.errors.InvalidId``)."""

    return ObjectId(value)


def new_object_id() -> ObjectId:
    """Return a fresh identifier for a document that has not been saved yet."""

    return ObjectId()


def object_id_array_to_string(values: Iterable[object]) -> list[str]:
    return [str(value) for value in values]


def classify(value: object) -> IdentifierLike:
    """Tag ``value`` as an identifier or a raw value."""

    if isinstance(value, ObjectId):
        return Identifier(value)
    if is_object_id(value):
        return Identifier(ObjectId(value))  # type: ignore[arg-type]
    return RawValue(value)


def identifiers_equal(left: IdentifierLike, right: IdentifierLike) -> bool:
    """Compare two tagged values.

    Identifiers are compared with ``ObjectId`` equality. Raw values use a single
    coercion rule: a number equals a string when the string parses to that
    number, otherwise plain ``==`` applies. Booleans count as the numbers 0 and
    1 and a blank string parses to 0. An identifier never equals a raw
    value because every valid hex string is already tagged as an identifier.
    """

    if isinstance(left, Identifier) and isinstance(right, Identifier):
        return left.value == right.value
    if isinstance(left, RawValue) and isinstance(right, RawValue):
        return _loose_equals(left.value, right.value)
    return False


def contains_object_id(collection: Iterable[object], target: object, property: str = "_id") -> bool:
    """Return True if ``collection`` holds ``target``.

    Elements may be raw identifiers, records exposing ``property`` (mappings or
    plain objects), or a mix of both.
    """

    wanted = classify(target)
    for item in collection:
        tagged = classify(item)
        if isinstance(tagged, RawValue) and _is_record(item):
            tagged = classify(_read_property(item, property))
        if identifiers_equal(tagged, wanted):
            return True
    return False


def _is_record(item: object) -> bool:
    if item is None or isinstance(item, (str, bytes, int, float, bool)):
        return False
    return True


def _read_property(item: object, property: str) -> object:
    if isinstance(item, Mapping):
        return item.get(property)
    return getattr(item, property, None)


def _loose_equals(left: object, right: object) -> bool:
    if _is_number(left) and isinstance(right, str):
        return _parses_to(right, left)  # type: ignore[arg-type]
    if _is_number(right) and isinstance(left, str):
        return _parses_to(left, right)  # type: ignore[arg-type]
    return left == right


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float))


def _parses_to(text: str, number: int | float) -> bool:
    text = text.strip()
    if not text:
        return number == 0
    try:
        return float(text) == number
    except ValueError:
        return False


__all__ = [
    "Identifier",
    "IdentifierLike",
    "RawValue",
    "classify",
    "contains_object_id",
    "identifiers_equal",
    "is_object_id",
    "new_object_id",
    "object_id_array_to_string",
    "to_object_id",
]
