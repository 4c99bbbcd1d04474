"""Typed registry of collection model handles."""

from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from .types import ModelHandle, ModelRegistrationError, UnknownCollectionError

REQUIRED_OPERATIONS = ("find", "find_one")


class ModelRegistry(Mapping[str, ModelHandle]):
    """Maps collection names to model handles, validated on registration."""

    def __init__(self, models: Mapping[str, ModelHandle] | None = None) -> None:
        self._models: dict[str, ModelHandle] = {}
        if models:
            self.register_many(models.items())

    def register(self, name: str, model: ModelHandle) -> None:
        """Register a model handle under ``name``."""

        if not name:
            raise ModelRegistrationError("Collection name must be a non-empty string")
        missing = [op for op in REQUIRED_OPERATIONS if not callable(getattr(model, op, None))]
        if missing:
            raise ModelRegistrationError(
                f"Model for collection '{name}' is missing operations: {', '.join(missing)}"
            )
        self._models[name] = model

    def register_many(self, entries: Iterable[tuple[str, ModelHandle]]) -> None:
        for name, model in entries:
            self.register(name, model)

    def get_model(self, name: str) -> ModelHandle:
        """Return the model for ``name`` or raise :class:`UnknownCollectionError`."""

        try:
            return self._models[name]
        except KeyError:
            raise UnknownCollectionError(f"Collection '{name}' has no registered model") from None

    def __getitem__(self, name: str) -> ModelHandle:
        return self._models[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return f"ModelRegistry({sorted(self._models)!r})"


__all__ = ["ModelRegistry", "REQUIRED_OPERATIONS"]
