"""Service layer for the watch log."""

from typing import Any, Mapping, Protocol


class KeyValueStore(Protocol):
    """Protocol describing one namespace of an asynchronous key-value store."""

    async def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under ``key`` or ``default`` when absent."""

    async def set(self, values: Mapping[str, Any]) -> None:
        """Upsert every key in ``values`` in a single write."""


__all__ = ["KeyValueStore"]
