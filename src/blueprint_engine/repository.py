"""Key/value repositories.

Registries of automations, schedules or webhooks are passed around as
Repository instances rather than living in module globals.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

T = TypeVar("T")


class Repository(ABC, Generic[T]):
    """Minimal keyed store."""

    @abstractmethod
    def get(self, key: str) -> T | None:
        pass

    @abstractmethod
    def put(self, key: str, value: T) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> bool:
        """Remove *key*, returning whether it was present."""
        pass

    @abstractmethod
    def keys(self) -> list[str]:
        pass

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class InMemoryRepository(Repository[T]):
    """Thread-safe dict-backed repository."""

    def __init__(self, initial: dict[str, T] | None = None):
        self._items: dict[str, T] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> T | None:
        with self._lock:
            return self._items.get(key)

    def put(self, key: str, value: T) -> None:
        with self._lock:
            self._items[key] = value

    def remove(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
