"""
Key-value stores used by the settlement engine and the resource server.

The protocol core depends only on the ``KeyValueStore`` protocol. The
in-memory implementation is not durable across restarts.
"""

import threading
from typing import Callable, Generic, Protocol, TypeVar

V = TypeVar("V")


class KeyValueStore(Protocol[V]):
    """Storage interface with atomic insert-if-absent"""

    def get(self, key: str) -> V | None:
        """Return the value stored under *key*, or None"""
        ...

    def put_if_absent(self, key: str, value: V) -> V:
        """Store *value* unless *key* exists; return whichever value is stored"""
        ...

    def replace_if(self, key: str, value: V, predicate: Callable[[V], bool]) -> bool:
        """Atomically overwrite *key* only if the current value satisfies *predicate*"""
        ...

    def list(self) -> list[V]:
        """All stored values in insertion order"""
        ...


class InMemoryStore(Generic[V]):
    """Thread-safe dict-backed store"""

    def __init__(self) -> None:
        self._items: dict[str, V] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        with self._lock:
            return self._items.get(key)

    def put_if_absent(self, key: str, value: V) -> V:
        with self._lock:
            return self._items.setdefault(key, value)

    def replace_if(self, key: str, value: V, predicate: Callable[[V], bool]) -> bool:
        with self._lock:
            current = self._items.get(key)
            if current is None or not predicate(current):
                return False
            self._items[key] = value
            return True

    def list(self) -> list[V]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
