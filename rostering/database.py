import threading
from collections.abc import Callable, Iterator, MutableMapping
from contextlib import contextmanager
from typing import Generic, Self, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.

    Values are treated as immutable rows: callers replace a value with
    `put` rather than mutating it, so a shallow snapshot of the store is
    enough to roll a transaction back.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = threading.RLock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def delete(self, key: K) -> None:
        with self._lock:
            self._store.pop(key, None)

    def all(self) -> list[V]:
        return list(self._store.values())

    def items(self) -> list[tuple[K, V]]:
        return list(self._store.items())

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __iter__(self) -> Iterator[V]:
        return iter(self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    @contextmanager
    def transaction(self) -> Iterator[Self]:
        """
        All-or-nothing block. Every write made inside is discarded if the
        block raises.
        """
        with self._lock:
            snapshot = dict(self._store)
            try:
                yield self
            except BaseException:
                self._store.clear()
                self._store.update(snapshot)
                raise

    def update_if(
        self, key: K, predicate: Callable[[V], bool], value: V
    ) -> bool:
        """
        Atomically replace the value at `key` if the current value matches.
        Returns True if the update happened, False if the key is missing or
        the predicate rejected the current value.
        """
        with self._lock:
            current = self._store.get(key)
            if current is None or not predicate(current):
                return False
            self.put(key, value)
            return True
