"""
Capped append-only storage.

Prediction and assessment histories are append-only per instruction. The
store keeps the newest ``max_per_key`` records per key and drops the oldest
beyond that, which bounds memory without a durable backend.
"""

from collections import deque
from typing import Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class AppendOnlyLog(Generic[T]):
    """Per-key bounded history. Records are never edited after append."""

    def __init__(self, max_per_key: int = 100):
        if max_per_key < 1:
            raise ValueError("max_per_key must be >= 1")
        self._max = max_per_key
        self._records: dict[str, deque[T]] = {}

    def append(self, key: str, record: T) -> None:
        bucket = self._records.get(key)
        if bucket is None:
            bucket = deque(maxlen=self._max)
            self._records[key] = bucket
        bucket.append(record)

    def history(self, key: str) -> list[T]:
        return list(self._records.get(key, ()))

    def latest(self, key: str) -> Optional[T]:
        bucket = self._records.get(key)
        return bucket[-1] if bucket else None

    def keys(self) -> list[str]:
        return list(self._records)

    def latest_per_key(self) -> Iterator[T]:
        for bucket in self._records.values():
            if bucket:
                yield bucket[-1]

    def all_records(self) -> Iterator[T]:
        for bucket in self._records.values():
            yield from bucket

    def __contains__(self, key: str) -> bool:
        return bool(self._records.get(key))

    def __len__(self) -> int:
        return sum(len(b) for b in self._records.values())
