"""Batch partitioning and the already-processed filter for LLM extraction."""

import math
from dataclasses import dataclass, field
from operator import attrgetter
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")


@dataclass
class Batch(Generic[T]):
    """An in-memory group of records sent in a single extraction request.

    Each record is addressed by its zero-based local index. The LLM refers to
    records by that index, so lookups go through ``record_for`` which checks
    bounds instead of trusting the response order.
    """

    number: int
    records: List[T]
    _by_index: Dict[int, T] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._by_index = dict(enumerate(self.records))

    def __len__(self) -> int:
        return len(self.records)

    def indexed(self) -> List[tuple]:
        """Return ``(local_index, record)`` pairs in batch order."""
        return list(self._by_index.items())

    def record_for(self, local_index: Any) -> Optional[T]:
        """Resolve a local index to its record, or None if out of range."""
        if isinstance(local_index, bool):
            return None
        if isinstance(local_index, float):
            if not local_index.is_integer():
                return None
            local_index = int(local_index)
        if not isinstance(local_index, int):
            return None
        return self._by_index.get(local_index)


def partition_batches(records: Sequence[T], batch_size: int) -> List[Batch[T]]:
    """Split records into ordered batches of at most ``batch_size``.

    Produces ``ceil(len(records) / batch_size)`` batches; only the last one
    may be short.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    items = list(records)
    count = math.ceil(len(items) / batch_size)
    return [
        Batch(number=i + 1, records=items[i * batch_size : (i + 1) * batch_size])
        for i in range(count)
    ]


def exclude_processed(
    candidates: Iterable[T],
    processed_ids: Iterable[str],
    key: Callable[[T], Any] = attrgetter("id"),
) -> List[T]:
    """Drop candidates that already have persisted results for the run.

    Candidates are matched on ``key(record)`` (their ``id`` by default),
    compared as strings.
    """
    seen = {str(value) for value in processed_ids}
    return [record for record in candidates if str(key(record)) not in seen]
