"""Bounded, oldest-first check history kept per site."""
from typing import Iterable, Iterator, Optional, Tuple

from .result import CheckResult

DEFAULT_HISTORY_CAP = 100


class HistoryBuffer:
    """Immutable FIFO of check results capped at ``cap`` entries.

    ``append`` returns a new buffer; once the cap is reached the oldest
    entry is evicted. Iteration is oldest-first.

    ``total`` counts every result ever appended, evicted ones included;
    stores compare it with their own count to find unsaved results.
    """

    __slots__ = ("_cap", "_items", "_total")

    def __init__(
        self,
        cap: int = DEFAULT_HISTORY_CAP,
        items: Iterable[CheckResult] = (),
        total: Optional[int] = None,
    ):
        if cap < 1:
            raise ValueError(f"History cap must be at least 1, got {cap}")
        items = tuple(items)
        self._cap = cap
        self._items: Tuple[CheckResult, ...] = items[-cap:]
        self._total = len(items) if total is None else max(total, len(self._items))

    @property
    def cap(self) -> int:
        return self._cap

    @property
    def items(self) -> Tuple[CheckResult, ...]:
        return self._items

    @property
    def total(self) -> int:
        return self._total

    def append(self, result: CheckResult) -> "HistoryBuffer":
        return HistoryBuffer(self._cap, self._items + (result,), self._total + 1)

    def latest(self) -> Optional[CheckResult]:
        return self._items[-1] if self._items else None

    def recent(self, count: int = 10) -> Tuple[CheckResult, ...]:
        """Last ``count`` results, still oldest-first."""
        if count <= 0:
            return ()
        return self._items[-count:]

    def uptime_percentage(self) -> float:
        """Share of healthy results in the retained history, 0 when empty."""
        if not self._items:
            return 0.0
        healthy = sum(1 for r in self._items if r.is_healthy)
        return round(healthy / len(self._items) * 100, 2)

    def average_duration_ms(self) -> Optional[int]:
        if not self._items:
            return None
        return int(sum(r.duration_ms for r in self._items) / len(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[CheckResult]:
        return iter(self._items)

    def __getitem__(self, index):
        return self._items[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, HistoryBuffer):
            return NotImplemented
        return self._cap == other._cap and self._items == other._items

    def __repr__(self) -> str:
        return f"HistoryBuffer(cap={self._cap}, size={len(self._items)}, total={self._total})"
