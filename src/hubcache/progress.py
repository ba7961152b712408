from __future__ import annotations

from collections.abc import Callable
from typing import TypeAlias

# (current, total, percentage); total and percentage are None when unknown.
ProgressCallback: TypeAlias = Callable[[int, int | None, float | None], None]


class ProgressTracker:
    def __init__(self, *, total: int | None = None, callback: ProgressCallback | None = None) -> None:
        if total is not None and total < 0:
            raise ValueError("total must be >= 0")
        self.total = total
        self.current = 0
        self.callback = callback
        self.finished = False

    def update(self, amount: int) -> None:
        if self.finished:
            return
        if amount < 0:
            raise ValueError("amount must be >= 0")
        self.current += amount
        self._notify()

    def finish(self) -> None:
        self.finished = True

    @property
    def percentage(self) -> float | None:
        if not self.total:
            return None
        return round(min(self.current / self.total, 1.0) * 100.0, 2)

    def _notify(self) -> None:
        if self.callback is not None:
            self.callback(self.current, self.total, self.percentage)
