from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from scraper.utils import format_duration


@dataclass(frozen=True)
class ProgressSnapshot:
    current: int
    total: int
    percentage: float
    rate: float          # items / second
    eta_s: Optional[float]
    errors: int
    elapsed_s: float


class ProgressTracker:
    """
    Counts commits and failures for one scraping phase. Only mutated from the
    scheduler's commit hook, so it needs no locking of its own.
    """

    def __init__(self, total: int, *, clock: Callable[[], float] = time.monotonic):
        self.total = max(0, int(total))
        self.current = 0
        self.errors = 0
        self._clock = clock
        self._started = clock()

    def increment(self, n: int = 1) -> int:
        self.current += n
        return self.current

    def add_error(self) -> int:
        self.errors += 1
        return self.errors

    def snapshot(self) -> ProgressSnapshot:
        elapsed = max(0.0, self._clock() - self._started)
        pct = (self.current / self.total * 100.0) if self.total else 100.0
        rate = (self.current / elapsed) if elapsed > 0 else 0.0
        remaining = max(0, self.total - self.current - self.errors)
        eta = (remaining / rate) if rate > 0 else None
        return ProgressSnapshot(
            current=self.current,
            total=self.total,
            percentage=round(pct, 1),
            rate=rate,
            eta_s=eta,
            errors=self.errors,
            elapsed_s=elapsed,
        )

    def format(self) -> str:
        s = self.snapshot()
        eta = format_duration(s.eta_s) if s.eta_s is not None else "?"
        return (
            f"{s.current}/{s.total} ({s.percentage:.1f}%) "
            f"rate={s.rate:.2f}/s eta={eta} errors={s.errors}"
        )
