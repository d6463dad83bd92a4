from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from .config import MAX_CONCURRENCY, MIN_CONCURRENCY, Config
from .models import ItemContent, ItemInfo, TaskOutcome, TaskResult
from .utils import ConfigurationError, CrawlCancelled, TaskExhausted

logger = logging.getLogger(__name__)

FetchFn = Callable[[ItemInfo], Awaitable[ItemContent]]
ResultHook = Callable[[TaskResult], Any]


async def sleep_unless_stopped(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`; True if `stop_event` fired first."""
    if seconds <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


# ========== Retry policy ==========

@dataclass(frozen=True)
class RetryPolicy:
    """All durations in seconds."""
    concurrency: int = 2
    min_delay: float = 1.2
    max_delay: float = 2.2
    retries: int = 3
    backoff_base: float = 1.0
    backoff_growth: float = 2.0
    max_backoff: float = 5.0

    @classmethod
    def from_config(cls, cfg: Config, delay_range_ms: Optional[Tuple[int, int]] = None) -> "RetryPolicy":
        lo, hi = delay_range_ms if delay_range_ms is not None else (cfg.min_delay_ms, cfg.max_delay_ms)
        return cls(
            concurrency=cfg.concurrency,
            min_delay=lo / 1000.0,
            max_delay=hi / 1000.0,
            retries=cfg.retries,
            backoff_base=cfg.backoff_initial_ms / 1000.0,
            backoff_growth=cfg.backoff_growth,
            max_backoff=cfg.backoff_max_ms / 1000.0,
        )

    def validate(self) -> "RetryPolicy":
        if not (MIN_CONCURRENCY <= self.concurrency <= MAX_CONCURRENCY):
            raise ConfigurationError(
                f"concurrency must be within [{MIN_CONCURRENCY}, {MAX_CONCURRENCY}], got {self.concurrency}"
            )
        if self.min_delay < 0 or self.min_delay > self.max_delay:
            raise ConfigurationError(f"invalid delay range [{self.min_delay}, {self.max_delay}]")
        if self.retries < 0:
            raise ConfigurationError(f"retries must be >= 0, got {self.retries}")
        if self.backoff_base < 0 or self.backoff_growth < 1 or self.max_backoff < 0:
            raise ConfigurationError("invalid backoff parameters")
        return self

    def wait_strategy(self) -> wait_exponential:
        """tenacity wait: base * growth**(n-1) before the n-th retry, capped at max_backoff."""
        return wait_exponential(multiplier=self.backoff_base, exp_base=self.backoff_growth, max=self.max_backoff)

    def sample_delay(self, rng: random.Random) -> float:
        return rng.uniform(self.min_delay, self.max_delay)


# ========== Scheduler ==========

class ConcurrencyScheduler:
    """
    Runs one fetch task per item under a concurrency bound.

    Per task: acquire a slot, politeness delay, then fetch with retry/backoff.
    A task that runs out of attempts yields an EXHAUSTED result; it never
    raises into its siblings or into run(). Every result passes through
    `on_result` under a single lock.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        stop_event: Optional[asyncio.Event] = None,
        *,
        rng: Optional[random.Random] = None,
    ):
        self.policy = policy.validate()
        self.stop_event = stop_event or asyncio.Event()
        self._rng = rng or random.Random()
        self._sem = asyncio.Semaphore(policy.concurrency)
        self._commit_lock = asyncio.Lock()

        self.scheduled = 0
        self.completed = 0
        self.exhausted = 0
        self.cancelled = 0
        self.in_flight = 0
        self.peak_in_flight = 0

    # ---------- public API ----------

    async def run(
        self,
        items: Sequence[ItemInfo],
        fetch: FetchFn,
        on_result: Optional[ResultHook] = None,
    ) -> List[TaskResult]:
        self.scheduled = len(items)
        if not items:
            return []

        logger.info(
            "Scheduling %d task(s) concurrency=%d delay=[%.2fs, %.2fs] retries=%d",
            len(items), self.policy.concurrency, self.policy.min_delay,
            self.policy.max_delay, self.policy.retries,
        )
        tasks = [
            asyncio.create_task(self._run_one(item, fetch, on_result), name=f"fetch:{item.id}")
            for item in items
        ]
        outcomes = await asyncio.gather(*tasks)
        results = [r for r in outcomes if r is not None]

        logger.info(
            "Scheduler done: scheduled=%d completed=%d exhausted=%d cancelled=%d",
            self.scheduled, self.completed, self.exhausted, self.cancelled,
        )
        return results

    # ---------- task body ----------

    async def _run_one(
        self,
        item: ItemInfo,
        fetch: FetchFn,
        on_result: Optional[ResultHook],
    ) -> Optional[TaskResult]:
        async with self._sem:
            if self.stop_event.is_set():
                self.cancelled += 1
                return None

            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                # politeness delay; wakes early on stop
                if await self._sleep_or_stop(self.policy.sample_delay(self._rng)):
                    self.cancelled += 1
                    return None
                result = await self._attempt(item, fetch)
            finally:
                self.in_flight -= 1

        if result is None:
            self.cancelled += 1
            return None

        if result.ok:
            self.completed += 1
        else:
            self.exhausted += 1
        await self._commit(result, on_result)
        return result

    async def _attempt(self, item: ItemInfo, fetch: FetchFn) -> Optional[TaskResult]:
        policy = self.policy
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.retries + 1) | stop_when_event_set(self.stop_event),
            wait=policy.wait_strategy(),
            # CancelledError is a BaseException and never retried
            retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(CrawlCancelled),
            sleep=self._backoff_sleep,
            before_sleep=self._log_retry(item),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if self.stop_event.is_set():
                        raise CrawlCancelled(f"stop requested before attempt {attempts} of {item.id}")
                    content = await fetch(item)
        except CrawlCancelled:
            logger.debug("[%s] abandoned after %d attempt(s): stop requested", item.id, attempts - 1)
            return None
        except Exception as e:
            if self.stop_event.is_set() and attempts <= policy.retries:
                logger.info("[%s] attempt %d failed during shutdown: %s", item.id, attempts, e)
                return None
            exhausted = TaskExhausted(item.id, attempts, e)
            logger.warning("%s", exhausted)
            return TaskResult(item=item, outcome=TaskOutcome.EXHAUSTED, error=exhausted, attempts=attempts)

        return TaskResult(item=item, outcome=TaskOutcome.SUCCESS, content=content, attempts=attempts)

    async def _commit(self, result: TaskResult, on_result: Optional[ResultHook]) -> None:
        if on_result is None:
            return
        async with self._commit_lock:
            try:
                ret = on_result(result)
                if inspect.isawaitable(ret):
                    await ret
            except Exception as e:
                logger.error("Commit hook failed for %s: %s", result.item.id, e, exc_info=True)

    # ---------- sleeping ----------

    async def _sleep_or_stop(self, seconds: float) -> bool:
        return await sleep_unless_stopped(self.stop_event, seconds)

    async def _backoff_sleep(self, seconds: float) -> None:
        await self._sleep_or_stop(seconds)

    def _log_retry(self, item: ItemInfo) -> Callable[[RetryCallState], None]:
        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.info(
                "[%s] retry %d/%d in %.2fs: %s",
                item.id, rs.attempt_number, self.policy.retries,
                rs.next_action.sleep if rs.next_action else 0.0, exc,
            )
        return _before_sleep
