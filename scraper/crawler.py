from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncContextManager, Awaitable, Callable, List, Optional, Tuple

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
)

from components.adapter_base import AdapterSettings, ExtractionAdapter
from components.adapter_registry import AdapterRegistry, default_registry
from extensions.checkpoint import CheckpointStore
from extensions.logging import LoggingExtension
from extensions.output_paths import ensure_crawl_dirs, write_item_artifact
from extensions.progress import ProgressTracker

from .browser import acquire_page, navigate
from .config import Config
from .models import CrawlState, ItemContent, ItemInfo, TaskResult
from .quiescence import QuiescenceOutcome, await_quiescence
from .ranges import resolve_range
from .scheduler import ConcurrencyScheduler, RetryPolicy, sleep_unless_stopped
from .utils import ExtractionError, HarvestError, NavigationError, QuiescenceTimeout, format_duration

logger = logging.getLogger(__name__)

PageSource = Callable[[], AsyncContextManager[Any]]

PROGRESS_LOG_EVERY = 10


class CrawlPhase(str, Enum):
    INITIALIZING = "initializing"
    METADATA_PENDING = "metadata_pending"
    LISTING_PENDING = "listing_pending"
    SCRAPING = "scraping"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class CrawlReport:
    phase: CrawlPhase
    state: Optional[CrawlState]
    scheduled: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    error: Optional[BaseException] = None
    duration_s: float = 0.0
    failures: List[TaskResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.phase is CrawlPhase.COMPLETED


class CrawlOrchestrator:
    """
    Checkpointed crawl of one novel:

        INITIALIZING -> METADATA_PENDING -> LISTING_PENDING -> SCRAPING -> FINALIZING
                                                                            -> COMPLETED | FAILED | CANCELLED

    Metadata and listing are skipped when the checkpoint already has them.
    Every exit path goes through FINALIZING, which saves the checkpoint.
    """

    def __init__(
        self,
        cfg: Config,
        url: str,
        output_dir: Path,
        *,
        range_expr: Optional[str] = "all",
        resume: bool = True,
        force: bool = False,
        strict_range: bool = False,
        delay_range_ms: Optional[Tuple[int, int]] = None,
        registry: Optional[AdapterRegistry] = None,
        store: Optional[CheckpointStore] = None,
        page_source: Optional[PageSource] = None,
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.cfg = cfg
        self.url = url
        self.output_dir = Path(output_dir)
        self.range_expr = range_expr
        self.resume = resume
        self.force = force
        self.strict_range = strict_range
        self.delay_range_ms = delay_range_ms

        self.registry = registry or default_registry(AdapterSettings.from_config(cfg))
        self.store = store or CheckpointStore()
        self.page_source: PageSource = page_source or acquire_page
        self.stop_event = stop_event or asyncio.Event()

        self.phase = CrawlPhase.INITIALIZING
        self.state: Optional[CrawlState] = None
        self.progress: Optional[ProgressTracker] = None
        self._failures: List[TaskResult] = []
        self._unsaved = 0

    # ---------- control ----------

    def request_stop(self) -> None:
        if not self.stop_event.is_set():
            logger.info("Stop requested; finishing in-flight attempts and saving progress")
        self.stop_event.set()

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def _set_phase(self, phase: CrawlPhase) -> None:
        if phase is not self.phase:
            logger.debug("Phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    # ---------- run ----------

    async def run(self) -> CrawlReport:
        t0 = time.monotonic()
        error: Optional[BaseException] = None
        scheduled = skipped = 0
        results: List[TaskResult] = []

        ensure_crawl_dirs(self.output_dir)
        self._set_phase(CrawlPhase.INITIALIZING)
        self.state = self._initial_state()

        try:
            adapter = self.registry.resolve(self.url)

            if not self.stopping:
                await self._metadata_phase(adapter)
            if not self.stopping:
                await self._listing_phase(adapter)
            if not self.stopping:
                scheduled, skipped, results = await self._scraping_phase(adapter)
        except HarvestError as e:
            error = e
            logger.error("Crawl failed during %s: %s", self.phase.value, e)
        except Exception as e:
            error = e
            logger.exception("Unexpected error during %s", self.phase.value)

        self._set_phase(CrawlPhase.FINALIZING)
        self._save()

        # a requested stop outranks the error it interrupted
        if self.stopping:
            terminal = CrawlPhase.CANCELLED
        elif error is not None:
            terminal = CrawlPhase.FAILED
        else:
            terminal = CrawlPhase.COMPLETED
        self._set_phase(terminal)

        completed = sum(1 for r in results if r.ok)
        report = CrawlReport(
            phase=terminal,
            state=self.state,
            scheduled=scheduled,
            completed=completed,
            failed=len(self._failures),
            skipped=skipped,
            error=error,
            duration_s=time.monotonic() - t0,
            failures=list(self._failures),
        )
        logger.info(
            "Crawl %s: scheduled=%d completed=%d failed=%d skipped=%d in %s",
            terminal.value, report.scheduled, report.completed, report.failed,
            report.skipped, format_duration(report.duration_s),
        )
        return report

    # ---------- phases ----------

    def _initial_state(self) -> CrawlState:
        if self.resume:
            loaded = self.store.load(self.output_dir)
            if loaded is not None:
                if loaded.source_url != self.url:
                    logger.warning(
                        "Checkpoint in %s belongs to %s, not %s; starting fresh",
                        self.output_dir, loaded.source_url, self.url,
                    )
                else:
                    logger.info(
                        "Resuming: %d/%d item(s) already completed",
                        len(loaded.completed_ids), len(loaded.items),
                    )
                    return loaded
        return self.store.fresh(self.url)

    async def _metadata_phase(self, adapter: ExtractionAdapter) -> None:
        self._set_phase(CrawlPhase.METADATA_PENDING)
        if self.state.metadata is not None:
            logger.info("Metadata already checkpointed: %r", self.state.metadata.title)
            return
        self.state.metadata = await self._source_page(
            adapter, "metadata", lambda page: adapter.extract_metadata(page, self.url)
        )
        self.state.touch()
        self._save()

    async def _listing_phase(self, adapter: ExtractionAdapter) -> None:
        self._set_phase(CrawlPhase.LISTING_PENDING)
        if self.state.items:
            logger.info("Listing already checkpointed: %d item(s)", len(self.state.items))
            return
        items = await self._source_page(
            adapter, "listing", lambda page: adapter.extract_listing(page, self.url)
        )
        self.state.set_items(items)
        if self.state.metadata is not None:
            self.state.metadata.total_items = len(self.state.items)
        self._save()

    async def _scraping_phase(self, adapter: ExtractionAdapter) -> Tuple[int, int, List[TaskResult]]:
        self._set_phase(CrawlPhase.SCRAPING)
        state = self.state

        # indices need not be contiguous; cover the highest one too
        total = max(len(state.items), state.max_index())
        targets = resolve_range(self.range_expr, total, strict=self.strict_range)
        pending = state.pending(targets, force=self.force)
        skipped = len(state.pending(targets, force=True)) - len(pending)

        logger.info(
            "Range %r -> %d target(s); %d pending, %d already completed",
            self.range_expr or "all", len(targets), len(pending), skipped,
        )
        if not pending:
            return 0, skipped, []

        delay = self.delay_range_ms or getattr(adapter, "delay_range_ms", None)
        policy = RetryPolicy.from_config(self.cfg, delay)
        scheduler = ConcurrencyScheduler(policy, self.stop_event)
        self.progress = ProgressTracker(len(pending))

        async def fetch(item: ItemInfo) -> ItemContent:
            return await self._fetch_item(adapter, item)

        results = await scheduler.run(pending, fetch, self._commit)
        return len(pending), skipped, results

    # ---------- source page ----------

    async def _source_page(
        self,
        adapter: ExtractionAdapter,
        phase: str,
        extract: Callable[[Any], Awaitable[Any]],
    ) -> Any:
        """
        Run `extract` against the novel's own page. NavigationError is retried
        with the item backoff policy; any other driver failure becomes an
        ExtractionError for `phase`.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.cfg.retries + 1) | stop_when_event_set(self.stop_event),
            wait=RetryPolicy.from_config(self.cfg).wait_strategy(),
            retry=retry_if_exception_type(NavigationError),
            sleep=self._pause,
            before_sleep=self._log_source_retry(phase),
            reraise=True,
        )
        result: Any = None
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._with_page(adapter, self.url, extract)
        except HarvestError:
            raise
        except Exception as e:
            raise ExtractionError(phase, f"{type(e).__name__}: {e}") from e
        return result

    async def _pause(self, seconds: float) -> None:
        await sleep_unless_stopped(self.stop_event, seconds)

    def _log_source_retry(self, phase: str) -> Callable[[RetryCallState], None]:
        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "%s page attempt %d/%d failed, retrying in %.2fs: %s",
                phase, rs.attempt_number, self.cfg.retries + 1,
                rs.next_action.sleep if rs.next_action else 0.0, exc,
            )
        return _before_sleep

    # ---------- per-item pipeline ----------

    async def _with_page(
        self,
        adapter: ExtractionAdapter,
        url: str,
        extract: Callable[[Any], Awaitable[Any]],
    ) -> Any:
        """setup_page -> navigate -> await quiescence -> extract, on a borrowed page."""
        async with self.page_source() as page:
            await adapter.setup_page(page)
            await navigate(page, url, self.cfg.navigation_timeout_ms)
            outcome = await await_quiescence(
                page,
                self.cfg.idle_window_ms / 1000.0,
                self.cfg.quiescence_timeout_ms / 1000.0,
            )
            if outcome is QuiescenceOutcome.TIMED_OUT:
                logger.warning("%s", QuiescenceTimeout(f"{url} still busy after {self.cfg.quiescence_timeout_ms} ms; extracting anyway"))
            return await extract(page)

    async def _fetch_item(self, adapter: ExtractionAdapter, item: ItemInfo) -> ItemContent:
        token = LoggingExtension.set_item_context(item.id)
        try:
            content = await self._with_page(adapter, item.url, lambda page: adapter.extract_content(page, item))
            path = write_item_artifact(self.output_dir, content, self.state.metadata)
            logger.debug("Wrote %s (%d words)", path.name, content.word_count)
            return content
        finally:
            LoggingExtension.reset_item_context(token)

    def _commit(self, result: TaskResult) -> None:
        """Single-writer hook; the scheduler serializes calls."""
        if not result.ok:
            self._failures.append(result)
            if self.progress is not None:
                self.progress.add_error()
            return

        if self.state.commit(result.item):
            self._unsaved += 1
        if self.progress is not None:
            n = self.progress.increment()
            if n % PROGRESS_LOG_EVERY == 0:
                logger.info("Progress: %s", self.progress.format())

        if self._unsaved >= self.cfg.checkpoint_every:
            self._save()

    def _save(self) -> None:
        if self.state is None:
            return
        self.store.save(self.output_dir, self.state)
        self._unsaved = 0
