from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Tuple

import psutil

from extensions.logging import LoggingExtension
from extensions.output_paths import default_output_dir
from scraper.browser import init_browser, shutdown_browser
from scraper.config import MAX_CONCURRENCY, MIN_CONCURRENCY, Config, load_config, validate_config
from scraper.crawler import CrawlOrchestrator, CrawlPhase, CrawlReport
from scraper.utils import ConfigurationError, format_duration, is_http_url, parse_delay

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130

logger = logging.getLogger("run_crawl")


# ----------------------------
# CLI parsing
# ----------------------------

def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Download a novel's chapters as Markdown, resuming from the last checkpoint"
    )
    p.add_argument("--url", required=True, help="Novel page URL")
    p.add_argument("--out", type=Path, default=None, help="Output directory (default: downloads/<novel slug>)")
    p.add_argument("--range", dest="range_expr", default="all", help='Chapters to fetch, e.g. "all", "1-50", "3,7,10-"')
    p.add_argument("--concurrency", type=int, default=None, help="Parallel pages (clamped to 1..10)")
    p.add_argument("--delay", type=str, default=None, help='Politeness delay in ms: "1500" or "1000-2000"')
    p.add_argument("--retries", type=int, default=None, help="Retries per chapter after the first attempt")
    p.add_argument("--no-resume", dest="resume", action="store_false", default=True, help="Ignore any existing checkpoint")
    p.add_argument("--force", action="store_true", help="Re-fetch chapters already completed")
    p.add_argument("--strict-range", action="store_true", help="Reject malformed --range tokens instead of skipping them")
    p.add_argument("--headless", dest="headless", action="store_true", default=None, help="Run the browser headless")
    p.add_argument("--no-headless", dest="headless", action="store_false", help="Show the browser window")
    p.add_argument("--timeout", type=int, default=None, help="Navigation timeout in ms")
    p.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Console/file log level")
    return p.parse_args(argv)


def clamp_concurrency(n: int) -> int:
    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, int(n)))


def _config_from_args(args: argparse.Namespace, base: Optional[Config] = None) -> Tuple[Config, Optional[Tuple[int, int]]]:
    """
    Overlay CLI flags on the env-driven config. Returns the config and the
    explicit delay range, if one was given (otherwise the adapter's applies).
    """
    cfg = base or load_config()
    changes = {}
    if args.concurrency is not None:
        changes["concurrency"] = clamp_concurrency(args.concurrency)
    if args.retries is not None:
        changes["retries"] = args.retries
    if args.timeout is not None:
        changes["navigation_timeout_ms"] = args.timeout
    if args.headless is not None:
        changes["headless"] = args.headless
    if args.log_level is not None:
        changes["log_level"] = args.log_level

    delay: Optional[Tuple[int, int]] = None
    if args.delay is not None:
        delay = parse_delay(args.delay, default=(cfg.min_delay_ms, cfg.max_delay_ms))
        changes["min_delay_ms"], changes["max_delay_ms"] = delay

    cfg = dataclasses.replace(cfg, **changes) if changes else cfg
    return validate_config(cfg), delay


def exit_code_for(report: CrawlReport) -> int:
    if report.phase is CrawlPhase.COMPLETED:
        return EXIT_OK
    if report.phase is CrawlPhase.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


def _rss_mb() -> float:
    return psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)


def _log_summary(report: CrawlReport, out_dir: Path) -> None:
    state = report.state
    title = state.metadata.title if state and state.metadata else "?"
    done = len(state.completed_ids) if state else 0
    total = len(state.items) if state else 0
    logger.info("Session summary:")
    logger.info("  novel: %s", title)
    logger.info("  status: %s", report.phase.value)
    logger.info("  this run: %d scheduled, %d completed, %d failed, %d skipped",
                report.scheduled, report.completed, report.failed, report.skipped)
    logger.info("  overall: %d/%d chapters in %s", done, total, out_dir)
    logger.info("  duration: %s | rss=%.1f MB", format_duration(report.duration_s), _rss_mb())
    for r in report.failures:
        logger.info("  failed: %s (%s)", r.item.id, r.error)
    if report.error is not None:
        logger.error("  error: %s", report.error)


# ----------------------------
# Main
# ----------------------------

async def main_async(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)

    try:
        cfg, delay = _config_from_args(args)
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Invalid configuration: %s", e)
        return EXIT_USAGE

    level = getattr(logging, cfg.log_level.upper(), logging.INFO)
    log_ext = LoggingExtension(global_level=level)
    logger.setLevel(level)

    if not is_http_url(args.url):
        logger.error("Not an http(s) URL: %s", args.url)
        log_ext.close()
        return EXIT_USAGE

    out_dir: Path = args.out or default_output_dir(args.url, cfg.output_root)
    log_path = log_ext.attach_crawl_log(out_dir)
    logger.info("Output: %s (log: %s)", out_dir, log_path)
    logger.info(
        "Config: concurrency=%d retries=%d timeout=%dms headless=%s delay=%s",
        cfg.concurrency, cfg.retries, cfg.navigation_timeout_ms, cfg.headless,
        f"{delay[0]}-{delay[1]}ms" if delay else "site default",
    )

    stop_event = asyncio.Event()
    orchestrator = CrawlOrchestrator(
        cfg,
        args.url,
        out_dir,
        range_expr=args.range_expr,
        resume=args.resume,
        force=args.force,
        strict_range=args.strict_range,
        delay_range_ms=delay,
        stop_event=stop_event,
    )

    sigint_count = 0

    def on_sigint() -> None:
        nonlocal sigint_count
        sigint_count += 1
        if sigint_count >= 2:
            os._exit(EXIT_CANCELLED)
        logger.warning("Interrupted; saving progress (press Ctrl+C again to exit immediately)")
        orchestrator.request_stop()

    def on_sigterm() -> None:
        logger.warning("Terminated; saving progress")
        orchestrator.request_stop()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
        loop.add_signal_handler(signal.SIGTERM, on_sigterm)
    except NotImplementedError:
        # Windows event loops; Ctrl+C falls back to KeyboardInterrupt
        logger.debug("Signal handlers unavailable on this platform")

    pw, browser, context = await init_browser(cfg)
    try:
        report = await orchestrator.run()
    finally:
        await shutdown_browser(pw, browser, context)
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass

    _log_summary(report, out_dir)
    log_ext.close()
    return exit_code_for(report)


# ----------------------------
# Entrypoint
# ----------------------------

def main() -> None:
    sys.exit(asyncio.run(main_async()))

if __name__ == "__main__":
    main()
