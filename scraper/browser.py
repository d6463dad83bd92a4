from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Tuple

from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright, Page, Error as PWError

from .config import Config
from .utils import NavigationError, is_ok_status, try_close_page

logger = logging.getLogger(__name__)

# Process-wide browser session, filled by init_browser and cleared by shutdown_browser.
_ACTIVE: dict[str, Any] = {
    "cfg": None,
    "pw": None,
    "browser": None,
    "context": None,
    "sem": None,
    "open_pages": set(),
}

_CHROMIUM_FLAGS = (
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--no-first-run",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-gpu",
    "--mute-audio",
)

_VIEWPORT = {"width": 1366, "height": 768}

# Ad and tracker hosts a chapter page never needs.
_BLOCKED_URL_PARTS = (
    "google-analytics",
    "googletagmanager",
    "facebook.com",
    "doubleclick",
    "amazon-adsystem",
    "googlesyndication",
    "/ads/",
)
_BLOCKED_RESOURCE_TYPES = frozenset({"font", "media"})


def should_block_request(resource_type: str, url: str) -> bool:
    if resource_type in _BLOCKED_RESOURCE_TYPES:
        return True
    low = (url or "").lower()
    return any(part in low for part in _BLOCKED_URL_PARTS)


async def _route_filter(route, request) -> None:
    if should_block_request(request.resource_type, request.url):
        await route.abort()
    else:
        await route.continue_()


# ---------------------------
# Session lifecycle
# ---------------------------

async def init_browser(cfg: Config) -> Tuple[Playwright, Browser, BrowserContext]:
    """
    Start Playwright, launch Chromium and open the single shared context every
    task borrows pages from. At most `cfg.concurrency` pages are open at once.
    """
    pw = await async_playwright().start()
    browser = await pw.chromium.launch(
        headless=cfg.headless,
        args=list(_CHROMIUM_FLAGS),
        ignore_default_args=["--enable-automation"],
    )
    context = await browser.new_context(
        user_agent=cfg.user_agent,
        viewport=dict(_VIEWPORT),
        extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
    )
    context.set_default_timeout(cfg.navigation_timeout_ms)
    context.set_default_navigation_timeout(cfg.navigation_timeout_ms)

    if cfg.block_heavy_resources:
        await context.route("**/*", _route_filter)

    _ACTIVE.update(
        cfg=cfg,
        pw=pw,
        browser=browser,
        context=context,
        sem=asyncio.Semaphore(cfg.concurrency),
        open_pages=set(),
    )
    logger.info(
        "Chromium ready (headless=%s, pages<=%d, blocking=%s)",
        cfg.headless, cfg.concurrency, cfg.block_heavy_resources,
    )
    return pw, browser, context


async def _teardown_step(label: str, step: Callable[[], Awaitable[Any]]) -> None:
    try:
        await step()
    except Exception as e:
        logger.warning("Shutdown: %s failed: %s", label, e)


async def shutdown_browser(
    pw: Playwright, browser: Browser, context: Optional[BrowserContext] = None
) -> None:
    """Close leftover pages, then the context, browser and driver. Never raises."""
    await _teardown_step("closing pages", _close_all_pages)
    if context is not None:
        await _teardown_step("closing context", context.close)
    await _teardown_step("closing browser", browser.close)
    await _teardown_step("stopping playwright", pw.stop)

    _ACTIVE.update(cfg=None, pw=None, browser=None, context=None, sem=None, open_pages=set())


# ---------------------------
# Pages
# ---------------------------

def open_page_count() -> int:
    return len(_ACTIVE.get("open_pages") or ())


def _close_timeout_ms() -> int:
    cfg: Optional[Config] = _ACTIVE.get("cfg")
    return cfg.page_close_timeout_ms if cfg else 1500


async def _close_all_pages() -> None:
    timeout_ms = _close_timeout_ms()
    for pg in list(_ACTIVE.get("open_pages") or ()):
        await try_close_page(pg, timeout_ms)
    _ACTIVE["open_pages"] = set()


def _auto_dismiss_dialogs(page: Page) -> None:
    async def _on_dialog(dialog):
        logger.debug("Dismissing %s dialog", getattr(dialog, "type", "js"))
        try:
            await dialog.dismiss()
        except PWError as e:
            logger.debug("Dialog dismiss failed: %s", e)
    page.on("dialog", _on_dialog)


@asynccontextmanager
async def acquire_page() -> AsyncIterator[Page]:
    """
    Borrow a fresh page from the shared context. Waits for a free slot, and
    the page is closed and the slot released however the block exits.
    """
    sem: Optional[asyncio.Semaphore] = _ACTIVE.get("sem")
    context: Optional[BrowserContext] = _ACTIVE.get("context")
    if sem is None or context is None:
        raise RuntimeError("acquire_page() called before init_browser()")

    async with sem:
        page: Optional[Page] = None
        try:
            page = await context.new_page()
        except Exception as e:
            logger.error("Could not open a page: %s", e)
            raise
        _ACTIVE["open_pages"].add(page)
        _auto_dismiss_dialogs(page)
        try:
            yield page
        finally:
            (_ACTIVE.get("open_pages") or set()).discard(page)
            await try_close_page(page, _close_timeout_ms())


async def navigate(page, url: str, timeout_ms: int, *, wait_until: str = "domcontentloaded") -> Optional[int]:
    """
    page.goto() with every failure (driver error, timeout, 4xx/5xx) raised as
    NavigationError. Returns the main response status, None when there is none.
    """
    try:
        resp = await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
    except (PWError, asyncio.TimeoutError) as e:
        first_line = str(e).splitlines()[0] if str(e) else type(e).__name__
        raise NavigationError(url, first_line) from e

    status = resp.status if resp is not None else None
    if not is_ok_status(status):
        raise NavigationError(url, f"HTTP {status}", status=status)
    return status
