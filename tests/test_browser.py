import dataclasses
from types import SimpleNamespace

import pytest

import scraper.browser as browser_mod
from scraper.browser import acquire_page, init_browser, navigate, open_page_count, should_block_request, shutdown_browser
from scraper.config import load_config
from scraper.utils import NavigationError


def _cfg(**kw):
    base = dict(concurrency=2, navigation_timeout_ms=12345, user_agent="pytest-UA", block_heavy_resources=True)
    base.update(kw)
    return dataclasses.replace(load_config(), **base)


class FakePage:
    def __init__(self):
        self.closed = False
        self.handlers = {}
        self.response = SimpleNamespace(status=200)
        self.error = None

    def on(self, event, cb):
        self.handlers.setdefault(event, []).append(cb)

    async def goto(self, url, wait_until=None, timeout=None):
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self):
        self.closed = False
        self.routes = []
        self.timeouts = {}
        self.fail_new_page = None

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    def set_default_timeout(self, ms):
        self.timeouts["default"] = ms

    def set_default_navigation_timeout(self, ms):
        self.timeouts["navigation"] = ms

    async def new_page(self):
        if self.fail_new_page is not None:
            raise self.fail_new_page
        return FakePage()

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, context):
        self.context = context
        self.closed = False
        self.context_kwargs = None

    async def new_context(self, **kwargs):
        self.context_kwargs = kwargs
        return self.context

    async def close(self):
        self.closed = True


class FakeDriver:
    """Stands in for both the async_playwright() handle and the started driver."""

    def __init__(self, browser):
        self.stopped = False
        self.launch_kwargs = None
        self.chromium = SimpleNamespace(launch=self._launch)
        self._browser = browser

    async def _launch(self, **kwargs):
        self.launch_kwargs = kwargs
        return self._browser

    async def start(self):
        return self

    async def stop(self):
        self.stopped = True


@pytest.fixture
def fake_driver(monkeypatch):
    context = FakeContext()
    browser = FakeBrowser(context)
    driver = FakeDriver(browser)
    monkeypatch.setattr(browser_mod, "async_playwright", lambda: driver)
    return driver, browser, context


@pytest.mark.asyncio
async def test_init_browser_with_blocking(fake_driver):
    driver, browser, context = fake_driver

    pw_ret, browser_ret, context_ret = await init_browser(_cfg(headless=True))
    assert (pw_ret, browser_ret, context_ret) == (driver, browser, context)

    assert context.timeouts == {"default": 12345, "navigation": 12345}
    assert browser.context_kwargs["user_agent"] == "pytest-UA"
    assert browser.context_kwargs["viewport"] == {"width": 1366, "height": 768}
    assert driver.launch_kwargs["headless"] is True

    assert len(context.routes) == 1
    pattern, handler = context.routes[0]
    assert pattern == "**/*" and callable(handler)

    await shutdown_browser(pw_ret, browser_ret, context_ret)
    assert context.closed and browser.closed and driver.stopped


@pytest.mark.asyncio
async def test_init_browser_without_blocking(fake_driver):
    driver, _, _ = fake_driver
    pw_ret, browser_ret, ctx = await init_browser(_cfg(block_heavy_resources=False, headless=False))

    assert ctx.routes == []
    assert driver.launch_kwargs["headless"] is False

    await shutdown_browser(pw_ret, browser_ret, ctx)
    assert ctx.closed is True


@pytest.mark.asyncio
async def test_shutdown_survives_close_errors(fake_driver):
    driver, browser, context = fake_driver
    pw_ret, browser_ret, ctx = await init_browser(_cfg())

    async def broken():
        raise RuntimeError("already gone")

    browser.close = broken
    await shutdown_browser(pw_ret, browser_ret, ctx)
    assert ctx.closed and driver.stopped
    assert browser_mod._ACTIVE["context"] is None


def test_should_block_request():
    assert should_block_request("font", "https://mtlbooks.com/a.woff2")
    assert should_block_request("media", "https://mtlbooks.com/a.mp4")
    assert should_block_request("script", "https://www.googletagmanager.com/gtm.js")
    assert should_block_request("image", "https://cdn.example.com/ads/banner.png")
    assert not should_block_request("document", "https://mtlbooks.com/novel/x")
    assert not should_block_request("script", "https://mtlbooks.com/app.js")


@pytest.mark.asyncio
async def test_acquire_page_closes_and_releases_slot(fake_driver):
    pw_ret, browser_ret, ctx = await init_browser(_cfg(concurrency=1))

    async with acquire_page() as page:
        assert isinstance(page, FakePage)
        assert open_page_count() == 1
        # dialog handler registered
        assert "dialog" in page.handlers
    assert page.closed is True
    assert open_page_count() == 0

    # error inside the block still closes the page and frees the slot
    with pytest.raises(RuntimeError):
        async with acquire_page() as page2:
            raise RuntimeError("boom")
    assert page2.closed is True

    # slot was released: a third page can be acquired with concurrency=1
    async with acquire_page() as page3:
        assert page3 is not page2

    # new_page failure propagates and releases the slot
    ctx.fail_new_page = RuntimeError("no pages")
    with pytest.raises(RuntimeError):
        async with acquire_page():
            pass
    ctx.fail_new_page = None
    async with acquire_page():
        pass

    await shutdown_browser(pw_ret, browser_ret, ctx)


@pytest.mark.asyncio
async def test_acquire_page_requires_init():
    browser_mod._ACTIVE["sem"] = None
    with pytest.raises(RuntimeError):
        async with acquire_page():
            pass


@pytest.mark.asyncio
async def test_navigate_maps_failures_to_navigation_error():
    page = FakePage()
    assert await navigate(page, "https://mtlbooks.com/x", 1000) == 200

    page.response = None
    assert await navigate(page, "https://mtlbooks.com/x", 1000) is None

    page.response = SimpleNamespace(status=404)
    with pytest.raises(NavigationError) as ei:
        await navigate(page, "https://mtlbooks.com/x", 1000)
    assert ei.value.status == 404

    page.error = browser_mod.PWError("net::ERR_CONNECTION_RESET at https://mtlbooks.com/x\nCall log: ...")
    with pytest.raises(NavigationError) as ei:
        await navigate(page, "https://mtlbooks.com/x", 1000)
    assert "ERR_CONNECTION_RESET" in str(ei.value)
    assert "Call log" not in str(ei.value)
