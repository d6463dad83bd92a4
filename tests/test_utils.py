# tests/test_utils.py
import asyncio
from pathlib import Path

import pytest

from scraper import utils


def test_is_http_url():
    assert utils.is_http_url("http://x.com")
    assert utils.is_http_url("https://x.com/novel/abc")
    assert not utils.is_http_url("ftp://x.com")
    assert not utils.is_http_url("mtlbooks.com/novel")
    assert not utils.is_http_url("")


def test_base_domain_and_domain_match():
    assert utils.get_base_domain("www.mtlbooks.com") == "mtlbooks.com"
    assert utils.get_base_domain("reader.mtlbooks.com") == "mtlbooks.com"
    assert utils.get_base_domain("") == "unknown-host"

    assert utils.url_matches_domain("https://mtlbooks.com/novel/x", "mtlbooks.com")
    assert utils.url_matches_domain("https://www.mtlbooks.com/novel/x", "mtlbooks.com")
    assert not utils.url_matches_domain("https://mtlbooks.com.evil.net/x", "mtlbooks.com")
    assert not utils.url_matches_domain("not a url", "mtlbooks.com")


def test_parse_delay():
    assert utils.parse_delay("1500") == (1500, 1500)
    assert utils.parse_delay("1000-2000") == (1000, 2000)
    assert utils.parse_delay(" 2000 - 1000 ") == (1000, 2000)
    assert utils.parse_delay("fast") == (1200, 2200)
    assert utils.parse_delay("", default=(1, 2)) == (1, 2)


def test_format_duration():
    assert utils.format_duration(5) == "5s"
    assert utils.format_duration(65) == "1m 5s"
    assert utils.format_duration(3725) == "1h 2m 5s"
    assert utils.format_duration(-3) == "0s"


def test_slugify():
    assert utils.slugify(" Hello, World! ") == "hello-world"
    assert utils.slugify("A" * 500).startswith("a" * 80)
    assert utils.slugify("!!!") == "untitled"


def test_atomic_write_text_creates_parent_and_replaces(tmp_path: Path):
    target = tmp_path / "nested" / "file.txt"
    utils.atomic_write_text(target, "one")
    utils.atomic_write_text(target, "two")
    assert target.read_text(encoding="utf-8") == "two"
    # no temp files left behind
    assert [p.name for p in target.parent.iterdir()] == ["file.txt"]


def test_is_ok_status():
    assert utils.is_ok_status(None)
    assert utils.is_ok_status(200)
    assert utils.is_ok_status(304)
    assert not utils.is_ok_status(404)
    assert not utils.is_ok_status(503)


def test_error_messages_carry_context():
    e = utils.ExtractionError("listing", "nothing there")
    assert e.phase == "listing"
    assert "listing extraction failed" in str(e)
    assert isinstance(e, utils.HarvestError)

    nav = utils.NavigationError("https://x.com/c/1", "HTTP 503", status=503)
    assert nav.status == 503 and "x.com" in str(nav)

    inner = RuntimeError("boom")
    ex = utils.TaskExhausted("chapter-3", 4, inner)
    assert ex.last_error is inner
    assert "chapter-3" in str(ex) and "4 attempt" in str(ex)


class _SlowClosePage:
    def __init__(self, delay: float):
        self.delay = delay
        self.closed = False

    async def close(self):
        await asyncio.sleep(self.delay)
        self.closed = True


@pytest.mark.asyncio
async def test_try_close_page_is_bounded():
    fast = _SlowClosePage(0)
    await utils.try_close_page(fast, 500)
    assert fast.closed

    slow = _SlowClosePage(5)
    # returns after the timeout instead of hanging
    await asyncio.wait_for(utils.try_close_page(slow, 100), timeout=2)
    assert not slow.closed

    await utils.try_close_page(None)
