# components/mtlbooks_adapter.py
from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin

from bs4.element import Tag

from scraper.models import ItemContent, ItemInfo, NovelMetadata, utcnow
from scraper.utils import ExtractionError, url_matches_domain

from .adapter_base import AdapterSettings, default_headers
from .content_cleaner import CONTENT_DENYLIST, normalize_content, strip_comments, strip_denylist, word_count
from .field_strategies import (
    first_substantial,
    parse_html,
    resolve_all,
    resolve_field,
    strategies,
)

logger = logging.getLogger(__name__)

# ========== Field strategy tables ==========

TITLE = strategies(".novel-title", ".book-title", ".title", "h1", ".novel-name", ".book-name")
AUTHOR = strategies(".novel-author", ".author", ".book-author", "[class*='author']")
COVER = strategies(".novel-cover img", ".book-cover img", ".cover img", ".novel-image img", attr="src")
SYNOPSIS = strategies(
    ".novel-description", ".description", ".summary", ".synopsis",
    ".book-description", ".novel-summary",
)
TAGS = strategies(".novel-tags .tag, .tags .tag, .genre, .category")
STATUS = strategies(".novel-status", ".status", ".book-status", "[class*='status']")
CHAPTER_COUNT = strategies(
    ".chapter-count", ".total-chapters", ".chapters-count", "[class*='chapter'][class*='count']",
)

LISTING_CONTAINERS = (
    ".chapter-list",
    ".chapters",
    ".chapter-container",
    "[class*='chapter'][class*='list']",
    ".table-of-contents",
    ".toc",
)
LISTING_LINKS = (
    "a[href*='chapter']",
    ".chapter-link",
    ".chapter-item a",
    "a[class*='chapter']",
)
LOAD_MORE_CONTROLS = (
    "button[class*='load-more']",
    "button[class*='show-more']",
    ".load-more-chapters",
    ".pagination .next:not(.disabled)",
    "[data-action='load-more']",
)
CONTENT_CONTAINERS = (
    ".chapter-content",
    ".content",
    ".chapter-body",
    ".novel-content",
    ".reader-content",
    ".text-content",
    "#content",
    ".post-content",
    "[class*='content']",
)

_URL_INDEX_RE = re.compile(r"chapter[_-]?(\d+)", re.IGNORECASE)
_TITLE_INDEX_RE = re.compile(r"(?:chapter|ch\.?)\s*(\d+)", re.IGNORECASE)
_DIGITS_RE = re.compile(r"(\d+)")

# Clicks the first visible, enabled control; true when something was clicked.
_CLICK_LOAD_MORE_JS = """
(selectors) => {
  for (const sel of selectors) {
    const btn = document.querySelector(sel);
    if (btn && !btn.disabled && btn.style.display !== 'none') {
      btn.click();
      return true;
    }
  }
  return false;
}
"""
_SCROLL_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"


def index_from_link(href: str, title: str, position: int) -> int:
    """Item number from the URL, then the link text, then list position (1-based)."""
    m = _URL_INDEX_RE.search(href or "")
    if m:
        return int(m.group(1))
    m = _TITLE_INDEX_RE.search(title or "")
    if m:
        return int(m.group(1))
    return position


class MtlBooksAdapter:
    name = "mtlbooks"
    domain = "mtlbooks.com"
    # slightly slower than the generic default
    delay_range_ms: Tuple[int, int] = (1200, 2200)

    def __init__(self, settings: Optional[AdapterSettings] = None):
        self.settings = settings or AdapterSettings()

    def identify(self, url: str) -> bool:
        return url_matches_domain(url, self.domain)

    def headers(self) -> Dict[str, str]:
        return default_headers()

    async def setup_page(self, page) -> None:
        await page.set_extra_http_headers(self.headers())

    # ---------- metadata ----------

    async def extract_metadata(self, page, url: str) -> NovelMetadata:
        soup = parse_html(await page.content())
        page_url = getattr(page, "url", None) or url

        title = resolve_field(soup, TITLE)
        if not title:
            raise ExtractionError("metadata", f"no title found at {url}")

        cover = resolve_field(soup, COVER)
        meta = NovelMetadata(
            title=title,
            source_url=page_url,
            author=resolve_field(soup, AUTHOR) or None,
            cover_url=urljoin(page_url, cover) if cover else None,
            synopsis=resolve_field(soup, SYNOPSIS) or None,
            tags=resolve_all(soup, TAGS),
            status=resolve_field(soup, STATUS) or None,
            total_items=self._total_items(soup),
            crawled_at=utcnow(),
        )
        logger.info("Extracted metadata for %r (%d items advertised)", meta.title, meta.total_items)
        return meta

    def _total_items(self, soup) -> int:
        text = resolve_field(soup, CHAPTER_COUNT)
        if text:
            m = _DIGITS_RE.search(text)
            if m:
                return int(m.group(1))
        return len(soup.select(".chapter-list a, .chapters a, [class*='chapter'] a[href*='chapter']"))

    # ---------- listing ----------

    async def load_all(self, page) -> int:
        """Click load-more controls until none remain (bounded), then nudge lazy rendering."""
        clicks = 0
        while clicks < self.settings.max_load_attempts:
            clicked = await page.evaluate(_CLICK_LOAD_MORE_JS, list(LOAD_MORE_CONTROLS))
            if not clicked:
                break
            clicks += 1
            await asyncio.sleep(self.settings.load_more_wait_ms / 1000.0)

        if clicks >= self.settings.max_load_attempts:
            logger.info("Load-more limit reached (%d clicks); listing may be partial", clicks)

        await page.evaluate(_SCROLL_BOTTOM_JS)
        await asyncio.sleep(self.settings.scroll_wait_ms / 1000.0)
        return clicks

    async def extract_listing(self, page, url: str) -> List[ItemInfo]:
        await self.load_all(page)
        soup = parse_html(await page.content())
        page_url = getattr(page, "url", None) or url

        container: Optional[Tag] = None
        for sel in LISTING_CONTAINERS:
            container = soup.select_one(sel)
            if container is not None:
                break
        if container is None:
            container = soup.body or soup

        links: List[Tag] = []
        for sel in LISTING_LINKS:
            links = container.select(sel)
            if links:
                break
        if not links:
            raise ExtractionError("listing", f"no item links found at {url}")

        by_id: Dict[str, ItemInfo] = {}
        for pos, link in enumerate(links, start=1):
            href = (link.get("href") or "").strip()
            if not href:
                continue
            abs_url = urljoin(page_url, href)
            title = link.get_text(" ", strip=True) or (link.get("title") or "").strip()
            index = index_from_link(abs_url, title, pos)
            item_id = ItemInfo.id_for(index)
            if item_id in by_id:
                continue
            by_id[item_id] = ItemInfo(
                index=index,
                id=item_id,
                title=title or f"Chapter {index}",
                url=abs_url,
            )

        items = sorted(by_id.values(), key=lambda it: it.index)
        if not items:
            raise ExtractionError("listing", f"no usable item links at {url}")
        logger.info("Extracted %d items from listing", len(items))
        return items

    # ---------- content ----------

    async def extract_content(self, page, item: ItemInfo) -> ItemContent:
        soup = parse_html(await page.content())
        page_url = getattr(page, "url", None) or item.url

        container = first_substantial(soup, CONTENT_CONTAINERS, self.settings.min_content_chars)
        if container is None:
            raise ExtractionError("content", f"no content container for {item.id}")

        strip_denylist(container, CONTENT_DENYLIST)
        strip_comments(container)

        images: List[str] = []
        for img in container.select("img"):
            src = (img.get("src") or "").strip()
            if src:
                images.append(urljoin(page_url, src))

        text = container.get_text(" ", strip=True)
        html = normalize_content(container.decode_contents())
        if not html:
            raise ExtractionError("content", f"empty content for {item.id}")

        return ItemContent(
            item=item,
            html=html,
            word_count=word_count(text),
            images=list(dict.fromkeys(images)),
            extracted_at=utcnow(),
        )
