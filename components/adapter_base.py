# components/adapter_base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Protocol, Tuple, runtime_checkable

from scraper.models import ItemContent, ItemInfo, NovelMetadata


@dataclass(frozen=True)
class AdapterSettings:
    max_load_attempts: int = 10
    load_more_wait_ms: int = 2000
    scroll_wait_ms: int = 1000
    min_content_chars: int = 100

    @classmethod
    def from_config(cls, cfg) -> "AdapterSettings":
        return cls(
            max_load_attempts=cfg.max_load_attempts,
            load_more_wait_ms=cfg.load_more_wait_ms,
            min_content_chars=cfg.min_content_chars,
        )


@runtime_checkable
class ExtractionAdapter(Protocol):
    """
    Site-specific extraction. The orchestrator navigates and waits for the
    page to settle; adapters only read (and, for listings, poke) the DOM.
    """
    name: str
    delay_range_ms: Tuple[int, int]

    def identify(self, url: str) -> bool: ...

    async def setup_page(self, page) -> None: ...

    async def extract_metadata(self, page, url: str) -> NovelMetadata: ...

    async def extract_listing(self, page, url: str) -> List[ItemInfo]: ...

    async def extract_content(self, page, item: ItemInfo) -> ItemContent: ...


def default_headers() -> Dict[str, str]:
    return {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }
