# components/adapter_registry.py
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from scraper.utils import AdapterNotFound

from .adapter_base import AdapterSettings, ExtractionAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Ordered adapter list; the first adapter that identifies a URL wins."""

    def __init__(self, adapters: Optional[Iterable[ExtractionAdapter]] = None):
        self._adapters: List[ExtractionAdapter] = list(adapters or [])

    def register(self, adapter: ExtractionAdapter) -> None:
        self._adapters.append(adapter)

    @property
    def adapters(self) -> List[ExtractionAdapter]:
        return list(self._adapters)

    def resolve(self, url: str) -> ExtractionAdapter:
        for adapter in self._adapters:
            try:
                if adapter.identify(url):
                    logger.debug("Adapter %s selected for %s", adapter.name, url)
                    return adapter
            except Exception as e:
                logger.warning("Adapter %s identify() failed for %s: %s", getattr(adapter, "name", adapter), url, e)
        raise AdapterNotFound(url)


def default_registry(settings: Optional[AdapterSettings] = None) -> AdapterRegistry:
    from .mtlbooks_adapter import MtlBooksAdapter

    return AdapterRegistry([MtlBooksAdapter(settings)])
