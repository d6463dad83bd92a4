# components/field_strategies.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup
from bs4.element import Tag


@dataclass(frozen=True)
class FieldStrategy:
    """
    One way of reading a field: a CSS selector, and optionally an attribute
    to read instead of the element text.
    """
    selector: str
    attr: Optional[str] = None

    def first(self, root: Tag) -> str:
        el = root.select_one(self.selector)
        return _read(el, self.attr) if el is not None else ""

    def all(self, root: Tag) -> List[str]:
        out: List[str] = []
        for el in root.select(self.selector):
            v = _read(el, self.attr)
            if v:
                out.append(v)
        return out


def _read(el: Tag, attr: Optional[str]) -> str:
    if attr:
        v = el.get(attr)
        if isinstance(v, list):
            v = " ".join(v)
        return (v or "").strip()
    return el.get_text(" ", strip=True)


def strategies(*selectors: str, attr: Optional[str] = None) -> tuple[FieldStrategy, ...]:
    return tuple(FieldStrategy(s, attr) for s in selectors)


def resolve_field(root: Tag, chain: Sequence[FieldStrategy]) -> str:
    """Try each strategy in order; return the first non-empty value, else ""."""
    for strat in chain:
        v = strat.first(root)
        if v:
            return v
    return ""


def resolve_all(root: Tag, chain: Sequence[FieldStrategy]) -> List[str]:
    """Values of the first strategy that matches anything, de-duplicated in order."""
    for strat in chain:
        vals = strat.all(root)
        if vals:
            return list(dict.fromkeys(vals))
    return []


def first_substantial(root: Tag, selectors: Sequence[str], min_chars: int) -> Optional[Tag]:
    """
    First element (selectors in order, matches in document order) whose text is
    longer than `min_chars`. Skeleton containers rendered before the text
    arrives are skipped this way.
    """
    for sel in selectors:
        for el in root.select(sel):
            if isinstance(el, Tag) and len(el.get_text(strip=True)) > min_chars:
                return el
    return None


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")
