# components/content_cleaner.py
from __future__ import annotations

import re
from typing import Iterable

from bs4 import Comment
from bs4.element import Tag

from .field_strategies import parse_html

# Substructures that are never chapter text.
CONTENT_DENYLIST: tuple[str, ...] = (
    "script", "style", "noscript", "iframe", "nav", "header", "footer",
    ".ads", ".advertisement", ".banner",
    ".social-share", ".comments", ".navigation",
    ".prev-next", ".chapter-nav",
)

_WS_RE = re.compile(r"\s+")
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_PARA_GAP_RE = re.compile(r"(</p>)\s*(<p[^>]*>)", re.IGNORECASE)
_NL_PAD_RE = re.compile(r" *\n *")
_WORD_RE = re.compile(r"\S+")


def strip_denylist(root: Tag, denylist: Iterable[str] = CONTENT_DENYLIST) -> Tag:
    """Remove every descendant matching a denylisted selector (in place)."""
    for sel in denylist:
        for el in list(root.select(sel)):
            # nested matches may already be gone with their parent
            if isinstance(el, Tag) and not el.decomposed:
                el.decompose()
    return root


def strip_comments(root: Tag) -> Tag:
    for c in list(root.find_all(string=lambda t: isinstance(t, Comment))):
        c.extract()
    return root


def normalize_content(html: str) -> str:
    """
    Deterministic cleanup of chapter markup:
      - drop comments and script/style/noscript/iframe blocks
      - collapse whitespace runs to a single space
      - fold <br> into line breaks and separate adjacent paragraphs
    """
    if not html:
        return ""
    soup = strip_comments(parse_html(html))
    for tag in list(soup.find_all(["script", "style", "noscript", "iframe"])):
        tag.decompose()

    # lxml wraps fragments in <html><body>; keep only the fragment
    root = soup.body or soup
    text = _WS_RE.sub(" ", root.decode_contents()).strip()
    text = _BR_RE.sub("\n", text)
    text = _PARA_GAP_RE.sub(r"\1\n\n\2", text)
    text = _NL_PAD_RE.sub("\n", text)
    return text.strip()


def word_count(text: str) -> int:
    return len(_WORD_RE.findall(text or ""))
