# components/md_generator.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from markdownify import markdownify

from scraper.models import ItemContent, NovelMetadata

logger = logging.getLogger(__name__)

_BLANK_RUN_RE = re.compile(r"\n{3,}")


def html_to_markdown(html: str, *, body_width: int = 0) -> str:
    """Normalized chapter HTML -> Markdown. Links are kept, images become references."""
    if not html:
        return ""
    text = markdownify(
        html,
        heading_style="ATX",
        bullets="-",
        strip=["span", "font"],
        wrap=bool(body_width),
        wrap_width=body_width or 80,
    )
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def _scalar(v: Any) -> str:
    # JSON scalars are valid YAML flow scalars
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return json.dumps(str(v), ensure_ascii=False)


def front_matter(fields: Dict[str, Any]) -> str:
    lines = ["---"]
    for k, v in fields.items():
        if v is None:
            continue
        lines.append(f"{k}: {_scalar(v)}")
    lines.append("---")
    return "\n".join(lines)


def build_item_markdown(content: ItemContent, metadata: Optional[NovelMetadata] = None) -> str:
    """
    Per-item document:

        ---
        title: "..."
        chapter: 12
        ...
        ---

        # <title>

        <body>
    """
    item = content.item
    fields: Dict[str, Any] = {
        "title": item.title,
        "chapter": item.index,
        "id": item.id,
        "url": item.url,
        "word_count": content.word_count or None,
        "extracted_at": content.extracted_at.isoformat() if content.extracted_at else None,
    }
    if metadata is not None and metadata.title:
        fields["novel"] = metadata.title

    body = html_to_markdown(content.html)
    if not body:
        logger.debug("[md] empty body for %s", item.id)

    parts = [front_matter(fields), "", f"# {item.title}", ""]
    if body:
        parts.extend([body, ""])
    return "\n".join(parts)
