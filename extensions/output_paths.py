from __future__ import annotations

import re
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from components.md_generator import build_item_markdown
from scraper.config import DEFAULT_OUTPUT_ROOT
from scraper.models import ItemContent, ItemInfo, NovelMetadata
from scraper.utils import atomic_write_text, slugify

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]+")


def default_output_dir(url: str, root: Path = DEFAULT_OUTPUT_ROOT) -> Path:
    """
    downloads/<last path segment of the novel URL>, sanitized.
    Falls back to the host when the path is empty.
    """
    parsed = urlparse(url)
    parts = [p for p in (parsed.path or "").split("/") if p]
    name = parts[-1] if parts else (parsed.hostname or "novel")
    name = _UNSAFE_RE.sub("_", name).strip("_") or slugify(parsed.hostname or "novel")
    return Path(root) / name


def ensure_crawl_dirs(output_dir: Path) -> dict[str, Path]:
    """
    Ensure the output folder exists. Returns the layout mapping:
    base (artifacts + state.json) and logs.
    """
    dirs = {
        "base": Path(output_dir),
        "logs": Path(output_dir) / "logs",
    }
    for d in dirs.values():
        d.mkdir(parents=True, exist_ok=True)
    return dirs


def item_filename(item: ItemInfo) -> str:
    return f"{item.index:04d}-{item.id}.md"


def write_item_artifact(
    output_dir: Path,
    content: ItemContent,
    metadata: Optional[NovelMetadata] = None,
    *,
    encoding: str = "utf-8",
) -> Path:
    """Write <output_dir>/<index:04d>-<id>.md atomically; rewrites on force."""
    out_path = Path(output_dir) / item_filename(content.item)
    atomic_write_text(out_path, build_item_markdown(content, metadata), encoding=encoding)
    return out_path
