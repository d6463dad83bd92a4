from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from scraper.models import CrawlState, ItemInfo, NovelMetadata, utcnow
from scraper.utils import CheckpointCorrupt, atomic_write_text

logger = logging.getLogger(__name__)

CHECKPOINT_NAME = "state.json"
SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
#  Checkpoint schema and helpers
# ---------------------------------------------------------------------------

def _dt_out(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


def _dt_in(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    # allow "Z"
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _metadata_to_dict(md: NovelMetadata) -> Dict[str, Any]:
    return {
        "title": md.title,
        "source_url": md.source_url,
        "author": md.author,
        "cover_url": md.cover_url,
        "synopsis": md.synopsis,
        "tags": list(md.tags),
        "status": md.status,
        "total_items": md.total_items,
        "crawled_at": _dt_out(md.crawled_at),
    }


def _metadata_from_dict(d: Dict[str, Any]) -> NovelMetadata:
    return NovelMetadata(
        title=str(d["title"]),
        source_url=str(d.get("source_url") or ""),
        author=d.get("author"),
        cover_url=d.get("cover_url"),
        synopsis=d.get("synopsis"),
        tags=[str(t) for t in (d.get("tags") or [])],
        status=d.get("status"),
        total_items=int(d.get("total_items") or 0),
        crawled_at=_dt_in(d.get("crawled_at")),
    )


def state_to_dict(state: CrawlState) -> Dict[str, Any]:
    return {
        "version": SCHEMA_VERSION,
        "source_url": state.source_url,
        "metadata": _metadata_to_dict(state.metadata) if state.metadata else None,
        "items": [
            {"index": i.index, "id": i.id, "title": i.title, "url": i.url}
            for i in state.items
        ],
        "completed_ids": sorted(state.completed_ids),
        "last_completed_index": state.last_completed_index,
        "last_updated": _dt_out(state.last_updated),
    }


def state_from_dict(data: Dict[str, Any]) -> CrawlState:
    """Decode a checkpoint document. Older documents without progress fields get defaults."""
    md = data.get("metadata")
    items = [
        ItemInfo(index=int(i["index"]), id=str(i["id"]), title=str(i["title"]), url=str(i["url"]))
        for i in (data.get("items") or [])
    ]
    completed = {str(x) for x in (data.get("completed_ids") or [])}
    last_index = int(data.get("last_completed_index") or 0)

    if items:
        # completions must name listed items
        by_id = {i.id: i for i in items}
        stray = completed - by_id.keys()
        if stray:
            logger.warning("Dropping %d completed id(s) not in the listing: %s", len(stray), sorted(stray)[:5])
            completed -= stray
            last_index = max((by_id[c].index for c in completed), default=0)

    return CrawlState(
        source_url=str(data["source_url"]),
        metadata=_metadata_from_dict(md) if md else None,
        items=items,
        completed_ids=completed,
        last_completed_index=last_index,
        last_updated=_dt_in(data.get("last_updated")) or utcnow(),
    )


class CheckpointStore:
    """
    Durable load/save of CrawlState.
    Stored at <output_dir>/state.json. Missing or corrupt files are never fatal.
    """

    def __init__(self, filename: str = CHECKPOINT_NAME):
        self.filename = filename

    def path_for(self, location: Path) -> Path:
        return Path(location) / self.filename

    # ---------------------- Core methods ----------------------

    def fresh(self, source_url: str) -> CrawlState:
        return CrawlState(source_url=source_url)

    def load(self, location: Path) -> Optional[CrawlState]:
        path = self.path_for(location)
        if not path.exists():
            logger.info("[checkpoint] No checkpoint at %s", path)
            return None
        try:
            state = self._decode(path)
        except CheckpointCorrupt as e:
            logger.warning("[checkpoint] %s; starting fresh", e)
            return None
        logger.info(
            "[checkpoint] Resumed from %s: %d/%d items completed",
            path, len(state.completed_ids), len(state.items),
        )
        return state

    def save(self, location: Path, state: CrawlState) -> None:
        path = self.path_for(location)
        try:
            text = json.dumps(state_to_dict(state), indent=2, ensure_ascii=False)
            atomic_write_text(path, text)
        except Exception as e:
            logger.error("[checkpoint] Save failed for %s: %s", path, e)
            return
        logger.debug("[checkpoint] Saved %s (%d completed)", path, len(state.completed_ids))

    # ---------------------- Internals ----------------------

    def _decode(self, path: Path) -> CrawlState:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CheckpointCorrupt(path, str(e)) from e
        if not isinstance(data, dict):
            raise CheckpointCorrupt(path, "top-level value is not an object")
        try:
            return state_from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise CheckpointCorrupt(path, f"{type(e).__name__}: {e}") from e
