from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ItemInfo:
    """One addressable chapter as produced by the listing phase."""
    index: int
    id: str
    title: str
    url: str

    @staticmethod
    def id_for(index: int) -> str:
        return f"chapter-{index}"


@dataclass
class NovelMetadata:
    title: str
    source_url: str
    author: Optional[str] = None
    cover_url: Optional[str] = None
    synopsis: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    status: Optional[str] = None
    total_items: int = 0
    crawled_at: Optional[datetime] = None


@dataclass
class ItemContent:
    item: ItemInfo
    html: str
    word_count: int = 0
    images: List[str] = field(default_factory=list)
    extracted_at: datetime = field(default_factory=utcnow)


class TaskOutcome(str, Enum):
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


@dataclass
class TaskResult:
    item: ItemInfo
    outcome: TaskOutcome
    content: Optional[ItemContent] = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is TaskOutcome.SUCCESS


@dataclass
class CrawlState:
    """
    The single checkpointed entity. Mutated only through commit() by the
    scheduler's single-writer hook; everything else reads it.
    """
    source_url: str
    metadata: Optional[NovelMetadata] = None
    items: List[ItemInfo] = field(default_factory=list)
    completed_ids: Set[str] = field(default_factory=set)
    last_completed_index: int = 0
    last_updated: datetime = field(default_factory=utcnow)

    def set_items(self, items: Iterable[ItemInfo]) -> None:
        """Install the listing, keeping the first entry per id and dropping stale completions."""
        seen: Set[str] = set()
        unique: List[ItemInfo] = []
        for it in items:
            if it.id in seen:
                continue
            seen.add(it.id)
            unique.append(it)
        self.items = unique
        self.completed_ids &= seen
        self.touch()

    def commit(self, item: ItemInfo) -> bool:
        """Record a fetched item. Returns True if it was not completed before."""
        is_new = item.id not in self.completed_ids
        self.completed_ids.add(item.id)
        self.last_completed_index = max(self.last_completed_index, item.index)
        self.touch()
        return is_new

    def pending(self, targets: Iterable[int], *, force: bool = False) -> List[ItemInfo]:
        wanted = set(targets)
        return [
            it for it in self.items
            if it.index in wanted and (force or it.id not in self.completed_ids)
        ]

    def max_index(self) -> int:
        return max((i.index for i in self.items), default=0)

    def touch(self) -> None:
        self.last_updated = utcnow()
