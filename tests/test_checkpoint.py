import json
from datetime import datetime, timezone
from pathlib import Path

from extensions.checkpoint import CHECKPOINT_NAME, CheckpointStore, state_from_dict, state_to_dict
from scraper.models import CrawlState, ItemInfo, NovelMetadata


def _item(n: int) -> ItemInfo:
    return ItemInfo(index=n, id=ItemInfo.id_for(n), title=f"Chapter {n}", url=f"https://mtlbooks.com/novel/x/chapter-{n}")


def _populated_state() -> CrawlState:
    state = CrawlState(
        source_url="https://mtlbooks.com/novel/x",
        metadata=NovelMetadata(
            title="X",
            source_url="https://mtlbooks.com/novel/x",
            author="Someone",
            tags=["action", "fantasy"],
            status="Ongoing",
            total_items=3,
            crawled_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        ),
    )
    state.set_items([_item(1), _item(2), _item(3)])
    state.commit(_item(2))
    return state


def test_round_trip_populated(tmp_path: Path):
    store = CheckpointStore()
    state = _populated_state()
    store.save(tmp_path, state)

    assert (tmp_path / CHECKPOINT_NAME).exists()
    loaded = store.load(tmp_path)
    assert loaded == state
    assert loaded.last_updated.tzinfo is not None


def test_round_trip_empty_state(tmp_path: Path):
    store = CheckpointStore()
    state = store.fresh("https://mtlbooks.com/novel/y")
    store.save(tmp_path, state)
    loaded = store.load(tmp_path)
    assert loaded == state
    assert loaded.items == [] and loaded.completed_ids == set()
    assert loaded.metadata is None


def test_missing_checkpoint_returns_none(tmp_path: Path):
    assert CheckpointStore().load(tmp_path / "nowhere") is None


def test_corrupt_checkpoint_is_recoverable(tmp_path: Path, caplog):
    store = CheckpointStore()
    (tmp_path / CHECKPOINT_NAME).write_text("{not json", encoding="utf-8")
    with caplog.at_level("WARNING"):
        assert store.load(tmp_path) is None
    assert any("unreadable" in r.getMessage() for r in caplog.records)


def test_wrong_shape_is_corrupt(tmp_path: Path):
    store = CheckpointStore()
    (tmp_path / CHECKPOINT_NAME).write_text("[1, 2, 3]", encoding="utf-8")
    assert store.load(tmp_path) is None

    (tmp_path / CHECKPOINT_NAME).write_text(json.dumps({"items": []}), encoding="utf-8")
    assert store.load(tmp_path) is None

    bad_items = {"source_url": "u", "items": [{"index": "one", "id": "a", "title": "t", "url": "u"}]}
    (tmp_path / CHECKPOINT_NAME).write_text(json.dumps(bad_items), encoding="utf-8")
    assert store.load(tmp_path) is None


def test_older_documents_get_progress_defaults():
    doc = {
        "source_url": "https://mtlbooks.com/novel/x",
        "metadata": {"title": "X"},
        "items": [{"index": 1, "id": "chapter-1", "title": "c1", "url": "u1"}],
    }
    state = state_from_dict(doc)
    assert state.completed_ids == set()
    assert state.last_completed_index == 0
    assert state.metadata.title == "X"
    assert state.last_updated.tzinfo is not None


def test_completed_ids_outside_listing_are_dropped():
    doc = state_to_dict(_populated_state())
    doc["completed_ids"] = ["chapter-2", "chapter-99"]
    doc["last_completed_index"] = 99

    state = state_from_dict(doc)
    assert state.completed_ids == {"chapter-2"}
    assert state.last_completed_index == 2


def test_completed_ids_kept_before_listing_exists():
    state = state_from_dict({"source_url": "u", "completed_ids": ["chapter-4"], "last_completed_index": 4})
    assert state.completed_ids == {"chapter-4"}
    assert state.last_completed_index == 4


def test_document_is_pretty_sorted_json(tmp_path: Path):
    store = CheckpointStore()
    state = _populated_state()
    state.commit(_item(3))
    state.commit(_item(1))
    store.save(tmp_path, state)

    text = (tmp_path / CHECKPOINT_NAME).read_text(encoding="utf-8")
    assert "\n  " in text
    doc = json.loads(text)
    assert doc["completed_ids"] == ["chapter-1", "chapter-2", "chapter-3"]
    assert doc["last_completed_index"] == 3
    assert state_to_dict(state_from_dict(doc)) == doc


def test_save_failure_is_logged_not_raised(tmp_path: Path, caplog):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    # location under a regular file cannot be created
    with caplog.at_level("ERROR"):
        CheckpointStore().save(blocker / "sub", _populated_state())
    assert any("Save failed" in r.getMessage() for r in caplog.records)
