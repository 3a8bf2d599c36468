import asyncio
import json
import logging
import stat
import sys

import pytest

from switchboard.journal import JsonFileStore, Journal, MemoryStore


class FailingStore(MemoryStore):
    def __init__(self):
        super().__init__()
        self.fail = True

    def save(self, key, data):
        if self.fail:
            raise OSError("disk full")
        super().save(key, data)


@pytest.mark.asyncio
async def test_burst_of_changes_is_one_write() -> None:
    store = MemoryStore()
    journal = Journal(store)
    state = {"n": 0}
    journal.register("queue", lambda: dict(state), delay=0.01)

    for i in range(5):
        state["n"] = i
        journal.schedule("queue")
    await asyncio.sleep(0.05)
    await journal.drain()

    assert store.saves == 1
    assert store.data["queue"] == {"n": 4}
    assert not journal.is_dirty("queue")


@pytest.mark.asyncio
async def test_flush_writes_state_at_flush_time() -> None:
    store = MemoryStore()
    journal = Journal(store)
    state = {"items": ["a"]}
    journal.register("queue", lambda: {"items": list(state["items"])}, delay=10)

    journal.schedule("queue")
    state["items"].append("b")
    await journal.flush()

    assert store.data["queue"] == {"items": ["a", "b"]}


@pytest.mark.asyncio
async def test_clean_keys_are_skipped() -> None:
    store = MemoryStore()
    journal = Journal(store)
    journal.register("queue", lambda: {}, delay=10)
    journal.register("tool-history", lambda: {}, delay=10)

    journal.schedule("queue")
    await journal.flush()
    await journal.flush()

    assert store.saves == 1
    assert "tool-history" not in store.data


@pytest.mark.asyncio
async def test_failed_write_stays_dirty(caplog) -> None:
    store = FailingStore()
    journal = Journal(store)
    journal.register("queue", lambda: {"x": 1}, delay=10)

    journal.schedule("queue")
    with caplog.at_level(logging.ERROR):
        await journal.flush()
    assert journal.is_dirty("queue")
    assert "Failed to save queue" in caplog.text

    store.fail = False
    await journal.flush()
    assert store.data["queue"] == {"x": 1}
    assert not journal.is_dirty("queue")


def test_schedule_without_loop_marks_dirty_for_blocking_flush() -> None:
    store = MemoryStore()
    journal = Journal(store)
    journal.register("current-session", lambda: {"history": []}, delay=1.0)

    journal.schedule("current-session")
    assert journal.is_dirty("current-session")
    assert store.saves == 0

    journal.flush_blocking()
    assert store.data["current-session"] == {"history": []}
    assert not journal.is_dirty("current-session")


@pytest.mark.asyncio
async def test_load_failure_counts_as_absent(tmp_path) -> None:
    (tmp_path / "queue.json").write_text("{not json", encoding="utf-8")
    journal = Journal(JsonFileStore(tmp_path))
    assert await journal.load("queue") is None
    assert await journal.load("missing") is None


def test_memory_store_rejects_unserializable_state() -> None:
    store = MemoryStore()
    with pytest.raises(TypeError):
        store.save("queue", {"bad": object()})


def test_json_file_store_round_trip(tmp_path) -> None:
    store = JsonFileStore(tmp_path / "state")
    store.save("queue", {"queue": [], "enabled": True})

    path = tmp_path / "state" / "queue.json"
    assert json.loads(path.read_text(encoding="utf-8")) == {"queue": [], "enabled": True}
    assert store.load("queue") == {"queue": [], "enabled": True}
    assert store.load("current-session") is None
    assert list((tmp_path / "state").glob("*.tmp")) == []


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_json_file_store_is_private(tmp_path) -> None:
    store = JsonFileStore(tmp_path)
    store.save("current-session", {"history": []})
    mode = stat.S_IMODE((tmp_path / "current-session.json").stat().st_mode)
    assert mode == 0o600
