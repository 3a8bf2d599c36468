"""
Persistence journal for the answer queue, session ledger and durable history.

Each key is a JSON blob in a store. Mutations mark a key dirty and schedule
a debounced background flush, so a burst of changes costs one write. A
flush always serializes the state as it is at flush time, not as it was
when the flush was scheduled.

There are two ways to flush, sharing the same snapshot/write path:

- ``await journal.flush()`` writes dirty keys from a worker thread, used by
  the debounce timers and anywhere an event loop is running
- ``journal.flush_blocking()`` writes dirty keys synchronously, for process
  teardown when nothing scheduled on the loop is guaranteed to run

Clean keys are skipped by both. Write failures are logged and the key stays
dirty so the next flush retries; in-memory state is never touched.
"""
import asyncio
import copy
import itertools
import json
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Set

logger = logging.getLogger(__name__)

QUEUE_KEY = "queue"
SESSION_KEY = "current-session"
HISTORY_KEY = "tool-history"


class Store(Protocol):
    """Opaque key -> JSON-compatible dict storage."""

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def save(self, key: str, data: Dict[str, Any]) -> None:
        ...


class JsonFileStore:
    """One ``<key>.json`` file per key under ``directory``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def save(self, key: str, data: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        tmp = path.with_suffix(f".{os.getpid()}.{threading.get_ident()}.tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")

        # Answers can hold anything the operator typed; keep them private on Unix
        if sys.platform != "win32":
            os.chmod(tmp, 0o600)
        os.replace(tmp, path)


class MemoryStore:
    """Store kept in a dict; what survives a "restart" is whatever was saved."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self.data: Dict[str, Dict[str, Any]] = copy.deepcopy(initial or {})
        self.saves = 0

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        value = self.data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def save(self, key: str, data: Dict[str, Any]) -> None:
        # Round-trip through JSON so non-serializable state fails here as it would on disk
        self.data[key] = json.loads(json.dumps(data))
        self.saves += 1


class Journal:
    """Debounced writer for a fixed set of keys."""

    def __init__(self, store: Store):
        self.store = store
        self._sources: Dict[str, Callable[[], Dict[str, Any]]] = {}
        self._delays: Dict[str, float] = {}
        self._dirty: Set[str] = set()
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

        # Writes can come from worker threads and from teardown at once;
        # a sequence number per snapshot keeps an older one from landing last
        self._sequence = itertools.count(1)
        self._written: Dict[str, int] = {}
        self._write_lock = threading.Lock()

    def register(self, key: str, source: Callable[[], Dict[str, Any]], delay: float) -> None:
        """``source`` is called at flush time to produce the blob for ``key``."""
        self._sources[key] = source
        self._delays[key] = delay

    def is_dirty(self, key: str) -> bool:
        return key in self._dirty

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Read a key once at startup. Unreadable data counts as absent."""
        try:
            return await asyncio.to_thread(self.store.load, key)
        except Exception as e:
            logger.error(f"Failed to load {key}: {e}")
            return None

    def schedule(self, key: str) -> None:
        """Mark ``key`` dirty and (re)start its debounce timer."""
        self._dirty.add(key)
        self._cancel_timer(key)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (teardown, sync callers): flush_blocking picks it up
            return
        self._timers[key] = loop.call_later(self._delays.get(key, 0), self._spawn_flush, key)

    def _spawn_flush(self, key: str) -> None:
        self._timers.pop(key, None)
        task = asyncio.create_task(self.flush(key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _take_snapshot(self, key: str):
        self._cancel_timer(key)
        self._dirty.discard(key)
        return next(self._sequence), self._sources[key]()

    def _write(self, key: str, sequence: int, data: Dict[str, Any]) -> None:
        with self._write_lock:
            if sequence <= self._written.get(key, 0):
                return
            self.store.save(key, data)
            self._written[key] = sequence

    async def flush(self, key: Optional[str] = None) -> None:
        """Write dirty keys (or just ``key``) without blocking the loop."""
        keys = [key] if key else list(self._dirty)
        for k in keys:
            if k not in self._dirty:
                continue
            sequence, data = self._take_snapshot(k)
            try:
                await asyncio.to_thread(self._write, k, sequence, data)
            except Exception as e:
                logger.error(f"Failed to save {k}: {e}")
                self._dirty.add(k)

    def flush_blocking(self) -> None:
        """Write every dirty key synchronously. Best effort, never raises."""
        for k in list(self._dirty):
            sequence, data = self._take_snapshot(k)
            try:
                self._write(k, sequence, data)
            except Exception as e:
                logger.error(f"Failed to save {k} during shutdown: {e}")
                self._dirty.add(k)

    async def drain(self) -> None:
        """Wait for background writes that are already running."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
