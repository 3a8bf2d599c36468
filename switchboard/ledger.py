"""
Session ledger and durable history.

The session ledger records every request this process has seen, newest
first, including ones still pending or parked in the backlog. It keeps a
dict index beside the ordered list for O(1) lookup by id; both are updated
together on every mutation.

Durable history outlives the process but only ever holds completed
entries. A cancelled or pending request is meaningless after a restart.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from .models import (
    RESTART_ENTRY,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    Attachment,
    PendingEntry,
)
from .utils import now_ms

logger = logging.getLogger(__name__)

MAX_SESSION_ENTRIES = 200
MAX_HISTORY_ENTRIES = 100


class SessionLedger:
    """Bounded, newest-first record of this process's requests."""

    def __init__(self, max_entries: int = MAX_SESSION_ENTRIES):
        self.max_entries = max_entries
        self._entries: List[PendingEntry] = []
        self._index: Dict[str, PendingEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def get(self, entry_id: str) -> Optional[PendingEntry]:
        return self._index.get(entry_id)

    def record(self, entry: PendingEntry) -> PendingEntry:
        """Add a new entry at the front, then trim the oldest beyond the bound."""
        self._entries.insert(0, entry)
        self._index[entry.id] = entry
        self._trim()
        return entry

    def complete(self, entry_id: str, response: str, attachments: Optional[List[Attachment]] = None,
                 from_queue: bool = False) -> Optional[PendingEntry]:
        """Mark a pending entry completed. Terminal entries are left untouched."""
        entry = self._index.get(entry_id)
        if entry is None or entry.is_terminal:
            return None
        entry.response = response
        entry.attachments = list(attachments or [])
        entry.status = STATUS_COMPLETED
        entry.from_queue = from_queue
        entry.timestamp = now_ms()
        return entry

    def cancel(self, entry_id: str, message: str) -> Optional[PendingEntry]:
        entry = self._index.get(entry_id)
        if entry is None or entry.is_terminal:
            return None
        entry.response = message
        entry.status = STATUS_CANCELLED
        entry.timestamp = now_ms()
        return entry

    def clear(self) -> int:
        """Drop every finished entry; pending ones stay so their answers have a home."""
        kept = [e for e in self._entries if e.status == STATUS_PENDING]
        removed = len(self._entries) - len(kept)
        self._entries = kept
        self._index = {e.id: e for e in kept}
        return removed

    def completed(self) -> List[PendingEntry]:
        return [e for e in self._entries if e.status == STATUS_COMPLETED]

    def _trim(self) -> None:
        excess = len(self._entries) - self.max_entries
        if excess <= 0:
            return
        # Oldest first, and never an entry whose caller is still waiting
        for entry in reversed(list(self._entries)):
            if excess == 0:
                break
            if entry.is_terminal:
                self._entries.remove(entry)
                self._index.pop(entry.id, None)
                excess -= 1

    def snapshot(self) -> Dict[str, Any]:
        # Temporary attachments (pasted images) don't survive the process
        return {"history": [e.to_dict(keep_temporary=False) for e in self._entries]}

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    def restore(self, data: Optional[Dict[str, Any]]) -> int:
        """
        Load a saved session after a restart.

        Entries that were still pending belonged to callers of the previous
        process; nobody can answer them now, so they become cancelled.
        Returns the number of entries reclassified.
        """
        raw = data.get("history") if isinstance(data, dict) else None
        entries = [e for e in (PendingEntry.from_dict(r) for r in raw) if e] if isinstance(raw, list) else []

        interrupted = 0
        for entry in entries:
            entry.attachments = [a for a in entry.attachments if not a.is_temporary]
            if entry.status == STATUS_PENDING:
                entry.status = STATUS_CANCELLED
                entry.response = entry.response or RESTART_ENTRY
                interrupted += 1

        self._entries = entries[:self.max_entries]
        self._index = {e.id: e for e in self._entries}
        if interrupted:
            logger.warning(f"{interrupted} request(s) were interrupted by restart and marked cancelled")
        return interrupted


class DurableHistory:
    """Completed entries kept across restarts, newest first."""

    def __init__(self, max_entries: int = MAX_HISTORY_ENTRIES):
        self.max_entries = max_entries
        self._entries: List[PendingEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def __contains__(self, entry_id: str) -> bool:
        return any(e.id == entry_id for e in self._entries)

    def merge(self, entries: Iterable[PendingEntry]) -> int:
        """Prepend completed entries not already present. Returns how many were added."""
        known = {e.id for e in self._entries}
        fresh = [e for e in entries if e.status == STATUS_COMPLETED and e.id not in known]
        if not fresh:
            return 0
        self._entries = (fresh + self._entries)[:self.max_entries]
        return len(fresh)

    def remove(self, entry_id: str) -> bool:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.id != entry_id]
        return len(self._entries) != before

    def clear(self) -> None:
        self._entries = []

    def snapshot(self) -> Dict[str, Any]:
        return {"history": [e.to_dict(keep_temporary=False) for e in self._entries]}

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    def restore(self, data: Optional[Dict[str, Any]]) -> None:
        raw = data.get("history") if isinstance(data, dict) else None
        entries = [e for e in (PendingEntry.from_dict(r) for r in raw) if e] if isinstance(raw, list) else []
        self._entries = [e for e in entries if e.status == STATUS_COMPLETED][:self.max_entries]
