"""
Answer queue: answers the operator writes before the agent asks.

When the operator already knows the next few steps they can stage answers
here. While the queue is enabled and not paused, each incoming request
takes the oldest staged answer instead of waiting for a live reply.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from .models import Attachment, QueuedAnswer
from .utils import new_id

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 100000

_QUEUE_ID = re.compile(r'^q_\d+_[a-z0-9]+$')


def is_valid_queue_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_QUEUE_ID.match(value))


class AnswerQueue:
    """FIFO of staged answers plus the enabled/paused switches."""

    def __init__(self, max_prompt_length: int = MAX_PROMPT_LENGTH):
        self.max_prompt_length = max_prompt_length
        self.items: List[QueuedAnswer] = []
        self.enabled: bool = True
        self.paused: bool = False

    def __len__(self) -> int:
        return len(self.items)

    @property
    def consumable(self) -> bool:
        """Whether the head may be handed to a request right now."""
        return self.enabled and not self.paused and bool(self.items)

    def build(self, prompt: str, attachments: Optional[List[Attachment]] = None,
              item_id: Optional[str] = None) -> Optional[QueuedAnswer]:
        """Validate a new answer without adding it. None if it is blank or too long."""
        trimmed = (prompt or "").strip()
        if not trimmed or len(trimmed) > self.max_prompt_length:
            return None
        if not is_valid_queue_id(item_id):
            item_id = new_id("q")
        return QueuedAnswer(id=item_id, prompt=trimmed, attachments=list(attachments or []))

    def append(self, item: QueuedAnswer) -> None:
        self.items.append(item)

    def pop_next(self) -> Optional[QueuedAnswer]:
        """Take the head if consumption is currently allowed."""
        if not self.consumable:
            return None
        return self.items.pop(0)

    def remove(self, item_id: str) -> bool:
        if not is_valid_queue_id(item_id):
            return False
        before = len(self.items)
        self.items = [i for i in self.items if i.id != item_id]
        return len(self.items) != before

    def edit(self, item_id: str, prompt: str) -> bool:
        if not is_valid_queue_id(item_id):
            return False
        trimmed = (prompt or "").strip()
        if not trimmed or len(trimmed) > self.max_prompt_length:
            return False
        for item in self.items:
            if item.id == item_id:
                item.prompt = trimmed
                return True
        return False

    def reorder(self, from_index: Any, to_index: Any) -> bool:
        if not isinstance(from_index, int) or not isinstance(to_index, int):
            return False
        if isinstance(from_index, bool) or isinstance(to_index, bool):
            return False
        size = len(self.items)
        if not (0 <= from_index < size and 0 <= to_index < size):
            return False
        item = self.items.pop(from_index)
        self.items.insert(to_index, item)
        return True

    def clear(self) -> None:
        self.items = []

    def snapshot(self) -> Dict[str, Any]:
        return {
            "queue": [item.to_dict() for item in self.items],
            "enabled": self.enabled,
            "paused": self.paused,
        }

    def restore(self, data: Optional[Dict[str, Any]]) -> None:
        """Load persisted state. No saved state means an empty, enabled queue."""
        if data is None:
            self.items, self.enabled, self.paused = [], True, False
            return
        raw = data.get("queue") if isinstance(data, dict) else None
        loaded = (QueuedAnswer.from_dict(r) for r in raw) if isinstance(raw, list) else ()
        self.items = [item for item in loaded if item]
        self.enabled = isinstance(data, dict) and data.get("enabled") is True
        self.paused = isinstance(data, dict) and data.get("paused") is True
        logger.info(f"Restored answer queue ({len(self.items)} items, enabled={self.enabled}, paused={self.paused})")
