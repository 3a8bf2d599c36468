"""
Data model for the switchboard.

A Request is an agent's demand for human input. While it is alive the
session ledger tracks it as a PendingEntry; the answer it eventually gets
is a UserResponse. Answers the operator writes ahead of time wait in the
answer queue as QueuedAnswer items.

Everything here serializes to plain dicts (snake_case keys) so it can go
to the journal and over the operator WebSocket unchanged.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from .utils import now_ms

RequestKind = Literal["single", "multi"]
EntryStatus = Literal["pending", "completed", "cancelled"]

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

# Values handed back to a caller whose request did not get a real answer.
# The ``*_ENTRY`` variants are what the operator sees in history.
OPERATOR_CANCELLED_VALUE = "[CANCELLED: Operator stopped the request]"
OPERATOR_CANCELLED_ENTRY = "[Cancelled by operator (stop)]"
MULTI_CANCELLED_VALUE = "[CANCELLED: Operator cancelled multi-question input]"
MULTI_CANCELLED_ENTRY = "[Cancelled by operator]"
SUPERSEDED_ENTRY = "[Superseded: caller withdrew the request]"
DISPOSED_VALUE = "[CANCELLED: Switchboard shut down]"
DISPOSED_ENTRY = "[Cancelled: switchboard shut down]"
RESTART_ENTRY = "[Cancelled: interrupted by restart]"


@dataclass
class Attachment:
    """A file, image or context reference attached to an answer."""
    id: str
    name: str
    uri: str
    is_temporary: bool = False
    is_folder: bool = False
    is_text_reference: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "uri": self.uri,
            "is_temporary": self.is_temporary,
            "is_folder": self.is_folder,
            "is_text_reference": self.is_text_reference,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['Attachment']:
        if not isinstance(data, dict) or not data.get("uri"):
            return None
        return cls(
            id=str(data.get("id") or data.get("uri")),
            name=str(data.get("name") or data.get("uri")),
            uri=str(data["uri"]),
            is_temporary=bool(data.get("is_temporary", False)),
            is_folder=bool(data.get("is_folder", False)),
            is_text_reference=bool(data.get("is_text_reference", False)),
        )


def attachments_from_list(raw: Any) -> List[Attachment]:
    """Coerce a loosely-typed list into attachments, dropping junk."""
    if not isinstance(raw, list):
        return []
    result = []
    for item in raw:
        if isinstance(item, Attachment):
            result.append(item)
            continue
        attachment = Attachment.from_dict(item)
        if attachment:
            result.append(attachment)
    return result


@dataclass
class Choice:
    """A one-tap answer offered next to the free-text input."""
    label: str
    value: str
    short_label: str

    def to_dict(self) -> Dict[str, str]:
        return {"label": self.label, "value": self.value, "short_label": self.short_label}


@dataclass
class QuestionOption:
    label: str
    description: Optional[str] = None
    recommended: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"label": self.label, "recommended": self.recommended}
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass
class Question:
    """One sub-question of a multi-question request."""
    header: str
    question: str
    options: Optional[List[QuestionOption]] = None
    multi_select: bool = False
    allow_freeform_input: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header": self.header,
            "question": self.question,
            "options": [o.to_dict() for o in self.options] if self.options is not None else None,
            "multi_select": self.multi_select,
            "allow_freeform_input": self.allow_freeform_input,
        }


@dataclass
class Request:
    """A caller's demand for human input."""
    id: str
    kind: RequestKind
    question: str = ""
    context: Optional[str] = None
    explicit_choices: Optional[List[Choice]] = None
    questions: Optional[List[Question]] = None
    created_at: int = field(default_factory=now_ms)

    @property
    def prompt(self) -> str:
        """Text shown in history for this request."""
        if self.kind == "multi" and self.questions:
            return "\n".join(
                f"{i + 1}. [{q.header}] {q.question}" for i, q in enumerate(self.questions)
            )
        return self.question


@dataclass
class PendingEntry:
    """Ledger record of one request's lifecycle."""
    id: str
    prompt: str
    context: Optional[str] = None
    response: str = ""
    timestamp: int = field(default_factory=now_ms)
    from_queue: bool = False
    status: EntryStatus = STATUS_PENDING
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status != STATUS_PENDING

    def to_dict(self, keep_temporary: bool = True) -> Dict[str, Any]:
        attachments = [
            a.to_dict() for a in self.attachments if keep_temporary or not a.is_temporary
        ]
        return {
            "id": self.id,
            "prompt": self.prompt,
            "context": self.context,
            "response": self.response,
            "timestamp": self.timestamp,
            "from_queue": self.from_queue,
            "status": self.status,
            "attachments": attachments,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['PendingEntry']:
        if not isinstance(data, dict) or not data.get("id"):
            return None
        status = data.get("status")
        if status not in (STATUS_PENDING, STATUS_COMPLETED, STATUS_CANCELLED):
            status = STATUS_CANCELLED
        try:
            timestamp = int(data.get("timestamp") or now_ms())
        except (TypeError, ValueError):
            timestamp = now_ms()
        return cls(
            id=str(data["id"]),
            prompt=str(data.get("prompt") or ""),
            context=data.get("context"),
            response=str(data.get("response") or ""),
            timestamp=timestamp,
            from_queue=bool(data.get("from_queue", False)),
            status=status,
            attachments=attachments_from_list(data.get("attachments")),
        )


@dataclass
class QueuedAnswer:
    """An answer the operator staged ahead of demand."""
    id: str
    prompt: str
    attachments: List[Attachment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "attachments": [a.to_dict() for a in self.attachments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['QueuedAnswer']:
        if not isinstance(data, dict) or not data.get("id") or not data.get("prompt"):
            return None
        return cls(
            id=str(data["id"]),
            prompt=str(data["prompt"]),
            attachments=attachments_from_list(data.get("attachments")),
        )


@dataclass
class UserResponse:
    """What a suspended caller receives once its request is settled."""
    value: str
    queue: bool = False
    attachments: List[Attachment] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "queue": self.queue,
            "attachments": [a.to_dict() for a in self.attachments],
            "cancelled": self.cancelled,
        }

    @classmethod
    def cancellation(cls, value: str) -> 'UserResponse':
        return cls(value=value, queue=False, attachments=[], cancelled=True)


@dataclass
class BacklogItem:
    """A request waiting for the slot. Its caller's future lives in the waiter registry."""
    request: Request
    entry: PendingEntry
