"""
Mediator: many agents, one operator.

Agents call ``submit_single`` / ``submit_multi`` and suspend until the
operator answers. Only one request is shown at a time (the active slot);
requests that arrive while the slot is taken wait in the backlog and are
promoted strictly in arrival order. Answers the operator staged in the
answer queue satisfy single-question requests without prompting at all.

Every mutation runs to completion inside one event-loop turn, so the slot,
backlog, answer queue and ledger never need a lock. After each mutation the
channel hub is told what changed and the journal schedules a save.

Nothing here raises for expected states. Stops, shutdowns and withdrawn
requests reach the caller as a ``UserResponse`` with ``cancelled=True``.
"""
import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from .answer_queue import AnswerQueue
from .channel import ChannelHub
from .choices import SHORT_QUESTION_THRESHOLD, classify, normalize_explicit_choices
from .journal import HISTORY_KEY, QUEUE_KEY, SESSION_KEY, Journal
from .ledger import MAX_HISTORY_ENTRIES, MAX_SESSION_ENTRIES, DurableHistory, SessionLedger
from .models import (
    DISPOSED_ENTRY,
    DISPOSED_VALUE,
    MULTI_CANCELLED_ENTRY,
    MULTI_CANCELLED_VALUE,
    OPERATOR_CANCELLED_ENTRY,
    OPERATOR_CANCELLED_VALUE,
    SUPERSEDED_ENTRY,
    Attachment,
    BacklogItem,
    PendingEntry,
    QueuedAnswer,
    Request,
    UserResponse,
    attachments_from_list,
)
from .questions import INVALID_QUESTIONS_VALUE, NO_QUESTIONS_VALUE, sanitize_questions, serialize_answers
from .utils import new_id, sanitize_operator_message
from .waiters import WaiterRegistry

logger = logging.getLogger(__name__)

TEMPLATE_HEADER = "\n\n[Auto-appended instructions]\n"


class Mediator:
    """Arbitrates agent requests against a single operator."""

    def __init__(
        self,
        journal: Journal,
        hub: ChannelHub,
        max_session_entries: int = MAX_SESSION_ENTRIES,
        max_history_entries: int = MAX_HISTORY_ENTRIES,
        max_queue_prompt_length: int = 100000,
        queue_save_delay: float = 0.3,
        session_save_delay: float = 1.0,
        history_save_delay: float = 2.0,
        processing_timeout: float = 30.0,
        short_question_threshold: int = SHORT_QUESTION_THRESHOLD,
        response_template: Optional[str] = None,
        on_processing_change: Optional[Callable[[bool], None]] = None,
    ):
        self.journal = journal
        self.hub = hub
        self.queue = AnswerQueue(max_queue_prompt_length)
        self.session = SessionLedger(max_session_entries)
        self.history = DurableHistory(max_history_entries)
        self.waiters = WaiterRegistry()

        self.processing_timeout = processing_timeout
        self.short_question_threshold = short_question_threshold
        self.response_template = response_template or None
        self.on_processing_change = on_processing_change

        self.processing = False
        self._processing_timer: Optional[asyncio.TimerHandle] = None
        self._active: Optional[Request] = None
        self._backlog: Deque[BacklogItem] = deque()
        self._disposed = False

        journal.register(QUEUE_KEY, self.queue.snapshot, queue_save_delay)
        journal.register(SESSION_KEY, self.session.snapshot, session_save_delay)
        journal.register(HISTORY_KEY, self.history.snapshot, history_save_delay)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def active_id(self) -> Optional[str]:
        return self._active.id if self._active else None

    @property
    def has_active(self) -> bool:
        return self._active is not None

    @property
    def backlog_depth(self) -> int:
        return len(self._backlog)

    @property
    def backlog_ids(self) -> List[str]:
        return [item.request.id for item in self._backlog]

    @property
    def disposed(self) -> bool:
        return self._disposed

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Restore the answer queue, session ledger and history from storage."""
        self.queue.restore(await self.journal.load(QUEUE_KEY))
        interrupted = self.session.restore(await self.journal.load(SESSION_KEY))
        self.history.restore(await self.journal.load(HISTORY_KEY))
        if interrupted:
            self.journal.schedule(SESSION_KEY)
        logger.info(
            f"Mediator started: {len(self.queue)} queued answers, "
            f"{len(self.session)} session entries, {len(self.history)} history entries"
        )

    def dispose(self) -> int:
        """
        Resolve every outstanding caller, then write state synchronously.

        Safe to call from teardown code with no running loop. Returns the
        number of callers that were cancelled.
        """
        if self._disposed:
            return 0
        self._disposed = True
        self._cancel_processing_timer()
        drained = self._cancel_all(DISPOSED_VALUE, DISPOSED_ENTRY)
        self.merge_history()
        self.journal.flush_blocking()
        logger.info(f"Mediator disposed ({drained} outstanding request(s) cancelled)")
        return drained

    async def shutdown(self) -> int:
        """Let running background writes land, then dispose."""
        await self.journal.drain()
        return self.dispose()

    # =========================================================================
    # Agent-facing submission
    # =========================================================================

    async def submit_single(
        self,
        question: str,
        context: Optional[str] = None,
        choices: Optional[Iterable[Any]] = None,
    ) -> UserResponse:
        """Ask the operator one question and wait for the answer."""
        question = question or ""
        explicit = normalize_explicit_choices(question, choices) if choices else None
        request = Request(
            id=new_id("tc"),
            kind="single",
            question=question,
            context=context or None,
            explicit_choices=explicit or None,
        )
        return await self.submit(request)

    async def submit_multi(self, questions: Any) -> UserResponse:
        """Ask several questions at once; the answer is a JSON document."""
        sanitized = sanitize_questions(questions)
        if sanitized is None:
            logger.warning("Rejected multi-question request: questions is not a list")
            return UserResponse(value=INVALID_QUESTIONS_VALUE)
        if not sanitized:
            return UserResponse(value=NO_QUESTIONS_VALUE)
        if len(questions) > len(sanitized):
            logger.info(f"Multi-question request truncated from {len(questions)} to {len(sanitized)} questions")
        request = Request(id=new_id("mq"), kind="multi", questions=sanitized)
        return await self.submit(request)

    async def submit(self, request: Request) -> UserResponse:
        """
        Route a request and suspend until it is settled.

        Order of precedence: a consumable answer queue satisfies it at once,
        a free slot makes it active, otherwise it joins the backlog.
        """
        if self._disposed:
            return UserResponse.cancellation(DISPOSED_VALUE)

        if request.kind == "single":
            item = self.queue.pop_next()
            if item is not None:
                return self._satisfy_from_queue(request, item)

        entry = self.session.record(PendingEntry(id=request.id, prompt=request.prompt, context=request.context))
        future = self.waiters.add(request.id)

        if self._active is None:
            self._activate(request)
        else:
            self._backlog.append(BacklogItem(request=request, entry=entry))
            logger.info(f"Queued agent request {request.id} ({len(self._backlog)} in backlog)")
            self._publish_backlog_depth()

        self._publish_session()
        self.journal.schedule(SESSION_KEY)

        try:
            return await future
        except asyncio.CancelledError:
            self._withdraw(request.id)
            raise

    # =========================================================================
    # Operator-facing resolution
    # =========================================================================

    def resolve_active(self, value: str, attachments: Optional[List[Attachment]] = None) -> bool:
        """Answer the active single-question request."""
        request = self._active
        if request is None:
            logger.warning("Ignoring answer: no active request")
            return False
        if request.kind != "single":
            logger.warning(f"Ignoring text answer for multi-question request {request.id}")
            return False

        attachments = list(attachments or [])
        entry = self.session.complete(request.id, value, attachments)
        if entry is None:
            logger.warning(f"Ignoring answer for {request.id}: already settled")
            return False

        self._active = None
        self.waiters.resolve(request.id, UserResponse(
            value=self._with_template(value),
            queue=self.queue.enabled,
            attachments=attachments,
        ))
        logger.info(f"Resolved {request.id}")
        self.hub.publish("tool_call_completed", entry=entry.to_dict())
        self._after_resolution()
        return True

    def resolve(self, request_id: str, value: str, attachments: Optional[List[Attachment]] = None) -> bool:
        """Answer ``request_id`` if it is the one on screen; anything else is late."""
        if request_id != self.active_id:
            logger.warning(f"Ignoring answer for {request_id}: not the active request")
            return False
        return self.resolve_active(value, attachments)

    def resolve_multi(self, request_id: str, answers: Any, cancelled: bool = False) -> bool:
        """Answer (or cancel) the active multi-question request."""
        request = self._active
        if request is None or request.id != request_id or request.kind != "multi":
            logger.warning(f"Ignoring multi-question answer for {request_id}: not the active request")
            return False

        if cancelled:
            self.session.cancel(request.id, MULTI_CANCELLED_ENTRY)
            self._active = None
            self.waiters.resolve(request.id, UserResponse.cancellation(MULTI_CANCELLED_VALUE))
            logger.info(f"Operator cancelled multi-question request {request.id}")
            self.hub.publish("tool_call_cancelled", id=request.id)
            self._set_processing(False)
            self._publish_session()
            self.journal.schedule(SESSION_KEY)
            self._promote_next()
            return True

        value = serialize_answers(answers)
        entry = self.session.complete(request.id, value)
        if entry is None:
            return False
        self._active = None
        # Structured answers go back as parseable JSON, without the template
        self.waiters.resolve(request.id, UserResponse(value=value, queue=self.queue.enabled))
        logger.info(f"Resolved multi-question request {request.id}")
        self.hub.publish("multi_question_completed", request_id=request.id)
        self._after_resolution()
        return True

    def cancel_active(self) -> int:
        """
        Operator stop: cancel the active request and the whole backlog.

        Returns the number of callers cancelled (0 when nothing was active).
        """
        if self._active is None and not self._backlog:
            logger.info("Stop requested with no active request")
            return 0
        count = self._cancel_all(OPERATOR_CANCELLED_VALUE, OPERATOR_CANCELLED_ENTRY)
        logger.info(f"Operator stop cancelled {count} request(s)")
        return count

    def submit_text(self, value: str, attachments: Optional[List[Attachment]] = None) -> bool:
        """
        Free text from the operator with no particular request in mind.

        Answers the active request if there is one; otherwise the text is
        staged in the answer queue and the queue is switched on. A
        multi-question request takes the text as the free-form answer to
        every one of its questions.
        """
        if self._active is not None and self._active.kind == "multi":
            if not value.strip():
                logger.warning(f"Ignoring empty answer for multi-question request {self._active.id}")
                return False
            answers = [
                {"header": q.header, "selected": [], "freeform_text": value}
                for q in self._active.questions or []
            ]
            return self.resolve_multi(self._active.id, answers)
        if self._active is not None:
            return self.resolve_active(value, attachments)
        item = self.queue.build(value, attachments)
        if item is None:
            logger.warning("Ignoring empty or oversized operator message")
            return False
        self.queue.append(item)
        self.queue.enabled = True
        logger.info(f"No active request; staged operator message as {item.id}")
        self._queue_changed()
        return True

    # =========================================================================
    # Answer queue management
    # =========================================================================

    def add_queue_prompt(self, prompt: str, attachments: Optional[List[Attachment]] = None,
                         item_id: Optional[str] = None) -> Optional[QueuedAnswer]:
        item = self.queue.build(prompt, attachments, item_id)
        if item is None:
            logger.warning("Rejected queue prompt: empty or too long")
            return None

        # An answer for the request already on screen is used straight away
        if self._can_answer_active_from_queue():
            self._answer_active_from_queue(item)
            return item

        self.queue.append(item)
        self._queue_changed()
        return item

    def remove_queue_prompt(self, item_id: str) -> bool:
        if not self.queue.remove(item_id):
            return False
        self._queue_changed()
        return True

    def edit_queue_prompt(self, item_id: str, prompt: str) -> bool:
        if not self.queue.edit(item_id, prompt):
            return False
        self._queue_changed()
        return True

    def reorder_queue(self, from_index: Any, to_index: Any) -> bool:
        if not self.queue.reorder(from_index, to_index):
            return False
        self._queue_changed()
        return True

    def clear_queue(self) -> None:
        self.queue.clear()
        self._queue_changed()

    def toggle_queue(self, enabled: Optional[bool] = None) -> bool:
        self.queue.enabled = (not self.queue.enabled) if enabled is None else bool(enabled)
        self._queue_changed()
        if self.queue.enabled:
            self._consume_for_active()
        return self.queue.enabled

    def pause_queue(self) -> None:
        self.queue.paused = True
        self._queue_changed()

    def resume_queue(self) -> None:
        self.queue.paused = False
        self._queue_changed()
        self._consume_for_active()

    # =========================================================================
    # Ledger management
    # =========================================================================

    def clear_current_session(self) -> int:
        removed = self.session.clear()
        self._publish_session()
        self.journal.schedule(SESSION_KEY)
        return removed

    def remove_history_item(self, entry_id: str) -> bool:
        if not self.history.remove(entry_id):
            return False
        self._history_changed()
        return True

    def clear_persisted_history(self) -> None:
        self.history.clear()
        self._history_changed()

    def merge_history(self) -> int:
        """Copy completed session entries into durable history."""
        added = self.history.merge(self.session.completed())
        if added:
            self._history_changed()
        return added

    def set_response_template(self, template: Optional[str]) -> None:
        self.response_template = (template or "").strip() or None

    # =========================================================================
    # Remote sync
    # =========================================================================

    def get_state(self) -> Dict[str, Any]:
        """Everything a freshly connected channel needs to draw itself."""
        active = None
        if self._active is not None:
            msg_type, data = self._pending_notification(self._active)
            active = {"type": msg_type, **data}
        return {
            "queue": [item.to_dict() for item in self.queue.items],
            "queue_enabled": self.queue.enabled,
            "queue_paused": self.queue.paused,
            "current_session": self.session.to_list(),
            "persisted_history": self.history.to_list(),
            "active_request": active,
            "backlog_count": len(self._backlog),
            "processing": self.processing,
            "response_template": self.response_template,
        }

    def handle_message(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Apply one operator message ``{"type": ..., "data": {...}}``.

        Returns a reply for the sender when the message asks for one.
        """
        if not isinstance(message, dict):
            logger.warning(f"Ignoring malformed operator message: {message!r}")
            return None
        msg_type = message.get("type")
        data = message.get("data") or {}
        if not isinstance(data, dict):
            data = {}

        def text(key: str) -> str:
            return sanitize_operator_message(str(data.get(key) or ""))

        item_id = str(data.get("id") or "")
        attachments = attachments_from_list(data.get("attachments"))

        if msg_type == "submit":
            self.submit_text(text("value"), attachments)

        elif msg_type == "resolve":
            self.resolve(item_id, text("value"), attachments)

        elif msg_type == "resolve_multi":
            self.resolve_multi(str(data.get("request_id") or ""), data.get("answers"),
                               bool(data.get("cancelled", False)))

        elif msg_type == "cancel_active":
            self.cancel_active()

        elif msg_type == "add_queue_prompt":
            self.add_queue_prompt(text("prompt"), attachments, data.get("id"))

        elif msg_type == "remove_queue_prompt":
            self.remove_queue_prompt(item_id)

        elif msg_type == "edit_queue_prompt":
            self.edit_queue_prompt(item_id, text("prompt"))

        elif msg_type == "reorder_queue":
            self.reorder_queue(data.get("from_index"), data.get("to_index"))

        elif msg_type == "toggle_queue":
            self.toggle_queue(data.get("enabled"))

        elif msg_type == "clear_queue":
            self.clear_queue()

        elif msg_type == "pause_queue":
            self.pause_queue()

        elif msg_type == "resume_queue":
            self.resume_queue()

        elif msg_type == "clear_current_session":
            self.clear_current_session()

        elif msg_type == "remove_history_item":
            self.remove_history_item(item_id)

        elif msg_type == "clear_persisted_history":
            self.clear_persisted_history()

        elif msg_type == "set_response_template":
            self.set_response_template(data.get("template"))

        elif msg_type == "get_state":
            return {"type": "state", "data": self.get_state()}

        else:
            logger.warning(f"Unknown operator message type: {msg_type}")
        return None

    # =========================================================================
    # Slot and backlog internals
    # =========================================================================

    def _activate(self, request: Request) -> None:
        self._active = request
        self._set_processing(False)
        msg_type, data = self._pending_notification(request)
        self.hub.publish(msg_type, **data)

    def _pending_notification(self, request: Request) -> Tuple[str, Dict[str, Any]]:
        if request.kind == "multi":
            return "multi_question_pending", {
                "request_id": request.id,
                "questions": [q.to_dict() for q in request.questions or []],
            }
        choices, is_approval = classify(request.question, request.explicit_choices, self.short_question_threshold)
        return "tool_call_pending", {
            "id": request.id,
            "prompt": request.question,
            "context": request.context,
            "is_approval_question": is_approval,
            "choices": [c.to_dict() for c in choices] if choices else None,
        }

    def _promote_next(self) -> None:
        """Fill a free slot from the backlog, oldest first."""
        while self._active is None and self._backlog and not self._disposed:
            item = self._backlog.popleft()
            self._publish_backlog_depth()

            # The operator may have staged answers while the last request was up
            if item.request.kind == "single" and self.queue.consumable:
                self._satisfy_from_queue(item.request, self.queue.pop_next())
                continue

            logger.info(f"Promoted {item.request.id} from backlog ({len(self._backlog)} still waiting)")
            self._activate(item.request)

    def _satisfy_from_queue(self, request: Request, item: QueuedAnswer) -> UserResponse:
        """Settle ``request`` with a staged answer without showing it to the operator."""
        if self.session.get(request.id) is None:
            self.session.record(PendingEntry(id=request.id, prompt=request.prompt, context=request.context))
        self.session.complete(request.id, item.prompt, item.attachments, from_queue=True)

        response = UserResponse(
            value=self._with_template(item.prompt),
            queue=True,
            attachments=list(item.attachments),
        )
        self.waiters.resolve(request.id, response)
        logger.info(f"Auto-answered {request.id} from queue item {item.id} ({len(self.queue)} left)")

        self._publish_queue()
        self._publish_session()
        self.journal.schedule(QUEUE_KEY)
        self.journal.schedule(SESSION_KEY)
        return response

    def _can_answer_active_from_queue(self) -> bool:
        return (
            self._active is not None
            and self._active.kind == "single"
            and self.queue.enabled
            and not self.queue.paused
        )

    def _consume_for_active(self) -> None:
        if self._can_answer_active_from_queue() and self.queue.items:
            self._answer_active_from_queue(self.queue.pop_next())

    def _answer_active_from_queue(self, item: QueuedAnswer) -> None:
        request = self._active
        entry = self.session.complete(request.id, item.prompt, item.attachments, from_queue=True)
        if entry is None:
            return
        self._active = None
        self.waiters.resolve(request.id, UserResponse(
            value=self._with_template(item.prompt),
            queue=True,
            attachments=list(item.attachments),
        ))
        logger.info(f"Answered active request {request.id} from queue item {item.id}")
        self.hub.publish("tool_call_completed", entry=entry.to_dict())
        self._queue_changed()
        self._after_resolution()

    def _after_resolution(self) -> None:
        self._set_processing(True)
        self._publish_session()
        self.journal.schedule(SESSION_KEY)
        self._promote_next()

    def _cancel_all(self, value: str, entry_message: str) -> int:
        """Cancel the active request and drain the backlog in one turn."""
        cancelled = []
        if self._active is not None:
            cancelled.append(self._active.id)
            self._active = None
        while self._backlog:
            cancelled.append(self._backlog.popleft().request.id)

        for request_id in cancelled:
            self.session.cancel(request_id, entry_message)
            self.waiters.resolve(request_id, UserResponse.cancellation(value))
            self.hub.publish("tool_call_cancelled", id=request_id)

        if cancelled:
            self._publish_backlog_depth()
            self._set_processing(False)
            self._publish_session()
            self.journal.schedule(SESSION_KEY)
        return len(cancelled)

    def _withdraw(self, request_id: str) -> None:
        """The caller stopped waiting; release whatever it held."""
        self.waiters.discard(request_id)
        if self.session.cancel(request_id, SUPERSEDED_ENTRY) is None:
            # Settled in the same turn the caller gave up
            return

        if self.active_id == request_id:
            self._active = None
            logger.info(f"Request {request_id} superseded while active")
            self.hub.publish("tool_call_cancelled", id=request_id)
            self._promote_next()
        else:
            self._backlog = deque(i for i in self._backlog if i.request.id != request_id)
            logger.info(f"Request {request_id} superseded while in backlog")
            self._publish_backlog_depth()

        self._publish_session()
        self.journal.schedule(SESSION_KEY)

    def _with_template(self, value: str) -> str:
        if not self.response_template:
            return value
        return f"{value}{TEMPLATE_HEADER}{self.response_template}"

    # =========================================================================
    # Processing indicator
    # =========================================================================

    def _set_processing(self, processing: bool) -> None:
        self._cancel_processing_timer()
        changed = processing != self.processing
        self.processing = processing

        if processing:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._processing_timer = loop.call_later(self.processing_timeout, self._processing_timed_out)

        if changed:
            self.hub.publish("processing_state", processing=processing)
            if self.on_processing_change:
                self.on_processing_change(processing)

    def _processing_timed_out(self) -> None:
        self._processing_timer = None
        if not self.processing:
            return
        logger.info(f"Processing indicator cleared after {self.processing_timeout}s")
        self.processing = False
        self.hub.publish("clear_processing")
        if self.on_processing_change:
            self.on_processing_change(False)

    def _cancel_processing_timer(self) -> None:
        if self._processing_timer is not None:
            self._processing_timer.cancel()
            self._processing_timer = None

    # =========================================================================
    # Notifications
    # =========================================================================

    def _queue_changed(self) -> None:
        self._publish_queue()
        self.journal.schedule(QUEUE_KEY)

    def _history_changed(self) -> None:
        self.hub.publish("update_persisted_history", history=self.history.to_list())
        self.journal.schedule(HISTORY_KEY)

    def _publish_queue(self) -> None:
        self.hub.publish("update_queue", **self.queue.snapshot())

    def _publish_session(self) -> None:
        self.hub.publish("update_current_session", history=self.session.to_list())

    def _publish_backlog_depth(self) -> None:
        self.hub.publish("queued_agent_request_count", count=len(self._backlog))
