"""
Remote operator console.

Connects to a running switchboard over its /ws endpoint and lets the
operator answer agents from another terminal:

    switchboard attend --url ws://host:8000/ws --api-key xxx

Typed text answers the request on screen (or is staged in the answer queue
when nothing is waiting). A number picks the matching choice, y/n answers
an approval question. Multi-question requests take one reply per question
separated by ';', where option numbers select and any other words are
free text: ``1; 2,3; use the staging db``.

Commands: /stop  /skip  /queue <text>  /pause  /resume  /state  /quit
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import websockets

from .console import log, render_questions, render_request

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 5

HELP = "Commands: /stop  /skip  /queue <text>  /pause  /resume  /state  /quit"


def build_multi_answers(questions: List[Dict[str, Any]], line: str) -> List[Dict[str, Any]]:
    """Turn ``"1; 2,3; some text"`` into one answer per question."""
    replies = [part.strip() for part in line.split(";")]
    answers = []
    for index, question in enumerate(questions):
        reply = replies[index] if index < len(replies) else ""
        options = question.get("options") or []
        selected, words = [], []
        for token in reply.replace(",", " ").split():
            if token.isdigit() and 1 <= int(token) <= len(options):
                selected.append(options[int(token) - 1].get("label", ""))
            else:
                words.append(token)
        if selected and not question.get("multi_select"):
            selected = selected[:1]
        answers.append({
            "header": question.get("header", ""),
            "selected": selected,
            "freeform_text": " ".join(words) or None,
        })
    return answers


class OperatorClient:
    """
    Operator client for the switchboard WebSocket.

    Tracks what the switchboard is showing so typed shortcuts can be
    resolved locally into full operator messages.
    """

    def __init__(self, url: str, api_key: str = ""):
        self._url = url
        self._api_key = api_key
        self._ws = None
        self._is_running = False
        self._listen_task: Optional[asyncio.Task] = None
        self.active: Optional[Dict[str, Any]] = None
        self.backlog = 0
        self.queue_size = 0

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def _connect(self):
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else None
        # Library keepalive is off; the switchboard sends JSON pings
        return await websockets.connect(self._url, additional_headers=headers, ping_interval=None)

    async def start(self) -> None:
        """Connect to the switchboard and start listening."""
        if self._is_running:
            return
        self._ws = await self._connect()
        self._is_running = True
        log(f"Connected to {self._url}", "OK")
        self._listen_task = asyncio.create_task(self._listen_loop())

    async def stop(self) -> None:
        """Disconnect from the switchboard."""
        self._is_running = False
        if self._listen_task:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
        if self._ws:
            await self._ws.close()
            self._ws = None
        logger.info("Disconnected from switchboard")

    async def send(self, message: Dict[str, Any]) -> None:
        if not self._ws:
            raise RuntimeError("Not connected to switchboard")
        await self._ws.send(json.dumps(message))

    async def _listen_loop(self) -> None:
        """Background task: receive notifications with auto-reconnect."""
        while self._is_running:
            try:
                async for raw in self._ws:
                    try:
                        msg = json.loads(raw)
                    except json.JSONDecodeError:
                        continue
                    if msg.get("type") == "ping":
                        await self._ws.send(json.dumps({"type": "pong"}))
                        continue
                    self.handle(msg)

                if self._is_running:
                    raise ConnectionError("connection closed by switchboard")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._is_running:
                    return
                log(f"Disconnected: {e}. Reconnecting in {RECONNECT_DELAY}s...", "WARN")
                await asyncio.sleep(RECONNECT_DELAY)
                try:
                    self._ws = await self._connect()
                    log("Reconnected to switchboard", "OK")
                except Exception as re_err:
                    logger.error(f"Reconnect failed: {re_err}")

    def handle(self, msg: Dict[str, Any]) -> None:
        """Apply one notification to local state and show it."""
        msg_type = msg.get("type")
        data = msg.get("data") or {}

        if msg_type == "state":
            self.backlog = data.get("backlog_count", 0)
            self.queue_size = len(data.get("queue") or [])
            self.active = data.get("active_request")
            log(f"Synced: {self.queue_size} queued answer(s), {self.backlog} agent(s) waiting", "INFO")
            if self.active:
                self._show_active()

        elif msg_type == "tool_call_pending":
            self.active = {"type": msg_type, **data}
            self._show_active()

        elif msg_type == "multi_question_pending":
            self.active = {"type": msg_type, **data}
            self._show_active()

        elif msg_type == "tool_call_completed":
            entry = data.get("entry") or {}
            if self._active_id() == entry.get("id"):
                self.active = None
            log("Answer delivered; agent is working", "OK")

        elif msg_type == "tool_call_cancelled":
            if self._active_id() == data.get("id"):
                self.active = None
            log(f"Request {data.get('id')} cancelled", "WARN")

        elif msg_type == "multi_question_completed":
            if self._active_id() == data.get("request_id"):
                self.active = None
            log("Answers delivered; agent is working", "OK")

        elif msg_type == "queued_agent_request_count":
            self.backlog = data.get("count", 0)
            if self.backlog:
                log(f"{self.backlog} more agent request(s) waiting", "AGENT")

        elif msg_type == "update_queue":
            self.queue_size = len(data.get("queue") or [])
            state = "paused" if data.get("paused") else ("on" if data.get("enabled") else "off")
            log(f"Answer queue: {self.queue_size} item(s), {state}", "INFO")

        elif msg_type == "clear_processing":
            log("Agent went quiet", "INFO")

        elif msg_type == "auth_success":
            logger.info(f"Authenticated: {data.get('connection_id')}")

    def _active_id(self) -> Optional[str]:
        if not self.active:
            return None
        return self.active.get("id") or self.active.get("request_id")

    def _show_active(self) -> None:
        if self.active.get("type") == "multi_question_pending":
            render_questions(self.active)
            log("Reply with one answer per question, separated by ';' (or /skip)", "HUMAN")
        else:
            render_request(self.active, self.backlog)

    def command(self, line: str) -> Optional[Dict[str, Any]]:
        """The operator message for a typed line, or None if there is nothing to send."""
        line = line.strip()
        if not line:
            return None

        if line.startswith("/"):
            name, _, arg = line.partition(" ")
            if name == "/stop":
                return {"type": "cancel_active"}
            if name == "/skip" and self._is_multi():
                return {"type": "resolve_multi", "data": {"request_id": self._active_id(), "cancelled": True}}
            if name == "/queue" and arg.strip():
                return {"type": "add_queue_prompt", "data": {"prompt": arg.strip()}}
            if name == "/pause":
                return {"type": "pause_queue"}
            if name == "/resume":
                return {"type": "resume_queue"}
            if name == "/state":
                return {"type": "get_state"}
            log(HELP, "INFO")
            return None

        if self._is_multi():
            answers = build_multi_answers(self.active.get("questions") or [], line)
            return {"type": "resolve_multi", "data": {"request_id": self._active_id(), "answers": answers}}

        if self.active:
            return {"type": "resolve", "data": {"id": self._active_id(), "value": self._expand_shortcut(line)}}

        # Nothing waiting: the switchboard stages it in the answer queue
        return {"type": "submit", "data": {"value": line}}

    def _is_multi(self) -> bool:
        return bool(self.active) and self.active.get("type") == "multi_question_pending"

    def _expand_shortcut(self, line: str) -> str:
        choices = self.active.get("choices") or []
        if line.isdigit() and 1 <= int(line) <= len(choices):
            return choices[int(line) - 1].get("value", line)
        if len(line) == 1 and line.isalpha():
            # Lettered menus: "b" picks the choice labelled B or "Option B"
            for choice in choices:
                if line.upper() in (str(choice.get("value", "")).upper(), str(choice.get("short_label", "")).upper()):
                    return choice.get("value", line)
        if self.active.get("is_approval_question") and line.lower() in ("y", "n"):
            return "Yes" if line.lower() == "y" else "No"
        return line


async def run_client(url: str, api_key: str = "") -> int:
    """Interactive loop until /quit or EOF."""
    client = OperatorClient(url, api_key)
    try:
        await client.start()
    except Exception as e:
        log(f"Could not connect to {url}: {e}", "ERR")
        return 1

    log(HELP, "INFO")
    loop = asyncio.get_running_loop()
    try:
        while True:
            try:
                line = await loop.run_in_executor(None, input, "")
            except (KeyboardInterrupt, EOFError):
                break
            if line.strip() == "/quit":
                break
            message = client.command(line)
            if message is None:
                continue
            try:
                await client.send(message)
            except Exception as e:
                log(f"Send failed: {e}", "ERR")
    finally:
        await client.stop()
    return 0
