"""
Channel fan-out.

The operator may be watching from several places at once: the local
terminal and any number of remote clients. Every endpoint gets the same
notification, in the same order. Publishing never blocks the mediator;
endpoints that talk to the network schedule their own sends.

Notifications share one envelope: ``{"type": ..., "data": {...}}``.
"""
import logging
from typing import Any, Dict, List, Protocol

from .console import log, render_questions, render_request

logger = logging.getLogger(__name__)


class ChannelEndpoint(Protocol):
    def notify(self, message: Dict[str, Any]) -> None:
        """Accept a notification. Must return without waiting on I/O."""
        ...


class ChannelHub:
    """Delivers every notification to every registered endpoint."""

    def __init__(self):
        self._endpoints: List[ChannelEndpoint] = []

    def add(self, endpoint: ChannelEndpoint) -> None:
        if endpoint not in self._endpoints:
            self._endpoints.append(endpoint)

    def remove(self, endpoint: ChannelEndpoint) -> None:
        if endpoint in self._endpoints:
            self._endpoints.remove(endpoint)

    @property
    def endpoints(self) -> List[ChannelEndpoint]:
        return list(self._endpoints)

    def publish(self, msg_type: str, **data: Any) -> Dict[str, Any]:
        message = {"type": msg_type, "data": data}
        for endpoint in list(self._endpoints):
            try:
                endpoint.notify(message)
            except Exception as e:
                # One broken endpoint must not starve the others
                logger.error(f"Channel endpoint {endpoint!r} failed on {msg_type}: {e}")
        return message


class ConsoleChannel:
    """Local panel: prints requests to the terminal the service runs in."""

    def __init__(self):
        self.backlog = 0

    def notify(self, message: Dict[str, Any]) -> None:
        msg_type = message.get("type")
        data = message.get("data", {})

        if msg_type == "tool_call_pending":
            render_request(data, self.backlog)
        elif msg_type == "multi_question_pending":
            log(f"Agent has {len(data.get('questions') or [])} questions", "AGENT")
            render_questions(data)
        elif msg_type == "queued_agent_request_count":
            self.backlog = data.get("count", 0)
            if self.backlog:
                log(f"{self.backlog} agent request(s) waiting", "INFO")
        elif msg_type == "tool_call_completed":
            entry = data.get("entry", {})
            source = "queue" if entry.get("from_queue") else "operator"
            log(f"Answered {entry.get('id', '?')} from {source}", "HUMAN")
        elif msg_type in ("tool_call_cancelled", "multi_question_completed"):
            request_id = data.get("id") or data.get("request_id")
            log(f"Request {request_id} closed", "WARN" if msg_type == "tool_call_cancelled" else "OK")
