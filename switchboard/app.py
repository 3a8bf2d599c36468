"""
Agent Switchboard — FastAPI Application

Wires together:
- Agent-facing ask endpoints at /api/ask and /api/ask-questions
- WebSocket endpoint at /ws for operator clients
- Health check at /health

Authentication:
- Agents: none (bind the service to localhost)
- WebSocket: API key via Authorization header or a first "auth" message
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from . import __version__
from .channel import ChannelHub, ConsoleChannel
from .config import Config
from .journal import Journal, JsonFileStore, MemoryStore, Store
from .mediator import Mediator
from .ws_manager import WSManager

logger = logging.getLogger(__name__)


class ChoiceIn(BaseModel):
    label: str
    value: Optional[str] = None


class AskRequest(BaseModel):
    question: str
    context: Optional[str] = None
    choices: Optional[List[ChoiceIn]] = None


class AskQuestionsRequest(BaseModel):
    # Any shape; the mediator clamps it
    questions: Any = None


def build_mediator(config: Config, hub: ChannelHub, store: Optional[Store] = None) -> Mediator:
    """Mediator wired to the configured storage."""
    if store is None:
        if config.storage_path:
            store = JsonFileStore(config.storage_path)
        else:
            logger.warning("No storage directory configured; queue and history will not survive a restart")
            store = MemoryStore()
    return Mediator(
        Journal(store),
        hub,
        max_session_entries=config.max_session_entries,
        max_history_entries=config.max_history_entries,
        max_queue_prompt_length=config.max_queue_prompt_length,
        queue_save_delay=config.queue_save_delay,
        session_save_delay=config.session_save_delay,
        history_save_delay=config.history_save_delay,
        processing_timeout=config.processing_timeout,
        short_question_threshold=config.short_question_threshold,
        response_template=config.response_template,
    )


def create_app(config: Optional[Config] = None, store: Optional[Store] = None, console: bool = False) -> FastAPI:
    """Build the service. ``console`` also prints requests to this terminal."""
    config = config or Config.load()
    ws_manager = WSManager()
    hub = ChannelHub()
    hub.add(ws_manager)
    if console:
        hub.add(ConsoleChannel())
    mediator = build_mediator(config, hub, store)

    async def ping_loop():
        """Background task to send periodic pings to all connected clients."""
        while True:
            await asyncio.sleep(config.ping_interval)
            if ws_manager.authenticated:
                logger.debug(f"Sending ping to {len(ws_manager.authenticated)} clients")
                await ws_manager.send_ping_all()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown lifecycle."""
        logger.info("Starting Agent Switchboard...")
        logger.info(f"API Key configured: {'Yes' if config.api_key else 'No'}")
        logger.info(f"Storage: {config.storage_path or '(memory only)'}")

        await mediator.start()
        ping_task = asyncio.create_task(ping_loop())
        logger.info("Switchboard started successfully")

        yield

        logger.info("Shutting down switchboard...")
        ping_task.cancel()
        try:
            await ping_task
        except asyncio.CancelledError:
            pass
        await mediator.shutdown()
        await ws_manager.drain()

    app = FastAPI(title="Agent Switchboard", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.mediator = mediator
    app.state.ws_manager = ws_manager

    @app.post("/api/ask")
    async def ask(body: AskRequest):
        """Ask the operator one question. Blocks until it is answered or cancelled."""
        choices = [c.model_dump() for c in body.choices] if body.choices else None
        response = await mediator.submit_single(body.question, body.context, choices)
        return response.to_dict()

    @app.post("/api/ask-questions")
    async def ask_questions(body: AskQuestionsRequest):
        """Ask several questions at once. The answer value is a JSON document."""
        response = await mediator.submit_multi(body.questions)
        return response.to_dict()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for operator clients.

        Authentication: Client must send {"type": "auth", "data": {"api_key": "xxx"}}
        as the first message. Alternatively, can use Authorization: Bearer xxx header.
        A client receives the full switchboard state as soon as it is authenticated.
        """
        connection_id = str(uuid.uuid4())
        await ws_manager.connect(websocket, connection_id)

        auth_header = websocket.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            provided_key = auth_header[7:]
            if config.api_key and provided_key != config.api_key:
                logger.warning(f"Invalid API key in header from {connection_id}")
                await websocket.close(code=4001, reason="Invalid API key")
                ws_manager.disconnect(connection_id)
                return
            await authenticate(connection_id)
        elif not config.api_key:
            # No API key configured AND no header: auto-authenticate (dev mode)
            await authenticate(connection_id)

        try:
            while True:
                data = await websocket.receive_json()
                if not await handle_ws_message(connection_id, data, websocket):
                    break
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected: {connection_id}")
        except Exception as e:
            logger.error(f"WebSocket error for {connection_id}: {e}")
        finally:
            ws_manager.disconnect(connection_id)

    async def authenticate(connection_id: str):
        ws_manager.authenticate(connection_id)
        await ws_manager.send_to_connection(connection_id, {"type": "state", "data": mediator.get_state()})

    async def handle_ws_message(connection_id: str, message: Any, websocket: WebSocket) -> bool:
        """Handle a message from an operator client. False once the socket is closed."""
        if not isinstance(message, dict):
            logger.warning(f"Ignoring malformed message from {connection_id}")
            return True
        msg_type = message.get("type")
        data = message.get("data") or {}

        # Handle auth message (if not already authenticated via header)
        if msg_type == "auth":
            if ws_manager.is_authenticated(connection_id):
                return True

            provided_key = data.get("api_key", "") if isinstance(data, dict) else ""
            if config.api_key and provided_key != config.api_key:
                logger.warning(f"Invalid API key from {connection_id}")
                await websocket.close(code=4001, reason="Invalid API key")
                return False

            ws_manager.authenticate(connection_id)
            await ws_manager.send_to_connection(connection_id, {
                "type": "auth_success",
                "data": {"connection_id": connection_id}
            })
            await ws_manager.send_to_connection(connection_id, {"type": "state", "data": mediator.get_state()})
            return True

        # All other messages require authentication
        if not ws_manager.is_authenticated(connection_id):
            logger.warning(f"Unauthenticated message from {connection_id}: {msg_type}")
            await websocket.close(code=4001, reason="Not authenticated")
            return False

        if msg_type == "pong":
            # Keepalive response, no action needed
            return True

        reply = mediator.handle_message(message)
        if reply is not None:
            await ws_manager.send_to_connection(connection_id, reply)
        return True

    @app.get("/health")
    async def health():
        """Health check with connection and mediator statistics."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **ws_manager.get_stats(),
            "active_request": mediator.active_id,
            "backlog": mediator.backlog_depth,
            "queued_answers": len(mediator.queue),
            "queue_enabled": mediator.queue.enabled,
            "queue_paused": mediator.queue.paused,
        }

    @app.get("/")
    async def root():
        """Root endpoint — basic info."""
        return {
            "service": "Agent Switchboard",
            "version": __version__,
            "endpoints": {
                "ask": "/api/ask",
                "ask_questions": "/api/ask-questions",
                "websocket": "/ws",
                "health": "/health",
            }
        }

    return app
