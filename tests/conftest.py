"""
Test Configuration and Fixtures

Shared fixtures for the switchboard test suite: a channel endpoint that
records every notification, an in-memory store and a started Mediator.
"""
import asyncio
from typing import Any, Dict, List

import pytest
import pytest_asyncio

from switchboard.channel import ChannelHub
from switchboard.journal import Journal, MemoryStore
from switchboard.mediator import Mediator


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "api: API endpoint tests")


class RecordingChannel:
    """Channel endpoint that keeps every notification it is sent."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    def notify(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, msg_type: str) -> List[Dict[str, Any]]:
        return [m["data"] for m in self.messages if m["type"] == msg_type]

    def clear(self) -> None:
        self.messages = []


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks and woken tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def hub(channel) -> ChannelHub:
    hub = ChannelHub()
    hub.add(channel)
    return hub


@pytest_asyncio.fixture
async def make_mediator(store, hub):
    """Factory for mediators sharing the test's store and channel."""
    created = []

    def _make(**overrides) -> Mediator:
        options = {
            "queue_save_delay": 0,
            "session_save_delay": 0,
            "history_save_delay": 0,
        }
        options.update(overrides)
        mediator = Mediator(Journal(store), hub, **options)
        created.append(mediator)
        return mediator

    yield _make
    for mediator in created:
        await mediator.shutdown()
    await settle()


@pytest_asyncio.fixture
async def mediator(make_mediator) -> Mediator:
    mediator = make_mediator()
    await mediator.start()
    return mediator
