import logging

from switchboard.channel import ChannelHub, ConsoleChannel

from tests.conftest import RecordingChannel


class BrokenChannel:
    def notify(self, message):
        raise RuntimeError("socket gone")


def test_publish_reaches_every_endpoint_in_order() -> None:
    hub = ChannelHub()
    first, second = RecordingChannel(), RecordingChannel()
    hub.add(first)
    hub.add(second)
    hub.add(first)

    hub.publish("update_queue", queue=[], enabled=True, paused=False)
    hub.publish("queued_agent_request_count", count=1)

    assert first.types() == ["update_queue", "queued_agent_request_count"]
    assert second.messages == first.messages
    assert first.messages[1] == {"type": "queued_agent_request_count", "data": {"count": 1}}


def test_broken_endpoint_does_not_block_others(caplog) -> None:
    hub = ChannelHub()
    survivor = RecordingChannel()
    hub.add(BrokenChannel())
    hub.add(survivor)

    with caplog.at_level(logging.ERROR):
        hub.publish("clear_processing")
    assert survivor.types() == ["clear_processing"]
    assert "socket gone" in caplog.text


def test_remove_endpoint() -> None:
    hub = ChannelHub()
    channel = RecordingChannel()
    hub.add(channel)
    hub.remove(channel)
    hub.remove(channel)
    hub.publish("clear_processing")
    assert channel.messages == []
    assert hub.endpoints == []


def test_console_channel_tracks_backlog() -> None:
    channel = ConsoleChannel()
    channel.notify({"type": "queued_agent_request_count", "data": {"count": 2}})
    channel.notify({"type": "tool_call_pending", "data": {"id": "tc_1_a", "prompt": "Go?", "choices": None}})
    channel.notify({"type": "tool_call_completed", "data": {"entry": {"id": "tc_1_a", "from_queue": True}}})
    assert channel.backlog == 2
