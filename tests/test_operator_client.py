import pytest

from switchboard.operator_client import OperatorClient, build_multi_answers

QUESTIONS = [
    {"header": "Db", "options": [{"label": "Postgres"}, {"label": "SQLite"}]},
    {"header": "Caches", "multi_select": True, "options": [{"label": "Redis"}, {"label": "Memcached"}]},
    {"header": "Notes", "options": None},
]


@pytest.fixture
def client() -> OperatorClient:
    return OperatorClient("ws://127.0.0.1:8000/ws")


def pending(**data):
    return {"type": "tool_call_pending", "data": {"id": "tc_1_a", "prompt": "Deploy?", **data}}


# =============================================================================
# Multi-question replies
# =============================================================================


def test_build_multi_answers() -> None:
    answers = build_multi_answers(QUESTIONS, "1; 1,2; use staging")
    assert answers == [
        {"header": "Db", "selected": ["Postgres"], "freeform_text": None},
        {"header": "Caches", "selected": ["Redis", "Memcached"], "freeform_text": None},
        {"header": "Notes", "selected": [], "freeform_text": "use staging"},
    ]


def test_single_select_keeps_first_pick() -> None:
    answers = build_multi_answers(QUESTIONS[:1], "2 1")
    assert answers[0]["selected"] == ["SQLite"]


def test_out_of_range_numbers_are_text() -> None:
    answers = build_multi_answers(QUESTIONS, "9")
    assert answers[0] == {"header": "Db", "selected": [], "freeform_text": "9"}
    assert answers[2]["freeform_text"] is None


# =============================================================================
# Typed commands
# =============================================================================


def test_text_with_nothing_pending_is_submitted(client) -> None:
    assert client.command("use postgres") == {"type": "submit", "data": {"value": "use postgres"}}
    assert client.command("   ") is None


def test_slash_commands(client) -> None:
    assert client.command("/stop") == {"type": "cancel_active"}
    assert client.command("/pause") == {"type": "pause_queue"}
    assert client.command("/resume") == {"type": "resume_queue"}
    assert client.command("/state") == {"type": "get_state"}
    assert client.command("/queue run the tests") == {
        "type": "add_queue_prompt", "data": {"prompt": "run the tests"},
    }
    assert client.command("/queue") is None
    assert client.command("/bogus") is None


def test_number_picks_choice(client) -> None:
    client.handle(pending(choices=[
        {"label": "Postgres", "value": "1", "short_label": "Postgres"},
        {"label": "MySQL", "value": "2", "short_label": "MySQL"},
    ]))
    assert client.command("2") == {"type": "resolve", "data": {"id": "tc_1_a", "value": "2"}}
    assert client.command("7")["data"]["value"] == "7"


def test_letter_picks_lettered_choice(client) -> None:
    client.handle(pending(choices=[
        {"label": "Rewrite module", "value": "A", "short_label": "Rewrite module"},
        {"label": "Patch in place", "value": "B", "short_label": "Patch in place"},
    ]))
    assert client.command("b") == {"type": "resolve", "data": {"id": "tc_1_a", "value": "B"}}
    assert client.command("z")["data"]["value"] == "z"


def test_letter_picks_labeled_option(client) -> None:
    client.handle(pending(choices=[
        {"label": "rewrite the parser", "value": "Option A", "short_label": "A"},
        {"label": "patch the bug", "value": "Option B", "short_label": "B"},
    ]))
    assert client.command("a")["data"]["value"] == "Option A"


def test_yes_no_shortcut_for_approvals(client) -> None:
    client.handle(pending(is_approval_question=True, choices=None))
    assert client.command("y")["data"]["value"] == "Yes"
    assert client.command("N")["data"]["value"] == "No"
    assert client.command("yes, but run tests")["data"]["value"] == "yes, but run tests"


def test_multi_request_commands(client) -> None:
    client.handle({"type": "multi_question_pending", "data": {"request_id": "mq_1_a", "questions": QUESTIONS}})

    message = client.command("2; 1; none")
    assert message["type"] == "resolve_multi"
    assert message["data"]["request_id"] == "mq_1_a"
    assert message["data"]["answers"][0]["selected"] == ["SQLite"]

    assert client.command("/skip") == {"type": "resolve_multi", "data": {"request_id": "mq_1_a", "cancelled": True}}


def test_skip_without_multi_request_shows_help(client) -> None:
    assert client.command("/skip") is None


# =============================================================================
# Notifications
# =============================================================================


def test_state_sync(client) -> None:
    client.handle({"type": "state", "data": {
        "backlog_count": 2,
        "queue": [{"id": "q_1_a", "prompt": "x"}],
        "active_request": {"type": "tool_call_pending", "id": "tc_9_z", "prompt": "Go?"},
    }})
    assert client.backlog == 2
    assert client.queue_size == 1
    assert client.command("ok") == {"type": "resolve", "data": {"id": "tc_9_z", "value": "ok"}}


def test_completion_clears_active(client) -> None:
    client.handle(pending())
    client.handle({"type": "tool_call_completed", "data": {"entry": {"id": "tc_1_a"}}})
    assert client.active is None


def test_cancellation_of_other_request_keeps_active(client) -> None:
    client.handle(pending())
    client.handle({"type": "tool_call_cancelled", "data": {"id": "tc_other"}})
    assert client.active["id"] == "tc_1_a"

    client.handle({"type": "tool_call_cancelled", "data": {"id": "tc_1_a"}})
    assert client.active is None


def test_counts_follow_updates(client) -> None:
    client.handle({"type": "queued_agent_request_count", "data": {"count": 3}})
    client.handle({"type": "update_queue", "data": {"queue": [{}, {}], "enabled": True, "paused": False}})
    assert client.backlog == 3
    assert client.queue_size == 2


@pytest.mark.asyncio
async def test_send_requires_connection(client) -> None:
    with pytest.raises(RuntimeError):
        await client.send({"type": "get_state"})
