import re

from switchboard.utils import ellipsize, new_id, sanitize_operator_message


def test_sanitize_strips_control_characters() -> None:
    assert sanitize_operator_message("ok\x00\x07 go\tnow\n") == "ok go\tnow"


def test_sanitize_truncates() -> None:
    result = sanitize_operator_message("x" * 20, limit=10)
    assert result == "x" * 10 + "... [truncated]"


def test_sanitize_non_string() -> None:
    assert sanitize_operator_message(None) == ""
    assert sanitize_operator_message(42) == "42"


def test_new_id_format() -> None:
    first, second = new_id("tc"), new_id("tc")
    assert re.match(r"^tc_\d+_[0-9a-f]{9}$", first)
    assert first != second


def test_ellipsize() -> None:
    assert ellipsize("short", 10) == "short"
    assert ellipsize("abcdefghijkl", 10) == "abcdefg..."
