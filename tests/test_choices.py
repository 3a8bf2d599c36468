import pytest

from switchboard.choices import (
    MAX_CHOICES,
    classify,
    extract_choices,
    is_approval_question,
    is_compound_question,
    match_bullet_lines,
    match_comma_or,
    match_emoji_lines,
    match_inline_lettered,
    match_inline_numbered,
    match_labeled_options,
    match_lettered_lines,
    match_numbered_lines,
    normalize_explicit_choices,
)
from switchboard.models import Choice


def values(choices):
    return [c.value for c in choices]


def labels(choices):
    return [c.label for c in choices]


# =============================================================================
# Individual matchers
# =============================================================================


def test_numbered_lines() -> None:
    choices = match_numbered_lines("Pick a database:\n1. Postgres\n2. MySQL\n3. SQLite")
    assert values(choices) == ["1", "2", "3"]
    assert labels(choices) == ["Postgres", "MySQL", "SQLite"]


def test_numbered_lines_bold_and_paren_markers() -> None:
    choices = match_numbered_lines("How to proceed?\n**1)** Refactor\n**2)** Rewrite")
    assert values(choices) == ["1", "2"]
    assert labels(choices) == ["Refactor", "Rewrite"]


def test_numbered_lines_first_run_wins_on_restart() -> None:
    text = (
        "Choose a plan:\n"
        "1. Minimal change\n"
        "2. Full rewrite\n"
        "Details of the rewrite:\n"
        "1. Drop the old parser\n"
        "2. Port the tests\n"
        "3. Update docs"
    )
    choices = match_numbered_lines(text)
    assert labels(choices) == ["Minimal change", "Full rewrite"]


def test_numbered_lines_first_run_wins_on_gap() -> None:
    text = "1. Keep\n2. Drop\n" + "\n" * 6 + "3. Example only\n4. Another example"
    assert labels(match_numbered_lines(text)) == ["Keep", "Drop"]


def test_numbered_lines_short_label_prefers_keyword() -> None:
    choices = match_numbered_lines("Ready?\n1. Yes - because the tests pass\n2. No - something is off")
    assert [c.short_label for c in choices] == ["Yes", "No"]
    assert choices[0].label == "Yes - because the tests pass"


def test_numbered_lines_need_two_items() -> None:
    assert match_numbered_lines("Steps:\n1. Only one") is None


def test_long_labels_are_ellipsized() -> None:
    text = "Pick:\n1. " + "x" * 60 + "\n2. Short one"
    choices = match_numbered_lines(text)
    assert len(choices[0].label) == 40
    assert choices[0].label.endswith("...")
    assert len(choices[0].short_label) == 20


def test_inline_numbered() -> None:
    choices = match_inline_numbered("Choose one: 1. Fast path 2. Safe path 3. Skip it")
    assert values(choices) == ["1", "2", "3"]
    assert labels(choices) == ["Fast path", "Safe path", "Skip it"]


def test_emoji_lines() -> None:
    text = "Theme?\n1️⃣ Dark\n2️⃣ Light\n3️⃣ System"
    choices = match_emoji_lines(text)
    assert values(choices) == ["1", "2", "3"]
    assert labels(choices) == ["Dark", "Light", "System"]


def test_lettered_lines() -> None:
    choices = match_lettered_lines("Which approach?\nA. Rewrite module\nb) Patch in place")
    assert values(choices) == ["A", "B"]
    assert labels(choices) == ["Rewrite module", "Patch in place"]


def test_inline_lettered() -> None:
    choices = match_inline_lettered("Fruit? A. Apples B. Pears C. Plums")
    assert values(choices) == ["A", "B", "C"]
    assert labels(choices) == ["Apples", "Pears", "Plums"]


def test_bullet_lines_return_text_as_value() -> None:
    choices = match_bullet_lines("Database?\n- PostgreSQL\n- MongoDB\n- SQLite")
    assert values(choices) == ["PostgreSQL", "MongoDB", "SQLite"]


def test_labeled_options() -> None:
    choices = match_labeled_options("Option A: rewrite the parser Option B: patch the bug")
    assert values(choices) == ["Option A", "Option B"]
    assert [c.short_label for c in choices] == ["A", "B"]
    assert labels(choices) == ["rewrite the parser", "patch the bug"]


def test_comma_or_list() -> None:
    choices = match_comma_or("Would you like PostgreSQL, MySQL, or SQLite?")
    assert values(choices) == ["PostgreSQL", "MySQL", "SQLite"]


def test_matchers_return_none_when_absent() -> None:
    text = "Proceed with deployment?"
    assert match_numbered_lines(text) is None
    assert match_inline_numbered(text) is None
    assert match_lettered_lines(text) is None
    assert match_labeled_options(text) is None
    assert match_comma_or(text) is None


# =============================================================================
# Extraction pipeline
# =============================================================================


def test_extract_choices_example() -> None:
    choices = extract_choices("Pick a database:\n1. Postgres\n2. MySQL\n3. SQLite")
    assert len(choices) == 3
    assert values(choices) == ["1", "2", "3"]
    assert labels(choices) == ["Postgres", "MySQL", "SQLite"]


def test_eleven_numbered_markers_yield_nothing() -> None:
    text = "Steps:\n" + "\n".join(f"{i}. Step number {i}" for i in range(1, 12))
    assert is_compound_question(text)
    assert extract_choices(text) == []


def test_multiple_question_blocks_yield_nothing() -> None:
    text = "Question 1: which db?\n1. Postgres\n2. MySQL\nQuestion 2: which cache?\n1. Redis\n2. None"
    assert is_compound_question(text)
    assert extract_choices(text) == []


def test_over_cap_discards_all_choices() -> None:
    names = ["alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel", "india", "juliet"]
    assert len(names) == MAX_CHOICES + 1
    text = "Pick:\n" + "\n".join(f"- Option {name}" for name in names)
    assert match_bullet_lines(text) == []
    assert extract_choices(text) == []


def test_exactly_at_cap_is_kept() -> None:
    text = "Pick:\n" + "\n".join(f"{i}. Choice {i}" for i in range(1, MAX_CHOICES + 1))
    assert len(extract_choices(text)) == MAX_CHOICES


def test_empty_text_has_no_choices() -> None:
    assert extract_choices("") == []


# =============================================================================
# Explicit choices
# =============================================================================


def test_explicit_choices_short_labels() -> None:
    choices = normalize_explicit_choices(
        "Deploy now?",
        [{"label": "Yes — ship it", "value": "ship"}, {"label": "Wait"}, {"value": "no label"}],
    )
    assert choices == [
        Choice(label="Yes — ship it", value="ship", short_label="Yes"),
        Choice(label="Wait", value="Wait", short_label="Wait"),
    ]


def test_explicit_choices_prefer_numbering_from_text() -> None:
    question = "Pick:\n1. Postgres\n2. MySQL"
    choices = normalize_explicit_choices(question, [{"label": "Use Postgres"}, {"label": "Use MySQL"}])
    assert [c.short_label for c in choices] == ["Postgres", "MySQL"]
    assert values(choices) == ["Use Postgres", "Use MySQL"]


# =============================================================================
# Approval classification
# =============================================================================


@pytest.mark.parametrize("text", [
    "Proceed with deployment?",
    "Should I delete the old build directory?",
    "Looks good?",
    "Overwrite config.yaml? (y/n)",
])
def test_approval_questions(text) -> None:
    assert is_approval_question(text)


@pytest.mark.parametrize("text", [
    "What file needs the fix?",
    "Please describe the bug you saw",
    "Which option do you prefer?\n1. Fast\n2. Safe",
    "Let me know the target branch",
    "Why did the build fail?",
])
def test_not_approval_questions(text) -> None:
    assert not is_approval_question(text)


def test_short_threshold_is_configurable() -> None:
    assert is_approval_question("Tabs over spaces?", short_threshold=100)
    assert not is_approval_question("Tabs over spaces?", short_threshold=5)


def test_classify_choices_and_approval_are_exclusive() -> None:
    choices, approval = classify("Continue?\n1. Yes please go\n2. No stop now")
    assert len(choices) == 2
    assert approval is False

    choices, approval = classify("Proceed with deployment?")
    assert choices == []
    assert approval is True


def test_classify_explicit_choices_win() -> None:
    choices, approval = classify("Proceed?", explicit=[{"label": "Go", "value": "go"}])
    assert values(choices) == ["go"]
    assert approval is False
