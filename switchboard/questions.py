"""
Multi-question requests.

An agent may ask several related questions at once, each with its own
options. Input arrives from a tool call and can be sloppy, so it is coerced
to safe shapes and clamped rather than rejected: a degraded prompt the
operator can still answer beats an error the agent cannot act on.
"""
import json
from typing import Any, Dict, List, Optional

from .models import Question, QuestionOption

MAX_QUESTIONS = 10
MAX_OPTIONS = 20
MAX_HEADER_LENGTH = 50
MAX_QUESTION_LENGTH = 2000
MAX_OPTION_LABEL_LENGTH = 200
MAX_OPTION_DESCRIPTION_LENGTH = 500

# Limits on what comes back from the operator
MAX_ANSWER_HEADER_LENGTH = 100
MAX_SELECTED_OPTIONS = 20
MAX_SELECTED_OPTION_LENGTH = 500
MAX_FREEFORM_LENGTH = 5000

DEFAULT_HEADER = "Question"

INVALID_QUESTIONS_VALUE = json.dumps({"error": "Invalid questions input"})
NO_QUESTIONS_VALUE = json.dumps({"error": "No valid questions provided"})


def _text(value: Any, limit: int, default: str = "") -> str:
    if value is None or value == "":
        return default[:limit]
    return str(value)[:limit]


def _field(raw: Any, *names: str) -> Any:
    if isinstance(raw, Question):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        return None
    for name in names:
        if name in raw:
            return raw[name]
    return None


def _sanitize_option(raw: Any) -> QuestionOption:
    if isinstance(raw, QuestionOption):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        raw = {"label": raw}
    description = raw.get("description")
    return QuestionOption(
        label=_text(raw.get("label"), MAX_OPTION_LABEL_LENGTH),
        description=_text(description, MAX_OPTION_DESCRIPTION_LENGTH) if description else None,
        recommended=bool(raw.get("recommended", False)),
    )


def sanitize_questions(raw: Any) -> Optional[List[Question]]:
    """
    Clamp a multi-question payload to safe bounds.

    Returns None when ``raw`` is not a list at all. Otherwise keeps at most
    MAX_QUESTIONS entries; a missing header becomes "Question", non-list
    options are dropped, every text field is cut to its limit.
    """
    if not isinstance(raw, list):
        return None

    questions = []
    for item in raw[:MAX_QUESTIONS]:
        options = _field(item, "options")
        questions.append(Question(
            header=_text(_field(item, "header"), MAX_HEADER_LENGTH, DEFAULT_HEADER),
            question=_text(_field(item, "question"), MAX_QUESTION_LENGTH),
            options=[_sanitize_option(o) for o in options[:MAX_OPTIONS]] if isinstance(options, list) else None,
            multi_select=bool(_field(item, "multi_select", "multiSelect")),
            allow_freeform_input=bool(_field(item, "allow_freeform_input", "allowFreeformInput")),
        ))
    return questions


def serialize_answers(answers: Any) -> str:
    """Structured operator answers -> the JSON text handed to the caller."""
    safe: List[Dict[str, Any]] = []
    for answer in answers if isinstance(answers, list) else []:
        if not isinstance(answer, dict):
            answer = {}
        selected = answer.get("selected")
        entry: Dict[str, Any] = {
            "question": _text(answer.get("header"), MAX_ANSWER_HEADER_LENGTH, "Unknown"),
            "selected_options": [
                str(s)[:MAX_SELECTED_OPTION_LENGTH] for s in selected[:MAX_SELECTED_OPTIONS]
            ] if isinstance(selected, list) else [],
        }
        freeform = answer.get("freeform_text")
        if isinstance(freeform, str) and freeform:
            entry["freeform_text"] = freeform[:MAX_FREEFORM_LENGTH]
        safe.append(entry)
    return json.dumps({"answers": safe}, indent=2)
