"""
Choice extraction and question classification.

Agents ask free-form questions. To give the operator one-tap answers we try
to recover the options the agent enumerated in its text:

    "Pick a database:\n1. Postgres\n2. MySQL\n3. SQLite"
        -> [Choice("Postgres", "1", ...), Choice("MySQL", "2", ...), ...]

Each pattern is an independent matcher ``(text) -> Optional[List[Choice]]``.
Matchers run in order and the first one that recognizes a list wins:

    None   the pattern is not present, try the next matcher
    []     the pattern is present but unusable (too many options), stop
    [...]  the choices to offer

Line-anchored matchers share one tie-break: when the text holds several
separate lists, the FIRST contiguous run is the menu. Later lists are
usually examples or details of the options.

Choices never replace free-text input; they are shortcuts the channel may
render next to it. A question with no choices may still be a yes/no
approval question, see ``is_approval_question``.
"""
import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .models import Choice
from .utils import ellipsize

# More options than this and buttons are misleading; show none at all
MAX_CHOICES = 9

LABEL_LIMIT = 40
SHORT_LABEL_LIMIT = 20

# Questions shorter than this that end in "?" are treated as yes/no
SHORT_QUESTION_THRESHOLD = 100

_TRAILING_PUNCT = re.compile(r'[?!]+$')
_KEYWORD_SEPARATOR = re.compile(r'^(.+?)\s*(?:—|–|[-:])\s+')
_BOLD = re.compile(r'\*\*')

# Sentence endings that terminate the last inline option ("... 3. Later. Please reply")
_INLINE_STOP = r'[.!]\s+(?:Wait|wait|Please|please|Then|then|Select|select)'

_NUMBERED_MARKER = re.compile(r'\b\d+[.)]')
_LETTERED_MARKER = re.compile(r'\b[A-Za-z][.)]\s')
_QUESTION_BLOCK = re.compile(r'\b(?:Question|Q)\s*\d+[.:]', re.IGNORECASE)

_NUMBERED_LINE = re.compile(r'^\s*\*{0,2}(\d+)[.)]\s*\*{0,2}\s*(.+)$')
_INLINE_NUMBERED = re.compile(
    r'(\d+)(?:[.):]|\s+-)\s+([^0-9]+?)'
    r'(?=\s+\d+(?:[.):]|\s+-)|' + _INLINE_STOP + r'|[.?!]\s*$|$)'
)
_EMOJI_LINE = re.compile('^\\s*([0-9])\uFE0F?\u20E3\\s+(.+)$')
_INLINE_EMOJI = re.compile(
    '([0-9])\uFE0F?\u20E3\\s+([^0-9\uFE0F\u20E3]+?)'
    '(?=\\s*[0-9]\uFE0F?\u20E3|' + _INLINE_STOP + '|[.?!]\\s*$)'
)
_LETTERED_LINE = re.compile(r'^\s*\*{0,2}([A-Za-z])[.)]\s*\*{0,2}\s*(.+)$')
_INLINE_LETTERED = re.compile(r'\b([A-Z])[.)]\s+(.+?)(?=\s+[A-Z][.)]|$)')
_BULLET_LINE = re.compile(r'^\s*[-*•]\s+(.+)$')
_BULLET_SECTION = re.compile(r'[?:]\s*(-\s+.+?)(?:\.\s*(?:Wait|wait|Please|please)|[.?!]?\s*$)')
_BULLET_SPLIT = re.compile(r'\s+-\s+')
_BULLET_FILLER = re.compile(r'^(?:wait|please|response|for|choice|select)', re.IGNORECASE)
_LABELED_OPTION = re.compile(
    r'option\s+([A-Za-z]|\d+)\s*:\s*([^\n]+?)(?=\s*Option\s+(?:[A-Za-z]|\d+)|\s*$|\n)',
    re.IGNORECASE,
)
_COMMA_OR_TRIGGER = re.compile(
    r'(?:choose|pick|select|prefer|like|want|use|between|recommend)\s+(?:between\s+)?(.+?)(?:\?|$)',
    re.IGNORECASE,
)
_COMMA_OR_PREFIX = re.compile(
    r'^(?:to\s+)?(?:use|go\s+with|try|pick|select|choose|have|work\s+with)\s+',
    re.IGNORECASE,
)
_COMMA_OR_SPLIT = re.compile(r',\s*(?:or\s+)?|\s+or\s+', re.IGNORECASE)

Matcher = Callable[[str], Optional[List[Choice]]]


# =============================================================================
# Shared helpers
# =============================================================================

def _clean(text: str) -> str:
    return _TRAILING_PUNCT.sub('', text).strip()


def _keyword(text: str) -> Optional[str]:
    """Keyword before a dash/colon separator: 'Yes — because...' -> 'Yes'."""
    match = _KEYWORD_SEPARATOR.match(text)
    if match and len(match.group(1).strip()) <= SHORT_LABEL_LIMIT:
        return match.group(1).strip()
    return None


def _make_choice(text: str, value: Optional[str] = None, prefer_keyword: bool = False) -> Choice:
    clean = _clean(text)
    short = (_keyword(clean) if prefer_keyword else None) or ellipsize(clean, SHORT_LABEL_LIMIT)
    return Choice(
        label=ellipsize(clean, LABEL_LIMIT),
        value=clean if value is None else value,
        short_label=short,
    )


def _capped(choices: List[Choice]) -> List[Choice]:
    return choices if len(choices) <= MAX_CHOICES else []


def _lines(text: str) -> List[str]:
    return [line.rstrip('\r') for line in text.split('\n')]


def _single_line(text: str) -> str:
    return text.replace('\n', ' ')


def _scan_lines(text: str, pattern: re.Pattern, min_length: int = 3) -> List[Tuple[int, str, str]]:
    """(line index, marker, option text) for every line matching ``pattern``."""
    found = []
    for index, line in enumerate(_lines(text)):
        match = pattern.match(line)
        if match and len(match.group(match.lastindex).strip()) >= min_length:
            marker = match.group(1) if match.lastindex > 1 else ""
            option = _BOLD.sub('', match.group(match.lastindex)).strip()
            found.append((index, marker, option))
    return found


def _first_run(
    items: Sequence[Tuple[int, str, str]],
    max_gap: int,
    restarts: Optional[Callable[[str, str], bool]] = None,
) -> List[Tuple[int, str, str]]:
    """The first contiguous run of matched lines.

    A run ends where the line gap exceeds ``max_gap`` or where ``restarts``
    says the numbering started over.
    """
    if not items:
        return []
    run = [items[0]]
    for prev, curr in zip(items, items[1:]):
        if curr[0] - prev[0] > max_gap:
            break
        if restarts and restarts(prev[1], curr[1]):
            break
        run.append(curr)
    return run


def _numbering_restarts(prev: str, curr: str) -> bool:
    return int(curr) <= int(prev)


# =============================================================================
# Matchers, in precedence order
# =============================================================================

def match_numbered_lines(text: str) -> Optional[List[Choice]]:
    """'1. Postgres' / '2) MySQL' / '**3. SQLite**' one per line."""
    items = _scan_lines(text, _NUMBERED_LINE)
    if len(items) < 2:
        return None
    run = _first_run(items, max_gap=5, restarts=_numbering_restarts)
    if len(run) < 2:
        return None
    return _capped([_make_choice(option, num, prefer_keyword=True) for _, num, option in run])


def match_inline_numbered(text: str) -> Optional[List[Choice]]:
    """'1. Postgres 2. MySQL 3. SQLite' or '1 - fast 2 - safe' on one line."""
    found = [
        (m.group(1), m.group(2).strip())
        for m in _INLINE_NUMBERED.finditer(_single_line(text))
        if len(m.group(2).strip()) >= 3
    ]
    if len(found) < 2:
        return None
    return _capped([_make_choice(option, num) for num, option in found])


def match_emoji_lines(text: str) -> Optional[List[Choice]]:
    """Keycap digits ('1️⃣ Dark') one per line."""
    items = _scan_lines(text, _EMOJI_LINE)
    if len(items) < 2:
        return None
    run = _first_run(items, max_gap=3)
    if len(run) < 2:
        return None
    return _capped([_make_choice(option, num) for _, num, option in run])


def match_inline_emoji(text: str) -> Optional[List[Choice]]:
    """'1️⃣ Dark 2️⃣ Light 3️⃣ System.' on one line."""
    found = [
        (m.group(1), m.group(2).strip())
        for m in _INLINE_EMOJI.finditer(_single_line(text))
        if len(m.group(2).strip()) >= 2
    ]
    if len(found) < 2:
        return None
    return _capped([_make_choice(option, num) for num, option in found])


def match_lettered_lines(text: str) -> Optional[List[Choice]]:
    """'A. Keep it' / 'b) Drop it' one per line."""
    items = _scan_lines(text, _LETTERED_LINE)
    if len(items) < 2:
        return None
    run = _first_run(items, max_gap=3)
    if len(run) < 2:
        return None
    return _capped([_make_choice(option, letter.upper()) for _, letter, option in run])


def match_inline_lettered(text: str) -> Optional[List[Choice]]:
    """'A. Apples B. Pears C. Plums' on one line (uppercase only)."""
    found = [
        (m.group(1), m.group(2).strip())
        for m in _INLINE_LETTERED.finditer(_single_line(text))
        if len(m.group(2).strip()) >= 3
    ]
    if len(found) < 2:
        return None
    return _capped([_make_choice(option, letter) for letter, option in found])


def match_bullet_lines(text: str) -> Optional[List[Choice]]:
    """'- PostgreSQL' / '* MongoDB' / '• SQLite' one per line; value is the text."""
    items = _scan_lines(text, _BULLET_LINE)
    if len(items) < 2:
        return None
    run = _first_run(items, max_gap=3)
    if len(run) < 2:
        return None
    return _capped([_make_choice(option, prefer_keyword=True) for _, _, option in run])


def match_inline_bullets(text: str) -> Optional[List[Choice]]:
    """'Database? - PostgreSQL - MongoDB - SQLite' after a '?' or ':'."""
    section = _BULLET_SECTION.search(_single_line(text))
    if not section:
        return None
    parts = [re.sub(r'^-\s*', '', p).strip() for p in _BULLET_SPLIT.split(section.group(1))]
    options = [p for p in parts if len(p) >= 2 and not _BULLET_FILLER.match(p)]
    if len(options) < 2:
        return None
    return _capped([_make_choice(option) for option in options])


def match_labeled_options(text: str) -> Optional[List[Choice]]:
    """'Option A: rewrite  Option B: patch' / 'Option 12: ...'."""
    found = [
        (m.group(1).upper(), m.group(2).strip())
        for m in _LABELED_OPTION.finditer(text)
        if len(m.group(2).strip()) >= 3
    ]
    if len(found) < 2:
        return None
    choices = []
    for ident, option in found:
        clean = _clean(option)
        choices.append(Choice(
            label=ellipsize(clean, LABEL_LIMIT),
            value=f"Option {ident}",
            short_label=ident,
        ))
    return _capped(choices)


def match_comma_or(text: str) -> Optional[List[Choice]]:
    """'Would you like PostgreSQL, MySQL, or SQLite?' after a trigger verb."""
    trigger = _COMMA_OR_TRIGGER.search(_single_line(text))
    if not trigger:
        return None
    options_text = _COMMA_OR_PREFIX.sub('', trigger.group(1))
    parts = [p.strip() for p in _COMMA_OR_SPLIT.split(options_text)]
    parts = [p for p in parts if 0 < len(p) <= 60]
    if not 2 <= len(parts) <= MAX_CHOICES:
        return None
    choices = []
    for part in parts:
        clean = _clean(part)
        if clean:
            choices.append(Choice(label=clean, value=clean, short_label=ellipsize(clean, SHORT_LABEL_LIMIT)))
    return choices if len(choices) >= 2 else None


MATCHERS: Tuple[Matcher, ...] = (
    match_numbered_lines,
    match_inline_numbered,
    match_emoji_lines,
    match_inline_emoji,
    match_lettered_lines,
    match_inline_lettered,
    match_bullet_lines,
    match_inline_bullets,
    match_labeled_options,
    match_comma_or,
)


def is_compound_question(text: str) -> bool:
    """Long enumerations and multi-part questions get no buttons."""
    if len(_NUMBERED_MARKER.findall(text)) >= 10:
        return True
    if len(_LETTERED_MARKER.findall(text)) >= 10:
        return True
    return len(_QUESTION_BLOCK.findall(text)) >= 2


def extract_choices(text: str) -> List[Choice]:
    """Selectable choices for ``text``, or [] when none should be offered."""
    if not text or is_compound_question(text):
        return []
    for matcher in MATCHERS:
        choices = matcher(text)
        if choices is not None:
            return choices
    return []


# =============================================================================
# Explicit choices supplied by the caller
# =============================================================================

ExplicitChoice = Union[Choice, Dict[str, str]]


def normalize_explicit_choices(question: str, explicit: Optional[Iterable[ExplicitChoice]]) -> List[Choice]:
    """
    Turn caller-provided ``{label, value}`` pairs into display-ready choices.

    Short labels prefer what the question text itself numbers the option as
    ("1", "A"), so buttons line up with the prose even when the caller's
    values are full sentences.
    """
    raw = []
    for item in explicit or []:
        if isinstance(item, Choice):
            raw.append((item.label, item.value))
        elif isinstance(item, dict) and item.get("label"):
            label = str(item["label"])
            raw.append((label, str(item.get("value") or label)))
    if not raw:
        return []

    parsed = extract_choices(question)
    choices = []
    for index, (label, value) in enumerate(raw):
        parsed_short = parsed[index].short_label if index < len(parsed) else None
        separator = _KEYWORD_SEPARATOR.match(label)
        keyword = separator.group(1).strip() if separator else None
        short = (
            parsed_short
            or keyword
            or ellipsize(label, SHORT_LABEL_LIMIT)
            or (value if len(value) <= 3 else str(index + 1))
        )
        choices.append(Choice(label=ellipsize(label, LABEL_LIMIT), value=value, short_label=short))
    return choices


# =============================================================================
# Approval classification
# =============================================================================

# Questions that need a specific answer, never a plain yes/no
_REQUIRES_SPECIFIC_INPUT = [re.compile(p, re.IGNORECASE) for p in (
    r'please (?:select|choose|pick) (?:an? )?option',
    r'select (?:an? )?option',
    r'let me know',
    r'tell me (?:what|how|when|if|about)',
    r'waiting (?:for|on) (?:your|the)',
    r'ready to (?:hear|see|get|receive)',
    r'what (?:is|are|should|would)',
    r'which (?:one|file|option|method|approach)',
    r'where (?:should|would|is|are)',
    r'how (?:should|would|do|can)',
    r'when (?:should|would)',
    r'who (?:should|would)',
    r'(?:enter|provide|specify|give|type|input|write)\s+(?:a|the|your)',
    r'what.*(?:name|value|path|url|content|text|message)',
    r'please (?:enter|provide|specify|give|type)',
    r'describe|explain|elaborate|clarify',
    r'tell me (?:about|more|how)',
    r'what do you (?:think|want|need|prefer)',
    r'any (?:suggestions|recommendations|preferences|thoughts)',
    r'choose (?:from|between|one of)',
    r'select (?:from|one of|which)',
    r'pick (?:one|from|between)',
    r'\n\s*[1-9][.)]\s+\S',
    r'\n\s*[a-d][.)]\s+\S',
    r'option\s+[a-d]\s*:',
    r'\n\s*[-*•]\s+\S',
    '\\n\\s*[0-9]\uFE0F?\u20E3\\s+\\S',
    r'would you like (?:me to|to):\s*\n',
    r'[┌├└│┐┤┘─╔╠╚║╗╣╝═]',
    r'\[.+\]\s+\[.+\]',
    r'\d+[.)]\s+something else\??',
)]

_APPROVAL_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r'^(?:shall|should|can|could|may|would|will|do|does|did|is|are|was|were|have|has|had)\s+(?:i|we|you|it|this|that)\b',
    r'(?:proceed|continue|go ahead|start|begin|execute|run|apply|commit|save|delete|remove|create|add|update|modify|change|overwrite|replace).*\?$',
    r'(?:ok|okay|alright|ready|confirm|approve|accept|allow|enable|disable|skip|ignore|dismiss|close|cancel|abort|stop|exit|quit).*\?$',
    r'(?:right|correct|yes|no)\s*\?$',
    r'(?:is that|does that|would that|should that)\s+(?:ok|okay|work|help|be\s+(?:ok|fine|good|acceptable))',
    r'(?:do you want|would you like|shall i|should i|can i|may i|could i)',
    r'(?:want me to|like me to|need me to)',
    r'(?:approve|confirm|authorize|permit|allow)\s+(?:this|the|these)',
    r'(?:yes or no|y/n|yes/no|\[y/n\]|\(y/n\))',
    r'(?:are you sure|do you confirm|please confirm|confirm that)',
    r'(?:this will|this would|this is going to)',
)]

_NEWLINE_NUMBERED = re.compile(r'\n\s*\d+[.)]\s+')
_INTERROGATIVE = re.compile(r'^(?:what|which|where|when|why|how|who|whom|whose)\b', re.IGNORECASE)


def is_approval_question(text: str, short_threshold: int = SHORT_QUESTION_THRESHOLD) -> bool:
    """Whether ``text`` is a yes/no confirmation that deserves approve/reject buttons."""
    lower = text.lower()

    if any(p.search(lower) for p in _REQUIRES_SPECIFIC_INPUT):
        return False
    if len(_NEWLINE_NUMBERED.findall(text)) >= 2:
        return False

    if any(p.search(lower) for p in _APPROVAL_PATTERNS):
        return True

    stripped = lower.strip()
    return (
        len(lower) < short_threshold
        and stripped.endswith("?")
        and not _INTERROGATIVE.match(stripped)
    )


def classify(
    question: str,
    explicit: Optional[Iterable[ExplicitChoice]] = None,
    short_threshold: int = SHORT_QUESTION_THRESHOLD,
) -> Tuple[List[Choice], bool]:
    """(choices, is_approval) for a single question. The two never both apply."""
    choices = normalize_explicit_choices(question, explicit) if explicit else []
    if not choices:
        choices = extract_choices(question)
    if choices:
        return choices, False
    return [], is_approval_question(question, short_threshold)
