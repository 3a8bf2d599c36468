"""
Utility functions shared by the switchboard service.

Includes operator message sanitization (the trust boundary for answers),
request/queue id generation and label ellipsizing.
"""
import re
import time
import uuid

# Security: Maximum message length accepted from an operator channel
MAX_OPERATOR_MESSAGE_LENGTH = 100000

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f]')


def sanitize_operator_message(text: str, limit: int = MAX_OPERATOR_MESSAGE_LENGTH) -> str:
    """
    Sanitize text received from an operator channel before it reaches a caller.

    Security:
    - Removes control characters (except tab, newline, carriage return)
    - Truncates to ``limit`` to prevent abuse

    This function is the trust boundary — answers are sanitized BEFORE
    being handed back to an agent.
    """
    if not isinstance(text, str):
        text = "" if text is None else str(text)

    # Remove control chars except \t (0x09), \n (0x0a), \r (0x0d)
    text = _CONTROL_CHARS.sub('', text)

    # Length limit
    if len(text) > limit:
        text = text[:limit] + "... [truncated]"

    return text.strip()


def new_id(prefix: str) -> str:
    """Generate an id like ``tc_1718000000000_3f9a1c2b7``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def now_ms() -> int:
    return int(time.time() * 1000)


def ellipsize(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, ending in '...' when cut."""
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."
