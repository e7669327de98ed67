"""
Sanitizers for untrusted input.

Ports end up in a URL and a child environment, proxy responses and argv
end up on the terminal, and account verbs are forwarded to another
process. Everything passes through here first.
"""

import re
from typing import Iterable

from rich.markup import escape

MIN_PORT = 1
MAX_PORT = 65535

ALLOWED_ACCOUNT_COMMANDS = frozenset({"add", "list", "remove", "verify"})

# C0 controls except tab, LF and CR, plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def validate_port(raw: str | None) -> int | None:
    """
    Parse a port number strictly.

    The value must already be in canonical decimal form: plain ASCII
    digits, no sign, no leading zeros, no fraction and no surrounding
    whitespace (``" 80 "`` is rejected rather than trimmed), within
    1-65535. Returns None for anything else.
    """
    if raw is None:
        return None
    text = str(raw)
    if not text.isascii() or not text.isdigit():
        return None
    port = int(text)
    if str(port) != text:
        return None
    if port < MIN_PORT or port > MAX_PORT:
        return None
    return port


def strip_control_chars(text) -> str:
    """Remove terminal control characters, keeping tab, newlines and all printable text."""
    if text is None:
        return ""
    return _CONTROL_CHARS.sub("", str(text))


def filter_allowed_subcommands(
    args: Iterable[str], allowed: Iterable[str] = ALLOWED_ACCOUNT_COMMANDS
) -> list[str]:
    """Keep only allow-listed arguments, in their original order."""
    allowed = frozenset(allowed)
    return [arg for arg in args if arg in allowed]


def safe_display(text, limit: int = 80) -> str:
    """Prepare untrusted text for rich output: strip controls, truncate, escape markup."""
    cleaned = strip_control_chars(text)
    if len(cleaned) > limit:
        cleaned = cleaned[:limit] + "..."
    return escape(cleaned)
