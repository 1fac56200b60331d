"""
Logging helpers that keep secrets out of log output.

API keys travel in RPC URLs (``?api-key=...``), and wallet tooling tends to
log payloads that may contain seed phrases or private keys.
"""

import logging
import re
from typing import Iterable, List, Optional, Pattern, Tuple

SENSITIVE_FIELDS = ("privateKey", "seed", "mnemonic", "apiKey", "token")
MAX_LOG_LENGTH = 1000

_API_KEY_PATTERN = re.compile(r"(api-key=)[^&\s]+")


def _field_patterns(fields: Iterable[str]) -> List[Tuple[str, Pattern]]:
    patterns = []
    for name in fields:
        escaped = re.escape(name)
        for source in (
            rf'"{escaped}"\s*:\s*"[^"]*"',
            rf"'{escaped}'\s*:\s*'[^']*'",
            rf"\b{escaped}\s*[=:]\s*[^\s,}}\]]+",
        ):
            patterns.append((name, re.compile(source, re.IGNORECASE)))
    return patterns


_FIELD_PATTERNS = _field_patterns(SENSITIVE_FIELDS)


def redact(text: str, max_length: Optional[int] = MAX_LOG_LENGTH) -> str:
    """
    Redact secrets from a string and truncate it.

    Args:
        text: Raw log text
        max_length: Truncate beyond this many characters (None disables)

    Returns:
        Sanitized text
    """
    if not text:
        return text
    if max_length is not None and len(text) > max_length:
        text = text[:max_length] + "..."
    text = _API_KEY_PATTERN.sub(r"\1REDACTED", text)
    for name, pattern in _FIELD_PATTERNS:
        text = pattern.sub(f"{name}=***", text)
    return text


class RedactingFilter(logging.Filter):
    """Logging filter that rewrites each record's message through ``redact``."""

    def __init__(self, max_length: Optional[int] = MAX_LOG_LENGTH):
        super().__init__()
        self.max_length = max_length

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = redact(message, self.max_length)
        record.args = None
        return True


def configure_logging(level: str = "WARNING") -> logging.Logger:
    """Configure the root logger with redaction on every handler."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())
    return root
