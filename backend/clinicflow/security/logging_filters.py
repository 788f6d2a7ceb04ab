"""Logging filters that scrub sensitive content."""

from __future__ import annotations

import logging
import re

_SENSITIVE_PATTERN = re.compile(
    r"(Authorization: Bearer\s+[\w\.-]+|Bearer\s+[\w\.-]{16,}|access_token\"\s*:\s*\"[^\"]+\"|refresh\"\s*:\s*\"[^\"]+\"|password\"\s*:\s*\"[^\"]+\")",
    re.IGNORECASE,
)
_PHONE_PATTERN = re.compile(r"\+\d[\d\s\-()]{8,}\d")


def redact(message: str) -> str:
    """Mask bearer tokens, passwords and phone numbers."""
    message = _SENSITIVE_PATTERN.sub("**REDACTED**", message)
    return _PHONE_PATTERN.sub("**PHONE**", message)


class SensitiveFilter(logging.Filter):
    """Replace sensitive tokens in log messages with a redaction marker."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if record.args:
            args = record.args if isinstance(record.args, tuple) else (record.args,)
            record.args = tuple(
                redact(arg) if isinstance(arg, str) else arg for arg in args
            )
        return True


__all__ = ["SensitiveFilter", "redact"]
