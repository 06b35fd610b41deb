"""Secret redaction for log output.

Masks API keys, chat tokens and password-like values before they reach any
log handler.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

MASK = "***"

SENSITIVE_KEY_MARKERS = ("KEY", "TOKEN", "SECRET", "PASSWORD", "PASSWD", "CREDENTIAL", "AUTH")

SECRET_PATTERNS = [
    re.compile(r"\bsk-ant-[A-Za-z0-9_\-]{8,}"),
    re.compile(r"\bsk-[A-Za-z0-9_\-]{16,}"),
    re.compile(r"\bxox[abposr]-[A-Za-z0-9\-]{8,}"),
    re.compile(r"\bxapp-[A-Za-z0-9\-]{8,}"),
    re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/\-]+=*"),
]

# key=value / key: value pairs whose value must be hidden
SECRET_ASSIGNMENT = re.compile(
    r"(?i)\b([A-Za-z_]*(?:password|passwd|secret|api[_-]?key|token)[A-Za-z_]*)"
    r"(\s*[=:]\s*[\"']?)([^\s\"',;&]+)"
)


def is_sensitive_key(key: str) -> bool:
    """Return True if an environment/config key names a secret."""
    upper = key.upper()
    return any(marker in upper for marker in SENSITIVE_KEY_MARKERS)


def redact_env(env: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``env`` with secret-looking values masked."""
    if not env:
        return {}
    return {key: MASK if is_sensitive_key(key) else value for key, value in env.items()}


def redact_text(text: str) -> str:
    """Mask token shapes and secret assignments in free text."""
    if not text:
        return text
    for pattern in SECRET_PATTERNS:
        text = pattern.sub(MASK, text)
    return SECRET_ASSIGNMENT.sub(lambda m: f"{m.group(1)}{m.group(2)}{MASK}", text)


class RedactingFilter(logging.Filter):
    """Logging filter that applies ``redact_text`` to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        if record.exc_text:
            record.exc_text = redact_text(record.exc_text)
        return True
