from __future__ import annotations

import re
from typing import Any, Mapping

REDACTED = "[REDACTED]"

_SENSITIVE_KEYS = {
    "pass",
    "password",
    "new_password",
    "newpassword",
    "token",
    "code",
    "secret",
    "csrf_token",
    "authorization",
    "cookie",
    "set-cookie",
    "otp",
    "one_time_code",
    "session_token",
    "device_token",
    "challenge_token",
}

_SECRET_PAIR_RE = re.compile(
    r"\b(token|code|password|new_password|newPassword|session_token|device_token)\b\s*[:=]\s*([^\s,;]+)",
    re.IGNORECASE,
)


def is_sensitive_key(key: str) -> bool:
    return str(key).strip().lower() in _SENSITIVE_KEYS


def redact_secrets(value: Any, max_depth: int = 6, max_string_length: int = 2000) -> Any:
    """Return a copy of ``value`` with sensitive mapping keys replaced by a marker."""

    def walk(item: Any, depth: int) -> Any:
        if depth > max_depth:
            return "[Truncated]"
        if item is None or isinstance(item, (bool, int, float)):
            return item
        if isinstance(item, str):
            return item if len(item) <= max_string_length else item[:max_string_length] + "..."
        if isinstance(item, Mapping):
            out: dict[str, Any] = {}
            for key, val in item.items():
                out[str(key)] = REDACTED if is_sensitive_key(key) else walk(val, depth + 1)
            return out
        if isinstance(item, (list, tuple)):
            return [walk(element, depth + 1) for element in item]
        text = str(item)
        return text if len(text) <= max_string_length else text[:max_string_length] + "..."

    return walk(value, 0)


def redact_secrets_in_string(message: Any) -> str:
    text = message if isinstance(message, str) else str(message)
    return _SECRET_PAIR_RE.sub(lambda match: f"{match.group(1)}={REDACTED}", text)
