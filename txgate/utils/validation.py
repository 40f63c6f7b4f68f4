from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
DIGITS_RE = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class ValidationResult:
    passed: bool
    alerts: Sequence[str]


def normalize_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


class FieldValidator:
    """Collects field-level alerts for one request payload."""

    IDENTIFIER_BOUNDS = (3, 320)
    EMAIL_MAX_LENGTH = 320
    TOKEN_BOUNDS = (16, 256)
    CODE_BOUNDS = (4, 12)

    def __init__(self) -> None:
        self._alerts: list[str] = []

    @property
    def alerts(self) -> tuple[str, ...]:
        return tuple(self._alerts)

    def result(self) -> ValidationResult:
        return ValidationResult(passed=len(self._alerts) == 0, alerts=tuple(self._alerts))

    def _required(self, value: Any, label: str) -> str | None:
        text = normalize_text(value)
        if text is None:
            self._alerts.append(f"{label} is required")
        return text

    def _length(self, text: str, label: str, minimum: int, maximum: int) -> bool:
        if len(text) < minimum or len(text) > maximum:
            self._alerts.append(f"{label} must be between {minimum} and {maximum} characters")
            return False
        return True

    def identifier(self, value: Any, label: str = "identifier") -> bool:
        text = self._required(value, label)
        if text is None:
            return False
        return self._length(text, label, *self.IDENTIFIER_BOUNDS)

    def email(self, value: Any, label: str = "email", required: bool = True) -> bool:
        text = normalize_text(value)
        if text is None:
            if required:
                self._alerts.append(f"{label} is required")
                return False
            return True
        if len(text) > self.EMAIL_MAX_LENGTH or not EMAIL_RE.match(text):
            self._alerts.append(f"{label} must be a valid email address")
            return False
        return True

    def username(
        self,
        value: Any,
        minimum: int = 3,
        maximum: int = 64,
        label: str = "username",
        required: bool = True,
    ) -> bool:
        text = normalize_text(value)
        if text is None:
            if required:
                self._alerts.append(f"{label} is required")
                return False
            return True
        if "@" in text:
            self._alerts.append(f"{label} must not contain '@'")
            return False
        return self._length(text, label, minimum, maximum)

    def password(self, value: Any, minimum: int = 8, maximum: int = 200, label: str = "password") -> bool:
        # Passwords are checked as given; surrounding whitespace is significant.
        if not isinstance(value, str) or value.strip() == "":
            self._alerts.append(f"{label} is required")
            return False
        return self._length(value, label, minimum, maximum)

    def token(self, value: Any, label: str = "token") -> bool:
        text = self._required(value, label)
        if text is None:
            return False
        return self._length(text, label, *self.TOKEN_BOUNDS)

    def code(self, value: Any, label: str = "code") -> bool:
        text = self._required(value, label)
        if text is None:
            return False
        if not self._length(text, label, *self.CODE_BOUNDS):
            return False
        if not DIGITS_RE.match(text):
            self._alerts.append(f"{label} must contain only digits")
            return False
        return True
