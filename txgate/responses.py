from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence


class ErrorKind(Enum):
    INVALID_PARAMETERS = (400, "invalid parameters")
    INVALID_CREDENTIALS = (401, "invalid credentials")
    LOGIN_REQUIRED = (401, "login required")
    SESSION_EXISTS = (409, "session already active")
    ALREADY_REGISTERED = (409, "already registered")
    EMAIL_REQUIRED = (400, "email required")
    EMAIL_NOT_VERIFIED = (403, "email not verified")
    INVALID_TOKEN = (400, "invalid token")
    EXPIRED_TOKEN = (410, "expired token")
    TOO_MANY_REQUESTS = (429, "too many requests")
    PERMISSION_DENIED = (403, "permission denied")
    SERVICE_UNAVAILABLE = (503, "service unavailable")
    TX_NOT_FOUND = (500, "transaction not found")
    SERVER_ERROR = (500, "server error")
    UNKNOWN_ERROR = (500, "unknown error")

    @property
    def status(self) -> int:
        return self.value[0]

    @property
    def message(self) -> str:
        return self.value[1]


@dataclass(frozen=True)
class Response:
    """The one envelope every flow and every route returns."""

    code: int
    message: str
    data: dict[str, Any] | None = None
    alerts: Sequence[str] | None = field(default=None)

    @property
    def ok(self) -> bool:
        return 200 <= self.code < 300

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        if self.alerts:
            payload["alerts"] = list(self.alerts)
        return payload


def success(message: str, data: dict[str, Any] | None = None, code: int = 200) -> Response:
    return Response(code=code, message=message, data=data)


def failure(kind: ErrorKind, alerts: Sequence[str] | None = None) -> Response:
    return Response(code=kind.status, message=kind.message, alerts=tuple(alerts) if alerts else None)
