from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace


def _new_request_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class RequestContext:
    """Caller metadata handed to every flow; nothing is read from ambient state."""

    request_id: str = field(default_factory=_new_request_id)
    ip: str | None = None
    user_agent: str | None = None
    user_id: int | None = None
    profile_id: int | None = None
    session_token: str | None = None
    device_token: str | None = None

    @property
    def has_session(self) -> bool:
        return self.user_id is not None

    def with_identity(self, user_id: int | None, profile_id: int | None) -> "RequestContext":
        return replace(self, user_id=user_id, profile_id=profile_id)
