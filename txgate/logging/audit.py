from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Mapping

from txgate.db.queries import SECURITY
from txgate.utils.sanitize import redact_secrets, redact_secrets_in_string

if TYPE_CHECKING:
    from txgate.context import RequestContext
    from txgate.db import Database


class AuditLogger:
    """Writes audit rows through the database; never fails the caller."""

    def __init__(self, database: "Database", logger: logging.Logger | None = None) -> None:
        self.database = database
        self.logger = logger or logging.getLogger("txgate.audit")

    async def record(
        self,
        action: str,
        request: "RequestContext | None" = None,
        *,
        user_id: int | None = None,
        profile_id: int | None = None,
        object_name: str | None = None,
        method_name: str | None = None,
        tx: int | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> bool:
        if request is not None:
            user_id = user_id if user_id is not None else request.user_id
            profile_id = profile_id if profile_id is not None else request.profile_id
        payload = {
            "request_id": request.request_id if request is not None else None,
            "user_id": user_id,
            "profile_id": profile_id,
            "action": action,
            "object_name": object_name,
            "method_name": method_name,
            "tx": tx,
            "details": redact_secrets(dict(details) if details else {}),
        }
        try:
            await self.database.execute(SECURITY, "insert_audit_log", list(payload.values()))
        except Exception as exc:
            self.logger.warning("Audit write failed for action=%s: %s", action, redact_secrets_in_string(exc))
            return False
        self.logger.info(json.dumps({"category": "audit", **payload}, default=str))
        return True
