from __future__ import annotations

import logging
from typing import Any

from txgate.auth.sessions import SessionManager
from txgate.context import RequestContext
from txgate.logging import AuditLogger, log_event
from txgate.responses import ErrorKind, Response, failure
from txgate.security import SecurityRegistry
from txgate.utils.sanitize import redact_secrets_in_string


class Dispatcher:
    """Routes one ``(tx, params)`` request through readiness, lookup and authorization."""

    def __init__(
        self,
        registry: SecurityRegistry,
        sessions: SessionManager,
        audit: AuditLogger,
        public_profile_id: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.registry = registry
        self.sessions = sessions
        self.audit = audit
        self.public_profile_id = public_profile_id
        self.logger = logger or logging.getLogger("txgate.dispatcher")

    async def authenticate(self, request: RequestContext) -> RequestContext:
        identity = await self.sessions.verify(request.session_token)
        if identity is None:
            return request.with_identity(None, None)
        return request.with_identity(identity.user_id, identity.profile_id)

    async def process(self, tx: Any, params: Any, request: RequestContext) -> Response:
        profile_id = request.profile_id if request.has_session else self.public_profile_id
        if profile_id is None:
            return failure(ErrorKind.LOGIN_REQUIRED)

        try:
            await self.registry.ready()
        except Exception as exc:
            self.logger.error("Rejecting tx=%s, registry unavailable: %s", tx, redact_secrets_in_string(exc))
            return failure(ErrorKind.SERVICE_UNAVAILABLE)

        target = self.registry.resolve_tx(tx)
        if target is None:
            self.logger.error("Unknown tx=%r", tx)
            await self.audit.record(
                "tx_error", request, profile_id=profile_id, details={"reason": "tx_not_found", "tx": str(tx)}
            )
            return failure(ErrorKind.TX_NOT_FOUND)

        audit_fields = {
            "profile_id": profile_id,
            "object_name": target.object_name,
            "method_name": target.method_name,
            "tx": target.tx,
        }
        if not self.registry.authorize(profile_id, target.method_name, target.object_name):
            log_event("tx_denied", logging.WARNING, **audit_fields)
            await self.audit.record("tx_denied", request, details={"reason": "permission_denied"}, **audit_fields)
            return failure(ErrorKind.PERMISSION_DENIED)

        try:
            response = await self.registry.dispatch(target.object_name, target.method_name, params, request)
        except Exception as exc:
            message = redact_secrets_in_string(exc)
            self.logger.error("tx=%s %s.%s failed: %s", target.tx, target.object_name, target.method_name, message)
            await self.audit.record("tx_error", request, details={"error": message}, **audit_fields)
            return failure(ErrorKind.UNKNOWN_ERROR)

        log_event("tx_exec", response_code=response.code, **audit_fields)
        await self.audit.record("tx_exec", request, details={"response_code": response.code}, **audit_fields)
        return response
