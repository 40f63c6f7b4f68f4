from __future__ import annotations

import json
import unittest

from txgate.context import RequestContext
from txgate.dispatcher import Dispatcher
from txgate.logging import AuditLogger
from txgate.main import build_handlers
from txgate.responses import ErrorKind
from txgate.security import SecurityRegistry
from txgate.tests.support import (
    AUTH_TX,
    PUBLIC_PROFILE,
    REPORTS_TX,
    SESSION_PROFILE,
    AuthFlowTestCase,
    audit_actions,
)


class FailingDatabase:
    async def execute(self, schema, query_name, params=None):
        raise ConnectionError("connection refused")


class DispatcherTests(AuthFlowTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.audit = AuditLogger(self.database)
        self.registry = SecurityRegistry(self.database, build_handlers(self.service))
        self.registry.start()
        self.dispatcher = self.make_dispatcher(self.registry, PUBLIC_PROFILE)

    def make_dispatcher(self, registry: SecurityRegistry, public_profile_id: int | None) -> Dispatcher:
        return Dispatcher(registry, self.service.sessions, self.audit, public_profile_id=public_profile_id)

    async def test_public_profile_runs_auth_flow(self) -> None:
        params = {"username": "alice", "email": "alice@x.com", "password": "Passw0rd!"}
        response = await self.dispatcher.process(AUTH_TX["register"], params, self.request)
        self.assertEqual(response.code, 201)
        self.assertEqual(self.email.last("email_verification")["to"], "alice@x.com")
        self.assertEqual(await audit_actions(self.database), ["tx_exec"])

    async def test_executed_tx_emits_event_line(self) -> None:
        with self.assertLogs("txgate.events", level="INFO") as logs:
            await self.dispatcher.process(AUTH_TX["request_password_reset"], {"identifier": "x@x.com"}, self.request)
        entry = json.loads(logs.records[-1].getMessage())
        self.assertEqual(entry["event"], "tx_exec")
        self.assertEqual(entry["method_name"], "request_password_reset")
        self.assertEqual(entry["response_code"], 200)

    async def test_string_tx_is_accepted(self) -> None:
        response = await self.dispatcher.process(str(AUTH_TX["request_password_reset"]), {"identifier": "x@x.com"}, self.request)
        self.assertEqual(response.code, 200)

    async def test_no_session_and_no_public_profile_requires_login(self) -> None:
        dispatcher = self.make_dispatcher(self.registry, None)
        response = await dispatcher.process(AUTH_TX["register"], {}, self.request)
        self.assertEqual(response.code, ErrorKind.LOGIN_REQUIRED.status)
        self.assertEqual(response.message, ErrorKind.LOGIN_REQUIRED.message)

    async def test_denied_tx_is_audited(self) -> None:
        response = await self.dispatcher.process(REPORTS_TX, {}, self.request)
        self.assertEqual(response.code, ErrorKind.PERMISSION_DENIED.status)
        self.assertEqual(await audit_actions(self.database), ["tx_denied"])

    async def test_session_profile_is_used_over_public(self) -> None:
        with_session = self.request.with_identity(42, SESSION_PROFILE)
        denied = await self.dispatcher.process(AUTH_TX["register"], {}, with_session)
        self.assertEqual(denied.code, ErrorKind.PERMISSION_DENIED.status)

        # Reports is granted but has no registered handler.
        missing_handler = await self.dispatcher.process(REPORTS_TX, {}, with_session)
        self.assertEqual(missing_handler.code, ErrorKind.SERVER_ERROR.status)

    async def test_unknown_tx_is_server_misconfiguration(self) -> None:
        response = await self.dispatcher.process(999, {}, self.request)
        self.assertEqual(response.code, ErrorKind.TX_NOT_FOUND.status)
        self.assertEqual(response.message, ErrorKind.TX_NOT_FOUND.message)
        self.assertEqual(await audit_actions(self.database), ["tx_error"])

    async def test_failed_registry_is_service_unavailable(self) -> None:
        registry = SecurityRegistry(FailingDatabase(), build_handlers(self.service))
        registry.start()
        dispatcher = self.make_dispatcher(registry, PUBLIC_PROFILE)
        with self.assertLogs("txgate.dispatcher", level="ERROR"):
            first = await dispatcher.process(AUTH_TX["register"], {}, self.request)
        second = await dispatcher.process(AUTH_TX["register"], {}, self.request)
        self.assertEqual(first.code, ErrorKind.SERVICE_UNAVAILABLE.status)
        self.assertEqual(second.code, ErrorKind.SERVICE_UNAVAILABLE.status)

    async def test_authenticate_resolves_session(self) -> None:
        await self.register_verified()
        token = (await self.login()).data["session_token"]
        context = await self.dispatcher.authenticate(RequestContext(session_token=token))
        self.assertTrue(context.has_session)
        self.assertEqual(context.profile_id, SESSION_PROFILE)

        anonymous = await self.dispatcher.authenticate(RequestContext(session_token="garbage"))
        self.assertFalse(anonymous.has_session)


if __name__ == "__main__":
    unittest.main()
