from __future__ import annotations

import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import insert, select

from txgate.auth import AuthService, PasswordHasher, SessionManager
from txgate.config import AuthSettings, EmailSettings, Settings
from txgate.context import RequestContext
from txgate.db import Database
from txgate.email import EmailResult
from txgate.logging import AuditLogger
from txgate.models import AuditLog, BusinessObject, Method, PermissionGrant, Profile

MEMORY_URL = "sqlite+aiosqlite:///:memory:"

SESSION_PROFILE = 1
PUBLIC_PROFILE = 2

AUTH_TX = {
    "register": 101,
    "request_email_verification": 102,
    "verify_email": 103,
    "request_password_reset": 104,
    "verify_password_reset": 105,
    "reset_password": 106,
    "verify_login_challenge": 107,
}
REPORTS_TX = 200

PASSWORD = "Passw0rd!"
WRONG_CODE = "000000"


class MutableClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingEmailService:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    async def send_email_verification(self, to, token, code, app_name=None):
        return self._record("email_verification", to, token, code)

    async def send_password_reset(self, to, token, code, app_name=None):
        return self._record("password_reset", to, token, code)

    async def send_login_challenge(self, to, token, code, app_name=None):
        return self._record("login_challenge", to, token, code)

    def _record(self, kind: str, to: str, token: str, code: str) -> EmailResult:
        if self.fail:
            raise ConnectionError(f"smtp down while sending token={token}")
        self.sent.append({"kind": kind, "to": to, "token": token, "code": code})
        return EmailResult(ok=True, mode="test")

    def last(self, kind: str) -> dict[str, Any]:
        matches = [item for item in self.sent if item["kind"] == kind]
        if not matches:
            raise AssertionError(f"no {kind} email was sent")
        return matches[-1]


def make_settings(database_url: str = MEMORY_URL, **auth_overrides: Any) -> Settings:
    overrides = {
        "password_hash_rounds": 1,
        "public_profile_id": PUBLIC_PROFILE,
        "session_profile_id": SESSION_PROFILE,
        **auth_overrides,
    }
    auth = replace(AuthSettings(), **overrides)
    return Settings(
        database_url=database_url,
        session_secret="test-session-secret-with-enough-length",
        app_name="txgate-test",
        app_env="test",
        auth=auth,
        email=EmailSettings(),
    )


async def build_database(url: str = MEMORY_URL) -> Database:
    database = Database(url)
    await database.create_schema()
    return database


async def seed_registry(
    database: Database,
    extra_methods: list[tuple[str, str, Any]] | None = None,
    extra_grants: list[tuple[int, str, str]] | None = None,
) -> None:
    """Profiles 1 (session) and 2 (public); the public profile may call every Auth method."""
    methods = [("Auth", name, tx) for name, tx in AUTH_TX.items()]
    methods.append(("Reports", "summary", REPORTS_TX))
    methods.extend(extra_methods or [])
    grants = [(PUBLIC_PROFILE, "Auth", name) for name in AUTH_TX]
    grants.append((SESSION_PROFILE, "Reports", "summary"))
    grants.extend(extra_grants or [])

    async with database.engine.begin() as connection:
        await connection.execute(
            insert(Profile.__table__),
            [{"id": SESSION_PROFILE, "name": "session"}, {"id": PUBLIC_PROFILE, "name": "public"}],
        )
        object_ids: dict[str, int] = {}
        for object_name in sorted({object_name for object_name, _, _ in methods}):
            result = await connection.execute(
                insert(BusinessObject.__table__).values(name=object_name).returning(BusinessObject.__table__.c.id)
            )
            object_ids[object_name] = result.scalar_one()
        method_ids: dict[tuple[str, str], int] = {}
        for object_name, method_name, tx in methods:
            result = await connection.execute(
                insert(Method.__table__)
                .values(object_id=object_ids[object_name], name=method_name, tx=tx)
                .returning(Method.__table__.c.id)
            )
            method_ids[(object_name, method_name)] = result.scalar_one()
        for profile_id, object_name, method_name in grants:
            await connection.execute(
                insert(PermissionGrant.__table__).values(
                    profile_id=profile_id, method_id=method_ids[(object_name, method_name)]
                )
            )


async def audit_actions(database: Database) -> list[str]:
    async with database.engine.connect() as connection:
        result = await connection.execute(select(AuditLog.__table__.c.action).order_by(AuditLog.__table__.c.id))
        return [row[0] for row in result]


def build_auth_service(
    database: Database,
    settings: Settings,
    email: RecordingEmailService,
    clock: MutableClock,
) -> AuthService:
    sessions = SessionManager(database, settings.session_secret, settings.auth.session_ttl_seconds, clock=clock)
    return AuthService(
        settings.auth,
        database,
        email,
        sessions,
        audit=AuditLogger(database),
        hasher=PasswordHasher(settings.auth.password_hash_rounds),
        app_name=settings.app_name,
        clock=clock,
    )


class AuthFlowTestCase(unittest.IsolatedAsyncioTestCase):
    auth_overrides: dict = {}

    async def asyncSetUp(self) -> None:
        self.database = await build_database()
        await seed_registry(self.database)
        self.settings = make_settings(**self.auth_overrides)
        self.email = RecordingEmailService()
        self.clock = MutableClock()
        self.service = build_auth_service(self.database, self.settings, self.email, self.clock)
        self.request = RequestContext(ip="127.0.0.1", user_agent="unittest")

    async def asyncTearDown(self) -> None:
        await self.database.dispose()

    async def register(self, username: str | None = "alice", email: str | None = "alice@x.com", password: str = PASSWORD):
        params = {"password": password}
        if username is not None:
            params["username"] = username
        if email is not None:
            params["email"] = email
        return await self.service.register(params, self.request)

    async def register_verified(self, username: str = "alice", email: str = "alice@x.com") -> None:
        response = await self.register(username, email)
        self.assertEqual(response.code, 201)
        sent = self.email.last("email_verification")
        verified = await self.service.verify_email({"token": sent["token"], "code": sent["code"]}, self.request)
        self.assertEqual(verified.code, 200)

    async def login(self, identifier: str = "alice@x.com", password: str = PASSWORD, request: RequestContext | None = None):
        return await self.service.login({"identifier": identifier, "password": password}, request or self.request)
