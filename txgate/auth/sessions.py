from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt

from txgate.db import Database
from txgate.db.queries import SECURITY
from txgate.utils.clock import Clock, as_utc, utcnow

ALGORITHM = "HS256"


@dataclass(frozen=True)
class SessionIdentity:
    session_id: str
    user_id: int
    profile_id: int | None
    expires_at: datetime


class SessionManager:
    """Signed session tokens backed by revocable ``user_sessions`` rows."""

    def __init__(
        self,
        database: Database,
        secret: str,
        ttl_seconds: int = 3600,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self.clock = clock or utcnow
        self.logger = logger or logging.getLogger("txgate.sessions")

    async def issue(
        self,
        user_id: int,
        profile_id: int | None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        moment = self.clock()
        exp = moment + timedelta(seconds=self.ttl_seconds)
        session_id = uuid.uuid4().hex
        await self.database.execute(
            SECURITY,
            "insert_session",
            [session_id, user_id, profile_id, exp, ip, user_agent],
        )
        payload = {
            "sub": str(user_id),
            "sid": session_id,
            "profile": profile_id,
            "iat": int(moment.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def decode(self, token: str) -> dict | None:
        try:
            # Expiry is judged against the injected clock below.
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "sid", "exp"]},
            )
        except jwt.InvalidTokenError:
            return None
        if payload["exp"] <= self.clock().timestamp():
            return None
        return payload

    async def verify(self, token: str | None) -> SessionIdentity | None:
        if not token:
            return None
        payload = self.decode(token)
        if payload is None:
            return None
        rows = await self.database.execute(SECURITY, "get_session", [payload["sid"]])
        if not rows:
            return None
        row = rows[0]
        expires_at = as_utc(row["expires_at"])
        if row["revoked_at"] is not None or expires_at <= self.clock():
            return None
        if str(row["user_id"]) != str(payload["sub"]):
            return None
        return SessionIdentity(
            session_id=row["session_id"],
            user_id=row["user_id"],
            profile_id=row["profile_id"],
            expires_at=expires_at,
        )

    async def revoke(self, token: str | None) -> bool:
        payload = self.decode(token) if token else None
        if payload is None:
            return False
        rows = await self.database.execute(SECURITY, "revoke_session", [payload["sid"], self.clock()])
        return bool(rows)

    async def revoke_all_for_user(self, user_id: int) -> int:
        rows = await self.database.execute(SECURITY, "revoke_sessions_for_user", [user_id, self.clock()])
        if rows:
            self.logger.info("Revoked %s session(s) for user_id=%s", len(rows), user_id)
        return len(rows)
