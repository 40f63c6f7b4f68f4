from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError

from txgate.db import Database, Row
from txgate.db.queries import SECURITY
from txgate.utils.clock import as_utc

from .codec import SecretPair, SecretRecord

EMAIL_VERIFICATION = "email_verification"
PASSWORD_RESET = "password_reset"


_DUPLICATE_USER_MARKERS = ("users.email", "users.username", "uq_users_email", "uq_users_username")


class DuplicateUserError(ValueError):
    pass


def _is_duplicate_user(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return any(marker in message for marker in _DUPLICATE_USER_MARKERS)


def _max_attempts(meta: Any, default: int) -> int:
    if isinstance(meta, dict):
        value = meta.get("max_attempts")
        if isinstance(value, int) and value > 0:
            return value
    return default


class AuthRepository:
    """Typed wrappers over the ``security`` statements used by the auth flows."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def _run(self, name: str, *params: Any) -> list[Row]:
        return await self.database.execute(SECURITY, name, list(params))

    async def _one(self, name: str, *params: Any) -> Row | None:
        return await self.database.execute_one(SECURITY, name, list(params))

    # users

    async def find_user(self, identifier: str) -> Row | None:
        if "@" in identifier:
            return await self.find_user_by_email(identifier)
        return await self.find_user_by_username(identifier)

    async def find_user_by_email(self, email: str) -> Row | None:
        return await self._one("get_user_by_email", email)

    async def find_user_by_username(self, username: str) -> Row | None:
        return await self._one("get_user_by_username", username)

    async def get_user(self, user_id: int) -> Row | None:
        return await self._one("get_user_by_id", user_id)

    async def create_user(
        self,
        username: str | None,
        email: str | None,
        password_hash: str,
        profile_id: int,
    ) -> int:
        try:
            async with self.database.transaction() as tx:
                rows = await tx.execute(SECURITY, "insert_user", [username, email, password_hash])
                user_id = rows[0]["user_id"]
                await tx.execute(SECURITY, "insert_user_profile", [user_id, profile_id])
        except IntegrityError as exc:
            if _is_duplicate_user(exc):
                raise DuplicateUserError(str(exc.orig)) from exc
            raise
        return user_id

    async def verify_email_with_code(self, code_id: int, user_id: int, now: datetime) -> bool:
        """Consume the code and mark the email verified together; False if the code was already used."""
        async with self.database.transaction() as tx:
            if not await tx.execute(SECURITY, "consume_one_time_code", [code_id, now]):
                return False
            await tx.execute(SECURITY, "set_user_email_verified", [user_id, now])
        return True

    async def update_password(self, user_id: int, password_hash: str) -> bool:
        return bool(await self._run("update_user_password", user_id, password_hash))

    async def touch_last_login(self, user_id: int, now: datetime) -> None:
        await self._run("update_user_last_login", user_id, now)

    # one-time codes

    async def create_code(
        self,
        user_id: int,
        purpose: str,
        pair: SecretPair,
        expires_at: datetime,
        meta: dict[str, Any],
    ) -> int:
        rows = await self._run(
            "insert_one_time_code", user_id, purpose, pair.code_hash, pair.token_hash, expires_at, meta
        )
        return rows[0]["id"]

    async def invalidate_codes(self, user_id: int, purpose: str, now: datetime) -> int:
        return len(await self._run("consume_one_time_codes_for_user_purpose", user_id, purpose, now))

    async def find_code(self, purpose: str, token_hash: str, default_max_attempts: int) -> SecretRecord | None:
        row = await self._one("get_one_time_code_by_token_hash", purpose, token_hash)
        if row is None:
            return None
        return SecretRecord(
            id=row["id"],
            user_id=row["user_id"],
            token_hash=row["token_hash"],
            code_hash=row["code_hash"],
            expires_at=as_utc(row["expires_at"]),
            consumed_at=as_utc(row["consumed_at"]),
            attempt_count=row["attempt_count"] or 0,
            max_attempts=_max_attempts(row["meta"], default_max_attempts),
        )

    async def increment_code_attempt(self, code_id: int) -> None:
        await self._run("increment_one_time_code_attempt", code_id)

    async def consume_code(self, code_id: int, now: datetime) -> bool:
        return bool(await self._run("consume_one_time_code", code_id, now))

    # password resets

    async def create_password_reset(
        self,
        user_id: int,
        pair: SecretPair,
        sent_to: str,
        expires_at: datetime,
        ip: str | None,
        user_agent: str | None,
        meta: dict[str, Any],
    ) -> int:
        rows = await self._run(
            "insert_password_reset", user_id, pair.token_hash, sent_to, expires_at, ip, user_agent, meta
        )
        return rows[0]["id"]

    async def invalidate_password_resets(self, user_id: int, now: datetime) -> int:
        return len(await self._run("invalidate_active_password_resets_for_user", user_id, now))

    async def find_password_reset(self, token_hash: str, max_attempts: int) -> tuple[SecretRecord, int | None] | None:
        """Pair the reset row with its correlated code; returns the record and the code id."""
        reset = await self._one("get_password_reset_by_token_hash", token_hash)
        if reset is None:
            return None
        code = await self._one("get_one_time_code_by_token_hash", PASSWORD_RESET, token_hash)
        usable_code = code is not None and code["user_id"] == reset["user_id"] and code["consumed_at"] is None
        record = SecretRecord(
            id=reset["id"],
            user_id=reset["user_id"],
            token_hash=reset["token_hash"],
            code_hash=code["code_hash"] if usable_code else "",
            expires_at=as_utc(reset["expires_at"]),
            consumed_at=as_utc(reset["used_at"]),
            attempt_count=reset["attempt_count"] or 0,
            max_attempts=max_attempts,
        )
        return record, (code["id"] if usable_code else None)

    async def increment_password_reset_attempt(self, reset_id: int) -> None:
        await self._run("increment_password_reset_attempt", reset_id)

    async def mark_password_reset_used(self, reset_id: int, now: datetime) -> bool:
        return bool(await self._run("mark_password_reset_used", reset_id, now))

    # login challenges

    async def create_login_challenge(
        self,
        user_id: int,
        pair: SecretPair,
        expires_at: datetime,
        ip: str | None,
        user_agent: str | None,
    ) -> int:
        rows = await self._run(
            "insert_login_challenge", user_id, pair.token_hash, pair.code_hash, expires_at, ip, user_agent
        )
        return rows[0]["id"]

    async def find_login_challenge(self, token_hash: str, max_attempts: int) -> tuple[SecretRecord, Row] | None:
        row = await self._one("get_login_challenge_by_token_hash", token_hash)
        if row is None:
            return None
        record = SecretRecord(
            id=row["id"],
            user_id=row["user_id"],
            token_hash=row["token_hash"],
            code_hash=row["code_hash"],
            expires_at=as_utc(row["expires_at"]),
            consumed_at=as_utc(row["verified_at"]),
            attempt_count=row["attempt_count"] or 0,
            max_attempts=max_attempts,
        )
        return record, row

    async def increment_login_challenge_attempt(self, challenge_id: int) -> None:
        await self._run("increment_login_challenge_attempt", challenge_id)

    async def mark_login_challenge_verified(self, challenge_id: int, now: datetime) -> bool:
        return bool(await self._run("mark_login_challenge_verified", challenge_id, now))

    # devices

    async def find_trusted_device(self, user_id: int, token_hash: str, now: datetime) -> Row | None:
        row = await self._one("get_user_device", user_id, token_hash)
        if row is None or row["revoked_at"] is not None:
            return None
        if as_utc(row["expires_at"]) <= now:
            return None
        return row

    async def touch_device(self, device_id: int, user_agent: str | None, ip: str | None, now: datetime) -> None:
        await self._run("touch_user_device", device_id, user_agent, ip, now)

    async def create_device(
        self,
        user_id: int,
        token_hash: str,
        label: str | None,
        user_agent: str | None,
        ip: str | None,
        expires_at: datetime,
    ) -> int:
        rows = await self._run("insert_user_device", user_id, token_hash, label, user_agent, ip, expires_at)
        return rows[0]["id"]
