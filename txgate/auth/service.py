from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Sequence

from txgate.config import AuthSettings
from txgate.context import RequestContext
from txgate.db import Database
from txgate.email import EmailService, mask_email
from txgate.logging import AuditLogger, get_logger
from txgate.responses import ErrorKind, Response, failure, success
from txgate.utils.clock import Clock, utcnow
from txgate.utils.sanitize import redact_secrets_in_string
from txgate.utils.validation import FieldValidator, normalize_text

from .codec import SecretCheck, SecretRecord, check_secret, fingerprint, issue_device_token, issue_secret_pair
from .passwords import PasswordHasher
from .repository import EMAIL_VERIFICATION, PASSWORD_RESET, AuthRepository, DuplicateUserError
from .sessions import SessionManager

# Methods of the ``Auth`` object reachable through tx dispatch.
EXPOSED_METHODS = frozenset(
    {
        "register",
        "request_email_verification",
        "verify_email",
        "request_password_reset",
        "verify_password_reset",
        "reset_password",
        "verify_login_challenge",
    }
)

_CHECK_ERRORS = {
    SecretCheck.NOT_FOUND: ErrorKind.INVALID_TOKEN,
    SecretCheck.CONSUMED: ErrorKind.INVALID_TOKEN,
    SecretCheck.MISMATCH: ErrorKind.INVALID_TOKEN,
    SecretCheck.EXPIRED: ErrorKind.EXPIRED_TOKEN,
    SecretCheck.EXHAUSTED: ErrorKind.TOO_MANY_REQUESTS,
}


class AuthError(Exception):
    def __init__(self, kind: ErrorKind, alerts: Sequence[str] | None = None) -> None:
        super().__init__(kind.name.lower())
        self.kind = kind
        self.alerts = tuple(alerts) if alerts else ()


class RateLimiter:
    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._attempts: dict[str, list[datetime]] = {}
        self._last_sweep: datetime | None = None

    def allow(self, key: str, now: datetime) -> bool:
        cutoff = now - timedelta(seconds=self.window_seconds)
        if self._last_sweep is None or self._last_sweep < cutoff:
            self._sweep(cutoff)
            self._last_sweep = now
        recent = [ts for ts in self._attempts.get(key, []) if ts >= cutoff]
        if len(recent) >= self.max_attempts:
            self._attempts[key] = recent
            return False
        recent.append(now)
        self._attempts[key] = recent
        return True

    def reset(self, key: str) -> None:
        self._attempts.pop(key, None)

    def _sweep(self, cutoff: datetime) -> None:
        # Keys whose newest attempt left the window carry no state.
        stale = [key for key, stamps in self._attempts.items() if not stamps or stamps[-1] < cutoff]
        for key in stale:
            del self._attempts[key]


FlowMethod = Callable[..., Awaitable[Response]]


def flow_boundary(name: str) -> Callable[[FlowMethod], FlowMethod]:
    """Turn everything a flow raises into a response envelope."""

    def decorator(fn: FlowMethod) -> FlowMethod:
        @functools.wraps(fn)
        async def wrapper(self: "AuthService", params: Any = None, request: RequestContext | None = None) -> Response:
            if params is None:
                params = {}
            if not isinstance(params, Mapping):
                return failure(ErrorKind.INVALID_PARAMETERS, ["params must be an object"])
            try:
                return await fn(self, params, request or RequestContext())
            except AuthError as exc:
                return failure(exc.kind, exc.alerts)
            except Exception as exc:
                self.logger.error("AuthService.%s failed: %s", name, redact_secrets_in_string(exc))
                return failure(ErrorKind.UNKNOWN_ERROR)

        return wrapper

    return decorator


def _require(validator: FieldValidator) -> None:
    result = validator.result()
    if not result.passed:
        raise AuthError(ErrorKind.INVALID_PARAMETERS, result.alerts)


class AuthService:
    def __init__(
        self,
        settings: AuthSettings,
        database: Database,
        email: EmailService,
        sessions: SessionManager,
        audit: AuditLogger | None = None,
        hasher: PasswordHasher | None = None,
        app_name: str = "txgate",
        clock: Clock | None = None,
        rate_limiter: RateLimiter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.repository = AuthRepository(database)
        self.email = email
        self.sessions = sessions
        self.audit = audit or AuditLogger(database)
        self.hasher = hasher or PasswordHasher(settings.password_hash_rounds)
        self.app_name = app_name
        self.clock = clock or utcnow
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.login_rate_limit_attempts, settings.login_rate_limit_window_seconds
        )
        self.logger = logger or get_logger("auth")

    # registration and email verification

    @flow_boundary("register")
    async def register(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        cfg = self.settings
        email_required = cfg.login_id == "email" or cfg.require_email_verification
        v = FieldValidator()
        v.username(
            params.get("username"),
            cfg.username_min_length,
            cfg.username_max_length,
            required=cfg.login_id == "username",
        )
        v.email(params.get("email"), required=email_required)
        v.password(params.get("password"), cfg.password_min_length, cfg.password_max_length)
        _require(v)

        username = normalize_text(params.get("username"))
        email = normalize_text(params.get("email"))
        email = email.lower() if email else None
        password = params["password"]

        # Pre-check only; the unique constraints are the real guarantee.
        if email and await self.repository.find_user_by_email(email):
            raise AuthError(ErrorKind.ALREADY_REGISTERED)
        if username and await self.repository.find_user_by_username(username):
            raise AuthError(ErrorKind.ALREADY_REGISTERED)

        password_hash = await asyncio.to_thread(self.hasher.hash, password)
        try:
            user_id = await self.repository.create_user(username, email, password_hash, cfg.session_profile_id)
        except DuplicateUserError as exc:
            raise AuthError(ErrorKind.ALREADY_REGISTERED) from exc

        verification_sent = False
        if cfg.require_email_verification and email:
            await self._send_email_verification(user_id, email, request)
            verification_sent = True

        self.logger.info("Registered user_id=%s", user_id)
        return success(
            "registered",
            {"user_id": user_id, "email_verification_required": verification_sent},
            code=201,
        )

    @flow_boundary("request_email_verification")
    async def request_email_verification(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        identifier = self._read_identifier(params)
        generic = success("if the account exists, a verification email has been sent")

        user = await self.repository.find_user(identifier)
        if user is None or user["email_verified_at"] is not None or not user["email"] or not user["is_active"]:
            return generic

        await self._send_email_verification(user["user_id"], user["email"], request)
        return generic

    @flow_boundary("verify_email")
    async def verify_email(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        token, code = self._read_secret_pair(params)
        now = self.clock()
        record = await self.repository.find_code(
            EMAIL_VERIFICATION, fingerprint(token), self.settings.email_verification_max_attempts
        )
        await self._require_valid(
            check_secret(record, fingerprint(token), fingerprint(code), now),
            record,
            self.repository.increment_code_attempt,
        )
        if not await self.repository.verify_email_with_code(record.id, record.user_id, now):
            raise AuthError(ErrorKind.INVALID_TOKEN)
        self.logger.info("Email verified for user_id=%s", record.user_id)
        return success("email verified")

    # password reset

    @flow_boundary("request_password_reset")
    async def request_password_reset(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        identifier = self._read_identifier(params)
        generic = success("if the account exists, a password reset email has been sent")

        user = await self.repository.find_user(identifier)
        if user is None or not user["email"] or not user["is_active"]:
            return generic

        cfg = self.settings
        user_id = user["user_id"]
        now = self.clock()
        # Two independent invalidations; issuing proceeds if either fails.
        await self._best_effort("invalidate password resets", self.repository.invalidate_password_resets, user_id, now)
        await self._best_effort(
            "invalidate password reset codes", self.repository.invalidate_codes, user_id, PASSWORD_RESET, now
        )

        pair = issue_secret_pair()
        expires_at = now + timedelta(seconds=cfg.password_reset_expires_seconds)
        meta = self._request_meta(request, cfg.password_reset_max_attempts)
        await self.repository.create_password_reset(
            user_id, pair, user["email"], expires_at, request.ip, request.user_agent, meta
        )
        await self.repository.create_code(user_id, PASSWORD_RESET, pair, expires_at, meta)
        await self.email.send_password_reset(user["email"], pair.token, pair.code, self.app_name)
        self.logger.info("Password reset issued for user_id=%s", user_id)
        return generic

    @flow_boundary("verify_password_reset")
    async def verify_password_reset(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        token, code = self._read_secret_pair(params)
        await self._check_password_reset(token, code, self.clock())
        return success("reset code is valid")

    @flow_boundary("reset_password")
    async def reset_password(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        cfg = self.settings
        new_password = params.get("new_password", params.get("newPassword"))
        v = FieldValidator()
        v.token(params.get("token"))
        v.code(params.get("code"))
        v.password(new_password, cfg.password_min_length, cfg.password_max_length, label="new_password")
        _require(v)

        now = self.clock()
        record, code_id = await self._check_password_reset(
            normalize_text(params["token"]), normalize_text(params["code"]), now
        )
        # Claim the reset before changing anything; a concurrent loser stops here.
        if not await self.repository.mark_password_reset_used(record.id, now):
            raise AuthError(ErrorKind.INVALID_TOKEN)

        password_hash = await asyncio.to_thread(self.hasher.hash, new_password)
        await self.repository.update_password(record.user_id, password_hash)
        if code_id is not None:
            await self._best_effort("consume password reset code", self.repository.consume_code, code_id, now)
        await self._best_effort("revoke sessions", self.sessions.revoke_all_for_user, record.user_id)
        self.logger.info("Password reset completed for user_id=%s", record.user_id)
        return success("password updated")

    # login

    @flow_boundary("login")
    async def login(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        cfg = self.settings
        if request.has_session:
            raise AuthError(ErrorKind.SESSION_EXISTS)
        v = FieldValidator()
        v.identifier(params.get("identifier"))
        v.password(params.get("password"), 1, cfg.password_max_length)
        _require(v)

        identifier = normalize_text(params["identifier"])
        now = self.clock()
        limiter_key = identifier.lower()
        if not self.rate_limiter.allow(limiter_key, now):
            raise AuthError(ErrorKind.TOO_MANY_REQUESTS)

        if cfg.login_id == "username":
            user = await self.repository.find_user_by_username(identifier)
        else:
            user = await self.repository.find_user_by_email(identifier)
        if user is None or not user["is_active"]:
            raise AuthError(ErrorKind.INVALID_CREDENTIALS)
        if not await asyncio.to_thread(self.hasher.verify, params["password"], user["password_hash"]):
            raise AuthError(ErrorKind.INVALID_CREDENTIALS)
        self.rate_limiter.reset(limiter_key)

        if cfg.require_email_verification:
            if not user["email"]:
                raise AuthError(ErrorKind.EMAIL_REQUIRED)
            if user["email_verified_at"] is None:
                raise AuthError(ErrorKind.EMAIL_NOT_VERIFIED)

        if cfg.login_two_step_new_device:
            if not user["email"]:
                raise AuthError(ErrorKind.EMAIL_REQUIRED)
            device = None
            if request.device_token:
                device = await self.repository.find_trusted_device(
                    user["user_id"], fingerprint(request.device_token), now
                )
            if device is None:
                return await self._send_login_challenge(user, request, now)
            await self._best_effort(
                "touch device", self.repository.touch_device, device["id"], request.user_agent, request.ip, now
            )

        return await self._establish_session(user["user_id"], user["profile_id"], request)

    @flow_boundary("verify_login_challenge")
    async def verify_login_challenge(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        cfg = self.settings
        if request.has_session:
            raise AuthError(ErrorKind.SESSION_EXISTS)
        token, code = self._read_secret_pair(params)
        now = self.clock()

        found = await self.repository.find_login_challenge(fingerprint(token), cfg.login_challenge_max_attempts)
        record, row = found if found else (None, None)
        await self._require_valid(
            check_secret(record, fingerprint(token), fingerprint(code), now),
            record,
            self.repository.increment_login_challenge_attempt,
        )
        if not await self.repository.mark_login_challenge_verified(record.id, now):
            raise AuthError(ErrorKind.INVALID_TOKEN)
        if not row["is_active"]:
            raise AuthError(ErrorKind.INVALID_CREDENTIALS)
        if cfg.require_email_verification and row["email_verified_at"] is None:
            raise AuthError(ErrorKind.EMAIL_NOT_VERIFIED)

        device_token = issue_device_token()
        await self._best_effort(
            "trust device",
            self.repository.create_device,
            record.user_id,
            fingerprint(device_token),
            (request.user_agent or "")[:128] or None,
            request.user_agent,
            request.ip,
            now + timedelta(seconds=cfg.device_cookie_max_age_seconds),
        )
        response = await self._establish_session(record.user_id, row["profile_id"], request)
        return success(
            response.message,
            {
                **(response.data or {}),
                "device_token": device_token,
                "device_max_age_seconds": cfg.device_cookie_max_age_seconds,
            },
        )

    @flow_boundary("logout")
    async def logout(self, params: Mapping[str, Any], request: RequestContext) -> Response:
        if not request.session_token:
            raise AuthError(ErrorKind.LOGIN_REQUIRED)
        if not await self.sessions.revoke(request.session_token):
            raise AuthError(ErrorKind.LOGIN_REQUIRED)
        await self.audit.record("logout", request)
        return success("logged out")

    # helpers

    def _read_identifier(self, params: Mapping[str, Any]) -> str:
        raw = params.get("identifier", params.get("email"))
        v = FieldValidator()
        v.identifier(raw)
        _require(v)
        return normalize_text(raw)

    def _read_secret_pair(self, params: Mapping[str, Any]) -> tuple[str, str]:
        v = FieldValidator()
        v.token(params.get("token"))
        v.code(params.get("code"))
        _require(v)
        return normalize_text(params["token"]), normalize_text(params["code"])

    def _request_meta(self, request: RequestContext, max_attempts: int) -> dict[str, Any]:
        return {"max_attempts": max_attempts, "request": {"ip": request.ip, "user_agent": request.user_agent}}

    async def _check_password_reset(self, token: str, code: str, now: datetime) -> tuple[SecretRecord, int | None]:
        found = await self.repository.find_password_reset(fingerprint(token), self.settings.password_reset_max_attempts)
        record, code_id = found if found else (None, None)
        await self._require_valid(
            check_secret(record, fingerprint(token), fingerprint(code), now),
            record,
            self.repository.increment_password_reset_attempt,
        )
        return record, code_id

    async def _require_valid(
        self,
        outcome: SecretCheck,
        record: SecretRecord | None,
        increment: Callable[[int], Awaitable[Any]],
    ) -> None:
        if outcome is SecretCheck.OK:
            return
        if outcome is SecretCheck.MISMATCH and record is not None:
            await self._best_effort("attempt increment", increment, record.id)
        raise AuthError(_CHECK_ERRORS[outcome])

    async def _send_email_verification(self, user_id: int, email: str, request: RequestContext) -> None:
        cfg = self.settings
        now = self.clock()
        await self._best_effort(
            "invalidate email verification codes", self.repository.invalidate_codes, user_id, EMAIL_VERIFICATION, now
        )
        pair = issue_secret_pair()
        expires_at = now + timedelta(seconds=cfg.email_verification_expires_seconds)
        await self.repository.create_code(
            user_id,
            EMAIL_VERIFICATION,
            pair,
            expires_at,
            self._request_meta(request, cfg.email_verification_max_attempts),
        )
        await self.email.send_email_verification(email, pair.token, pair.code, self.app_name)

    async def _send_login_challenge(self, user: Mapping[str, Any], request: RequestContext, now: datetime) -> Response:
        cfg = self.settings
        pair = issue_secret_pair()
        expires_at = now + timedelta(seconds=cfg.login_challenge_expires_seconds)
        await self.repository.create_login_challenge(
            user["user_id"], pair, expires_at, request.ip, request.user_agent
        )
        await self.email.send_login_challenge(user["email"], pair.token, pair.code, self.app_name)
        await self.audit.record("login_challenge_sent", request, user_id=user["user_id"], profile_id=user["profile_id"])
        return success(
            "verification required",
            {"challenge_token": pair.token, "sent_to": mask_email(user["email"])},
            code=202,
        )

    async def _establish_session(self, user_id: int, profile_id: int | None, request: RequestContext) -> Response:
        profile_id = profile_id if profile_id is not None else self.settings.session_profile_id
        token = await self.sessions.issue(user_id, profile_id, request.ip, request.user_agent)
        await self._best_effort("update last login", self.repository.touch_last_login, user_id, self.clock())
        await self.audit.record("login", request, user_id=user_id, profile_id=profile_id)
        return success("logged in", {"session_token": token, "user_id": user_id, "profile_id": profile_id})

    async def _best_effort(self, label: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> bool:
        try:
            await fn(*args)
        except Exception as exc:
            self.logger.warning("Best-effort %s failed: %s", label, redact_secrets_in_string(exc))
            return False
        return True
