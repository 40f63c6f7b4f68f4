"""Named statements of the ``security`` schema.

Every builder takes positional parameters only. Timestamps are passed in by
the caller so expiry arithmetic stays in one place and one clock.
"""

from __future__ import annotations

from sqlalchemy import func, insert, select, update

from txgate.models import (
    AuditLog,
    BusinessObject,
    LoginChallenge,
    Method,
    OneTimeCode,
    PasswordReset,
    PermissionGrant,
    User,
    UserDevice,
    UserProfile,
    UserSession,
)

from .catalog import named_query

objects = BusinessObject.__table__
methods = Method.__table__
grants = PermissionGrant.__table__
users = User.__table__
user_profiles = UserProfile.__table__
password_resets = PasswordReset.__table__
one_time_codes = OneTimeCode.__table__
login_challenges = LoginChallenge.__table__
user_devices = UserDevice.__table__
user_sessions = UserSession.__table__
audit_logs = AuditLog.__table__

SECURITY = "security"


# --- registry


@named_query(SECURITY)
def load_permissions():
    return (
        select(
            grants.c.profile_id,
            methods.c.name.label("method_name"),
            objects.c.name.label("object_name"),
        )
        .select_from(grants.join(methods, grants.c.method_id == methods.c.id))
        .join(objects, methods.c.object_id == objects.c.id)
    )


@named_query(SECURITY)
def load_data_tx():
    return select(
        methods.c.tx,
        objects.c.name.label("object_name"),
        methods.c.name.label("method_name"),
    ).select_from(methods.join(objects, methods.c.object_id == objects.c.id))


# --- users


def _user_select():
    return select(
        users.c.id.label("user_id"),
        users.c.username,
        users.c.email,
        users.c.password_hash,
        users.c.email_verified_at,
        users.c.is_active,
        user_profiles.c.profile_id,
    ).select_from(users.outerjoin(user_profiles, user_profiles.c.user_id == users.c.id))


@named_query(SECURITY)
def get_user_by_email(email):
    return _user_select().where(func.lower(users.c.email) == func.lower(email))


@named_query(SECURITY)
def get_user_by_username(username):
    return _user_select().where(users.c.username == username)


@named_query(SECURITY)
def get_user_by_id(user_id):
    return _user_select().where(users.c.id == user_id)


@named_query(SECURITY)
def insert_user(username, email, password_hash):
    return (
        insert(users)
        .values(username=username, email=email, password_hash=password_hash, is_active=True)
        .returning(users.c.id.label("user_id"))
    )


@named_query(SECURITY)
def insert_user_profile(user_id, profile_id):
    return insert(user_profiles).values(user_id=user_id, profile_id=profile_id).returning(user_profiles.c.id)


@named_query(SECURITY)
def set_user_email_verified(user_id, now):
    return (
        update(users)
        .where(users.c.id == user_id, users.c.email_verified_at.is_(None))
        .values(email_verified_at=now)
        .returning(users.c.id)
    )


@named_query(SECURITY)
def update_user_password(user_id, password_hash):
    return update(users).where(users.c.id == user_id).values(password_hash=password_hash).returning(users.c.id)


@named_query(SECURITY)
def update_user_last_login(user_id, now):
    return update(users).where(users.c.id == user_id).values(last_login_at=now)


# --- password resets


@named_query(SECURITY)
def insert_password_reset(user_id, token_hash, sent_to, expires_at, request_ip, request_user_agent, meta):
    return (
        insert(password_resets)
        .values(
            user_id=user_id,
            token_hash=token_hash,
            sent_to=sent_to,
            expires_at=expires_at,
            attempt_count=0,
            request_ip=request_ip,
            request_user_agent=request_user_agent,
            meta=meta,
        )
        .returning(password_resets.c.id)
    )


@named_query(SECURITY)
def invalidate_active_password_resets_for_user(user_id, now):
    return (
        update(password_resets)
        .where(password_resets.c.user_id == user_id, password_resets.c.used_at.is_(None))
        .values(used_at=now)
        .returning(password_resets.c.id)
    )


@named_query(SECURITY)
def get_password_reset_by_token_hash(token_hash):
    return select(password_resets).where(password_resets.c.token_hash == token_hash)


@named_query(SECURITY)
def increment_password_reset_attempt(reset_id):
    return (
        update(password_resets)
        .where(password_resets.c.id == reset_id)
        .values(attempt_count=password_resets.c.attempt_count + 1)
        .returning(password_resets.c.attempt_count)
    )


@named_query(SECURITY)
def mark_password_reset_used(reset_id, now):
    return (
        update(password_resets)
        .where(password_resets.c.id == reset_id, password_resets.c.used_at.is_(None))
        .values(used_at=now)
        .returning(password_resets.c.id)
    )


# --- one-time codes


@named_query(SECURITY)
def insert_one_time_code(user_id, purpose, code_hash, token_hash, expires_at, meta):
    return (
        insert(one_time_codes)
        .values(
            user_id=user_id,
            purpose=purpose,
            code_hash=code_hash,
            token_hash=token_hash,
            expires_at=expires_at,
            attempt_count=0,
            meta=meta,
        )
        .returning(one_time_codes.c.id)
    )


@named_query(SECURITY)
def consume_one_time_codes_for_user_purpose(user_id, purpose, now):
    return (
        update(one_time_codes)
        .where(
            one_time_codes.c.user_id == user_id,
            one_time_codes.c.purpose == purpose,
            one_time_codes.c.consumed_at.is_(None),
        )
        .values(consumed_at=now)
        .returning(one_time_codes.c.id)
    )


@named_query(SECURITY)
def get_one_time_code_by_token_hash(purpose, token_hash):
    return (
        select(one_time_codes)
        .where(one_time_codes.c.purpose == purpose, one_time_codes.c.token_hash == token_hash)
        .order_by(one_time_codes.c.id.desc())
        .limit(1)
    )


@named_query(SECURITY)
def increment_one_time_code_attempt(code_id):
    return (
        update(one_time_codes)
        .where(one_time_codes.c.id == code_id)
        .values(attempt_count=one_time_codes.c.attempt_count + 1)
        .returning(one_time_codes.c.attempt_count)
    )


@named_query(SECURITY)
def consume_one_time_code(code_id, now):
    return (
        update(one_time_codes)
        .where(one_time_codes.c.id == code_id, one_time_codes.c.consumed_at.is_(None))
        .values(consumed_at=now)
        .returning(one_time_codes.c.id)
    )


# --- login challenges and devices


@named_query(SECURITY)
def insert_login_challenge(user_id, token_hash, code_hash, expires_at, request_ip, request_user_agent):
    return (
        insert(login_challenges)
        .values(
            user_id=user_id,
            token_hash=token_hash,
            code_hash=code_hash,
            expires_at=expires_at,
            attempt_count=0,
            request_ip=request_ip,
            request_user_agent=request_user_agent,
        )
        .returning(login_challenges.c.id)
    )


@named_query(SECURITY)
def get_login_challenge_by_token_hash(token_hash):
    return (
        select(
            login_challenges,
            users.c.username,
            users.c.email,
            users.c.email_verified_at,
            users.c.is_active,
            user_profiles.c.profile_id,
        )
        .select_from(
            login_challenges.join(users, login_challenges.c.user_id == users.c.id).outerjoin(
                user_profiles, user_profiles.c.user_id == users.c.id
            )
        )
        .where(login_challenges.c.token_hash == token_hash)
    )


@named_query(SECURITY)
def increment_login_challenge_attempt(challenge_id):
    return (
        update(login_challenges)
        .where(login_challenges.c.id == challenge_id)
        .values(attempt_count=login_challenges.c.attempt_count + 1)
        .returning(login_challenges.c.attempt_count)
    )


@named_query(SECURITY)
def mark_login_challenge_verified(challenge_id, now):
    return (
        update(login_challenges)
        .where(login_challenges.c.id == challenge_id, login_challenges.c.verified_at.is_(None))
        .values(verified_at=now)
        .returning(login_challenges.c.id)
    )


@named_query(SECURITY)
def get_user_device(user_id, token_hash):
    return select(user_devices).where(user_devices.c.user_id == user_id, user_devices.c.token_hash == token_hash)


@named_query(SECURITY)
def touch_user_device(device_id, user_agent, ip, now):
    return (
        update(user_devices)
        .where(user_devices.c.id == device_id)
        .values(user_agent=user_agent, ip=ip, last_used_at=now)
    )


@named_query(SECURITY)
def insert_user_device(user_id, token_hash, label, user_agent, ip, expires_at):
    return (
        insert(user_devices)
        .values(
            user_id=user_id,
            token_hash=token_hash,
            label=label,
            user_agent=user_agent,
            ip=ip,
            expires_at=expires_at,
        )
        .returning(user_devices.c.id)
    )


# --- sessions


@named_query(SECURITY)
def insert_session(session_id, user_id, profile_id, expires_at, ip, user_agent):
    return (
        insert(user_sessions)
        .values(
            session_id=session_id,
            user_id=user_id,
            profile_id=profile_id,
            expires_at=expires_at,
            ip=ip,
            user_agent=user_agent,
        )
        .returning(user_sessions.c.id)
    )


@named_query(SECURITY)
def get_session(session_id):
    return select(user_sessions).where(user_sessions.c.session_id == session_id)


@named_query(SECURITY)
def revoke_session(session_id, now):
    return (
        update(user_sessions)
        .where(user_sessions.c.session_id == session_id, user_sessions.c.revoked_at.is_(None))
        .values(revoked_at=now)
        .returning(user_sessions.c.id)
    )


@named_query(SECURITY)
def revoke_sessions_for_user(user_id, now):
    return (
        update(user_sessions)
        .where(user_sessions.c.user_id == user_id, user_sessions.c.revoked_at.is_(None))
        .values(revoked_at=now)
        .returning(user_sessions.c.id)
    )


# --- audit


@named_query(SECURITY)
def insert_audit_log(request_id, user_id, profile_id, action, object_name, method_name, tx, details):
    return (
        insert(audit_logs)
        .values(
            request_id=request_id,
            user_id=user_id,
            profile_id=profile_id,
            action=action,
            object_name=object_name,
            method_name=method_name,
            tx=tx,
            details=details,
        )
        .returning(audit_logs.c.id)
    )
