"""Environment-backed application settings with strict validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping

logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS = (
    "DATABASE_URL",
    "SESSION_SECRET",
)

LOGIN_ID_MODES = ("email", "username")
EMAIL_MODES = ("log", "smtp")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _read_env_var(name: str, env: Mapping[str, str | None]) -> str:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return str(value)


def _read_optional(name: str, env: Mapping[str, str | None]) -> str | None:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        return None
    return str(value).strip()


def _read_int(name: str, env: Mapping[str, str | None], default: int, minimum: int = 0) -> int:
    raw = _read_optional(name, env)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc
    if value < minimum:
        raise RuntimeError(f"Environment variable {name} must be >= {minimum}")
    return value


def _read_bool(name: str, env: Mapping[str, str | None], default: bool) -> bool:
    raw = _read_optional(name, env)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise RuntimeError(f"Environment variable {name} must be a boolean")


def _read_choice(name: str, env: Mapping[str, str | None], choices: tuple[str, ...], default: str) -> str:
    raw = _read_optional(name, env)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered not in choices:
        raise RuntimeError(f"Environment variable {name} must be one of: {', '.join(choices)}")
    return lowered


@dataclass(frozen=True)
class AuthSettings:
    login_id: str = "email"
    require_email_verification: bool = True
    login_two_step_new_device: bool = False
    device_cookie_name: str = "device_token"
    device_cookie_max_age_seconds: int = 180 * 24 * 3600
    email_verification_expires_seconds: int = 900
    email_verification_max_attempts: int = 5
    password_reset_expires_seconds: int = 900
    password_reset_max_attempts: int = 5
    login_challenge_expires_seconds: int = 600
    login_challenge_max_attempts: int = 5
    session_profile_id: int = 1
    public_profile_id: int | None = None
    session_ttl_seconds: int = 3600
    password_hash_rounds: int = 3
    password_min_length: int = 8
    password_max_length: int = 200
    username_min_length: int = 3
    username_max_length: int = 64
    login_rate_limit_attempts: int = 10
    login_rate_limit_window_seconds: int = 300


@dataclass(frozen=True)
class EmailSettings:
    mode: str = "log"
    from_address: str = "no-reply@example.com"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    log_include_secrets: bool = False


@dataclass(frozen=True)
class Settings:
    database_url: str
    session_secret: str
    app_name: str = "txgate"
    app_env: str = "development"
    auto_create_schema: bool = False
    auth: AuthSettings = field(default_factory=AuthSettings)
    email: EmailSettings = field(default_factory=EmailSettings)


def _load_auth_settings(env: Mapping[str, str | None]) -> AuthSettings:
    defaults = AuthSettings()
    public_profile_raw = _read_optional("AUTH_PUBLIC_PROFILE_ID", env)
    public_profile_id = None
    if public_profile_raw is not None:
        public_profile_id = _read_int("AUTH_PUBLIC_PROFILE_ID", env, 0, minimum=1)

    auth = AuthSettings(
        login_id=_read_choice("AUTH_LOGIN_ID", env, LOGIN_ID_MODES, defaults.login_id),
        require_email_verification=_read_bool(
            "AUTH_REQUIRE_EMAIL_VERIFICATION", env, defaults.require_email_verification
        ),
        login_two_step_new_device=_read_bool(
            "AUTH_LOGIN_2STEP_NEW_DEVICE", env, defaults.login_two_step_new_device
        ),
        device_cookie_name=_read_optional("AUTH_DEVICE_COOKIE_NAME", env) or defaults.device_cookie_name,
        device_cookie_max_age_seconds=_read_int(
            "AUTH_DEVICE_COOKIE_MAX_AGE_SECONDS", env, defaults.device_cookie_max_age_seconds, minimum=1
        ),
        email_verification_expires_seconds=_read_int(
            "AUTH_EMAIL_VERIFICATION_EXPIRES_SECONDS", env, defaults.email_verification_expires_seconds, minimum=1
        ),
        email_verification_max_attempts=_read_int(
            "AUTH_EMAIL_VERIFICATION_MAX_ATTEMPTS", env, defaults.email_verification_max_attempts, minimum=1
        ),
        password_reset_expires_seconds=_read_int(
            "AUTH_PASSWORD_RESET_EXPIRES_SECONDS", env, defaults.password_reset_expires_seconds, minimum=1
        ),
        password_reset_max_attempts=_read_int(
            "AUTH_PASSWORD_RESET_MAX_ATTEMPTS", env, defaults.password_reset_max_attempts, minimum=1
        ),
        login_challenge_expires_seconds=_read_int(
            "AUTH_LOGIN_CHALLENGE_EXPIRES_SECONDS", env, defaults.login_challenge_expires_seconds, minimum=1
        ),
        login_challenge_max_attempts=_read_int(
            "AUTH_LOGIN_CHALLENGE_MAX_ATTEMPTS", env, defaults.login_challenge_max_attempts, minimum=1
        ),
        session_profile_id=_read_int("AUTH_SESSION_PROFILE_ID", env, defaults.session_profile_id, minimum=1),
        public_profile_id=public_profile_id,
        session_ttl_seconds=_read_int("AUTH_SESSION_TTL_SECONDS", env, defaults.session_ttl_seconds, minimum=1),
        password_hash_rounds=_read_int("AUTH_PASSWORD_HASH_ROUNDS", env, defaults.password_hash_rounds, minimum=1),
        password_min_length=_read_int("AUTH_PASSWORD_MIN_LENGTH", env, defaults.password_min_length, minimum=1),
        password_max_length=_read_int("AUTH_PASSWORD_MAX_LENGTH", env, defaults.password_max_length, minimum=1),
        username_min_length=_read_int("AUTH_USERNAME_MIN_LENGTH", env, defaults.username_min_length, minimum=1),
        username_max_length=_read_int("AUTH_USERNAME_MAX_LENGTH", env, defaults.username_max_length, minimum=1),
        login_rate_limit_attempts=_read_int(
            "AUTH_LOGIN_RATE_LIMIT_ATTEMPTS", env, defaults.login_rate_limit_attempts, minimum=1
        ),
        login_rate_limit_window_seconds=_read_int(
            "AUTH_LOGIN_RATE_LIMIT_WINDOW_SECONDS", env, defaults.login_rate_limit_window_seconds, minimum=1
        ),
    )
    if auth.password_min_length > auth.password_max_length:
        raise RuntimeError("AUTH_PASSWORD_MIN_LENGTH must not exceed AUTH_PASSWORD_MAX_LENGTH")
    if auth.username_min_length > auth.username_max_length:
        raise RuntimeError("AUTH_USERNAME_MIN_LENGTH must not exceed AUTH_USERNAME_MAX_LENGTH")
    return auth


def _load_email_settings(env: Mapping[str, str | None]) -> EmailSettings:
    defaults = EmailSettings()
    return EmailSettings(
        mode=_read_choice("EMAIL_MODE", env, EMAIL_MODES, defaults.mode),
        from_address=_read_optional("EMAIL_FROM", env) or defaults.from_address,
        smtp_host=_read_optional("SMTP_HOST", env),
        smtp_port=_read_int("SMTP_PORT", env, defaults.smtp_port, minimum=1),
        smtp_username=_read_optional("SMTP_USERNAME", env),
        smtp_password=_read_optional("SMTP_PASSWORD", env),
        smtp_use_tls=_read_bool("SMTP_USE_TLS", env, defaults.smtp_use_tls),
        log_include_secrets=_read_bool("EMAIL_LOG_INCLUDE_SECRETS", env, defaults.log_include_secrets),
    )


def load_settings(env: Mapping[str, str | None] | None = None) -> Settings:
    """Load and validate environment variables into a Settings object."""
    source_env = os.environ if env is None else env

    missing = [key for key in REQUIRED_ENV_VARS if not str(source_env.get(key) or "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    app_env = str(source_env.get("APP_ENV", "development")).strip() or "development"

    settings = Settings(
        database_url=_read_env_var("DATABASE_URL", source_env),
        session_secret=_read_env_var("SESSION_SECRET", source_env),
        app_name=_read_optional("APP_NAME", source_env) or "txgate",
        app_env=app_env,
        auto_create_schema=_read_bool("AUTO_CREATE_SCHEMA", source_env, False),
        auth=_load_auth_settings(source_env),
        email=_load_email_settings(source_env),
    )

    logger.info("Loaded application settings for env=%s", settings.app_env)
    return settings
