"""Token and one-time-code issuance plus the shared secret state machine.

Raw tokens and codes leave this module exactly once, for delivery. Only their
sha-256 fingerprints are ever stored or compared.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from txgate.utils.clock import as_utc

TOKEN_BYTES = 32
CODE_DIGITS = 6


@dataclass(frozen=True)
class SecretPair:
    token: str
    code: str

    @property
    def token_hash(self) -> str:
        return fingerprint(self.token)

    @property
    def code_hash(self) -> str:
        return fingerprint(self.code)


def fingerprint(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def issue_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def issue_code() -> str:
    low = 10 ** (CODE_DIGITS - 1)
    return str(secrets.randbelow(9 * low) + low)


def issue_secret_pair() -> SecretPair:
    return SecretPair(token=issue_token(), code=issue_code())


def issue_device_token() -> str:
    return issue_token()


class SecretCheck(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    CONSUMED = "consumed"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class SecretRecord:
    """A reset row, one-time code or login challenge reduced to what the check needs."""

    id: int
    user_id: int
    token_hash: str | None
    code_hash: str
    expires_at: datetime
    consumed_at: datetime | None
    attempt_count: int
    max_attempts: int


def check_secret(
    record: SecretRecord | None,
    token_hash: str,
    code_hash: str,
    now: datetime,
) -> SecretCheck:
    if record is None:
        return SecretCheck.NOT_FOUND
    if record.consumed_at is not None:
        return SecretCheck.CONSUMED
    # Expiry wins over the attempt cap.
    if as_utc(record.expires_at) <= now:
        return SecretCheck.EXPIRED
    if record.attempt_count >= record.max_attempts:
        return SecretCheck.EXHAUSTED
    token_ok = record.token_hash is not None and hmac.compare_digest(record.token_hash, token_hash)
    code_ok = hmac.compare_digest(record.code_hash, code_hash)
    if not (token_ok and code_ok):
        return SecretCheck.MISMATCH
    return SecretCheck.OK
