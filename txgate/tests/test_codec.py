from __future__ import annotations

import hashlib
import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from txgate.auth.codec import (
    SecretCheck,
    SecretRecord,
    check_secret,
    fingerprint,
    issue_device_token,
    issue_secret_pair,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class SecretCodecTests(unittest.TestCase):
    def setUp(self) -> None:
        self.pair = issue_secret_pair()
        self.record = SecretRecord(
            id=1,
            user_id=7,
            token_hash=self.pair.token_hash,
            code_hash=self.pair.code_hash,
            expires_at=NOW + timedelta(minutes=15),
            consumed_at=None,
            attempt_count=0,
            max_attempts=5,
        )

    def check(self, record: SecretRecord | None, token: str | None = None, code: str | None = None) -> SecretCheck:
        return check_secret(
            record,
            fingerprint(token or self.pair.token),
            fingerprint(code or self.pair.code),
            NOW,
        )

    def test_issued_pair_shape(self) -> None:
        self.assertEqual(len(self.pair.token), 64)
        int(self.pair.token, 16)
        self.assertEqual(len(self.pair.code), 6)
        self.assertTrue(self.pair.code.isdigit())
        self.assertNotEqual(self.pair.code[0], "0")
        self.assertNotEqual(issue_secret_pair().token, self.pair.token)
        self.assertEqual(len(issue_device_token()), 64)

    def test_fingerprint_is_sha256_hex(self) -> None:
        self.assertEqual(fingerprint("abc"), hashlib.sha256(b"abc").hexdigest())
        self.assertEqual(self.pair.token_hash, fingerprint(self.pair.token))

    def test_valid_pair_passes(self) -> None:
        self.assertIs(self.check(self.record), SecretCheck.OK)

    def test_missing_record(self) -> None:
        self.assertIs(self.check(None), SecretCheck.NOT_FOUND)

    def test_consumed_record(self) -> None:
        record = replace(self.record, consumed_at=NOW - timedelta(seconds=1))
        self.assertIs(self.check(record), SecretCheck.CONSUMED)

    def test_wrong_code_or_token_is_mismatch(self) -> None:
        wrong_code = "111111" if self.pair.code != "111111" else "222222"
        self.assertIs(self.check(self.record, code=wrong_code), SecretCheck.MISMATCH)
        self.assertIs(self.check(self.record, token="f" * 64), SecretCheck.MISMATCH)

    def test_expiry_checked_before_attempt_cap(self) -> None:
        record = replace(self.record, expires_at=NOW, attempt_count=5)
        self.assertIs(self.check(record), SecretCheck.EXPIRED)
        fresh = replace(self.record, expires_at=NOW - timedelta(seconds=1))
        self.assertIs(self.check(fresh), SecretCheck.EXPIRED)

    def test_exhausted_rejects_correct_secret(self) -> None:
        record = replace(self.record, attempt_count=5)
        self.assertIs(self.check(record), SecretCheck.EXHAUSTED)

    def test_naive_expiry_treated_as_utc(self) -> None:
        record = replace(self.record, expires_at=(NOW + timedelta(minutes=1)).replace(tzinfo=None))
        self.assertIs(self.check(record), SecretCheck.OK)


if __name__ == "__main__":
    unittest.main()
