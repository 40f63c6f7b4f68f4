from __future__ import annotations

from passlib.hash import argon2


class PasswordHasher:
    def __init__(self, rounds: int = 3) -> None:
        self._hasher = argon2.using(rounds=rounds)

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password: str, password_hash: str | None) -> bool:
        if not password_hash:
            return False
        try:
            return self._hasher.verify(password, password_hash)
        except ValueError:
            # Not an argon2 hash at all.
            return False
