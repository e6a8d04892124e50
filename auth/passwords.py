"""
auth/passwords.py -- bcrypt hashing for passwords and API key secrets.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects
with an explicit error. Direct bcrypt usage has no compatibility shim.

bcrypt only looks at the first 72 bytes of its input. Older bcrypt releases
truncate silently, so the length check happens here, before bcrypt sees the
value: hash() raises ValidationError and verify() returns False.

The work factor comes from Settings.bcrypt_rounds and is embedded in every
hash, so verify() keeps working for hashes made under an older setting.
"""

from __future__ import annotations

import bcrypt

from core.errors import ValidationError

BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization hash, see [C1] in auth/service.py. Computed once
        # so verify_dummy() costs the same as a real check at this work factor.
        self._dummy_hash = bcrypt.hashpw(b"tenantgate-timing-dummy", bcrypt.gensalt(rounds=rounds))

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt hash of plaintext.

        Raises ValidationError if plaintext encodes to more than 72 bytes.
        """
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            raise ValidationError(f"Value is too long to hash (max {BCRYPT_MAX_BYTES} bytes)")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Return True if plaintext matches the bcrypt hash.

        Salt and cost are read from the stored hash; bcrypt.checkpw compares
        in constant time. Over-long input or a malformed hash yields False.
        """
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one bcrypt comparison when there is no real hash to check.

        Timing equalization for login, see [C1] in auth/service.py.

        Call this on the unknown-user path so response time does not reveal
        whether an account exists.
        """
        encoded = plaintext.encode("utf-8")[:BCRYPT_MAX_BYTES]
        bcrypt.checkpw(encoded, self._dummy_hash)
