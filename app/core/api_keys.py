"""API key generation and comparison primitives."""

from __future__ import annotations

import hmac
import re
import secrets

_API_KEY_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class APIKeyCore:
    """Core API key operations."""

    def generate_raw_key(self) -> str:
        """Generate a 64-character hex API key."""
        return secrets.token_hex(32)

    def is_valid_format(self, raw_key: str) -> bool:
        """Reject values that cannot be an issued key before touching the database."""
        return bool(_API_KEY_PATTERN.match(raw_key))

    def matches(self, stored_key: str | None, raw_key: str) -> bool:
        """Constant-time compare between the stored and presented key."""
        if stored_key is None:
            return False
        return hmac.compare_digest(stored_key, raw_key)
