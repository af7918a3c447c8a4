"""
Utility functions for auditchain.

Provides canonical JSON serialization, BLAKE2b hashing, base64url
encoding, and time utilities.
"""

import base64
import binascii
import json
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Union

from nacl.encoding import RawEncoder
from nacl.hash import blake2b as _nacl_blake2b

# Callable returning the current aware UTC datetime
Clock = Callable[[], datetime]

# Callable returning n cryptographically secure random bytes
RandomSource = Callable[[int], bytes]


def canonicalize(obj: Any) -> bytes:
    """
    Convert object to canonical JSON bytes.

    Canonical JSON:
    - Lexicographically sorted keys
    - No whitespace
    - UTF-8 encoded
    """
    s = json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return s.encode('utf-8')


def blake2b_256(data: Union[bytes, str], key: bytes = b"") -> bytes:
    """Compute a 32-byte BLAKE2b digest, optionally keyed."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return _nacl_blake2b(data, digest_size=32, key=key, encoder=RawEncoder)


def b64url_encode(b: bytes) -> str:
    """URL-safe base64 encode bytes to string (no padding)."""
    return base64.urlsafe_b64encode(b).rstrip(b'=').decode('ascii')


def b64url_decode(s: str) -> bytes:
    """
    Strict URL-safe base64 decode (handles missing padding).

    Raises ValueError on characters outside the base64url alphabet.
    """
    if not isinstance(s, str):
        raise ValueError("base64url input must be a string")
    s = s.strip().rstrip('=')
    if len(s) % 4 == 1:
        raise ValueError("Incorrect base64url length")
    s += '=' * (-len(s) % 4)
    try:
        return base64.b64decode(s.encode('ascii'), altchars=b'-_', validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64url encoding: {e}") from e


def utc_now() -> datetime:
    """Current time as an aware UTC datetime (microseconds dropped)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def iso8601(dt: datetime) -> str:
    """Format a datetime as ISO-8601 with an explicit offset."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_iso8601(s: str) -> datetime:
    """Parse an ISO-8601 string; naive values are treated as UTC."""
    if s.endswith('Z'):
        s = s[:-1] + '+00:00'
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def random_bytes(n: int) -> bytes:
    """Default RandomSource backed by the OS CSPRNG."""
    return secrets.token_bytes(n)


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging.
    """
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
