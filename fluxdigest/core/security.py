import base64
import hashlib
import hmac
import re
import secrets
from datetime import timedelta
from typing import Any

import jwt

from fluxdigest.core.datetime_utils import utc_now

PBKDF2_ITERATIONS = 1000
PBKDF2_KEYLEN = 64
PBKDF2_DIGEST = "sha512"
SALT_BYTES = 16
JWT_ALGORITHM = "HS256"

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_DURATION = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": "seconds", "s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def user_handle(username: str | None) -> str:
    """Filesystem-safe key for a user: base64 of the username, alphanumerics only."""
    if not username:
        return "default"
    encoded = base64.b64encode(username.encode("utf-8")).decode("ascii")
    return _NON_ALNUM.sub("", encoded)


def hash_password(password: str, salt: str | None = None) -> tuple[str, str]:
    """Hash a password with PBKDF2-HMAC-SHA512.

    Returns:
        (hash_hex, salt_hex); a fresh 16-byte salt is generated when none is given
    """
    if salt is None:
        salt = secrets.token_hex(SALT_BYTES)
    digest = hashlib.pbkdf2_hmac(
        PBKDF2_DIGEST,
        password.encode("utf-8"),
        salt.encode("utf-8"),
        PBKDF2_ITERATIONS,
        dklen=PBKDF2_KEYLEN,
    )
    return digest.hex(), salt


def verify_password(password: str, stored_hash: str, salt: str) -> bool:
    """Verify a password against a stored hash in constant time."""
    candidate, _ = hash_password(password, salt)
    return hmac.compare_digest(candidate, stored_hash)


def parse_duration(value: str) -> timedelta:
    """Parse durations like `7d`, `12h`, `30m`, `45s` or bare seconds."""
    match = _DURATION.match(value or "")
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def create_access_token(payload: dict[str, Any], secret: str, expires_in: str) -> str:
    """Sign a JWT carrying `payload` that expires after `expires_in`."""
    now = utc_now()
    claims = {**payload, "iat": now, "exp": now + parse_duration(expires_in)}
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, secret: str) -> dict[str, Any]:
    """Verify and decode a JWT.

    Raises:
        jwt.InvalidTokenError: bad signature, malformed or expired token
    """
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
