"""
One-time onboarding codes and passwords.

Temp code format: <prefix>-<uuid4>, e.g. lumtempcode-3f2b8c1e-9d4a-4f6b-a1c2-7e8d9f0a1b2c.
The authentication flow relies on this exact shape to tell temp-code logins apart
from ordinary usernames, so the regex below is a public contract.
"""

import re
import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import Optional

from app.core.clock import utcnow
from app.core.config import settings

TEMP_CODE_PREFIX = settings.temp_code_prefix

_TEMP_CODE_RE = re.compile(
    r"^" + re.escape(TEMP_CODE_PREFIX)
    + r"-[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

PASSWORD_SYMBOLS = "!@#$%^&*"
PASSWORD_CHARSET = string.ascii_letters + string.digits + PASSWORD_SYMBOLS
MIN_PASSWORD_LENGTH = 4

_system_random = secrets.SystemRandom()


def generate_temp_code() -> str:
    """uuid4 draws from os.urandom, so the id part is unpredictable."""
    return f"{TEMP_CODE_PREFIX}-{uuid.uuid4()}"


def is_valid_temp_code(code: Optional[str]) -> bool:
    """Strict structural check; cheap pre-filter before a database lookup."""
    if not code:
        return False
    return _TEMP_CODE_RE.match(code) is not None


def is_temp_code(username: Optional[str]) -> bool:
    """Loose check used by login routing: anything carrying the prefix goes to the temp flow."""
    if not username:
        return False
    return username.lower().startswith(TEMP_CODE_PREFIX + "-")


def generate_temp_password(length: int = 12) -> str:
    """
    Random password with at least one uppercase, lowercase, digit and symbol.

    The four guaranteed characters are shuffled in with the rest, so their
    positions carry no information.
    """
    if length < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password length must be at least {MIN_PASSWORD_LENGTH}")
    chars = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice(PASSWORD_SYMBOLS),
    ]
    chars.extend(secrets.choice(PASSWORD_CHARSET) for _ in range(length - len(chars)))
    _system_random.shuffle(chars)
    return "".join(chars)


def generate_expiry(days: Optional[int] = None, now: Optional[datetime] = None) -> datetime:
    if days is None:
        days = settings.temp_credential_expiry_days
    return (now or utcnow()) + timedelta(days=days)


def generate_registration_token() -> str:
    return secrets.token_urlsafe(32)
