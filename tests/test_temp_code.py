"""Unit tests for temporary code, password and token generation."""

import re
from datetime import datetime, timedelta

import pytest

from app.auth.temp_code import (
    PASSWORD_CHARSET,
    PASSWORD_SYMBOLS,
    generate_expiry,
    generate_registration_token,
    generate_temp_code,
    generate_temp_password,
    is_temp_code,
    is_valid_temp_code,
)

CANONICAL = re.compile(
    r"^lumtempcode-[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)


def test_temp_code_format() -> None:
    """Prefix followed by a lowercase, hyphenated uuid4."""
    code = generate_temp_code()
    assert CANONICAL.match(code)
    assert is_valid_temp_code(code)


def test_temp_codes_are_unique() -> None:
    codes = {generate_temp_code() for _ in range(1000)}
    assert len(codes) == 1000


def test_valid_temp_code_is_case_insensitive() -> None:
    assert is_valid_temp_code(generate_temp_code().upper().replace("LUMTEMPCODE", "LumTempCode"))


@pytest.mark.parametrize(
    "code",
    [
        "",
        None,
        "lumtempcode",
        "lumtempcode-",
        "lumtempcode-not-a-uuid",
        "tempcode-3f2b8c1e-9d4a-4f6b-a1c2-7e8d9f0a1b2c",
        # version nibble must be 4
        "lumtempcode-3f2b8c1e-9d4a-1f6b-a1c2-7e8d9f0a1b2c",
        # variant nibble must be 8, 9, a or b
        "lumtempcode-3f2b8c1e-9d4a-4f6b-c1c2-7e8d9f0a1b2c",
        " lumtempcode-3f2b8c1e-9d4a-4f6b-a1c2-7e8d9f0a1b2c",
    ],
)
def test_invalid_temp_codes_rejected(code) -> None:
    assert not is_valid_temp_code(code)


def test_is_temp_code_routes_by_prefix() -> None:
    assert is_temp_code("lumtempcode-anything")
    assert is_temp_code("LUMTEMPCODE-anything")
    assert not is_temp_code("kofi.boateng")
    assert not is_temp_code("lumtempcodes")
    assert not is_temp_code("")


def test_temp_password_composition() -> None:
    for _ in range(200):
        password = generate_temp_password()
        assert len(password) == 12
        assert any(c.isupper() for c in password)
        assert any(c.islower() for c in password)
        assert any(c.isdigit() for c in password)
        assert any(c in PASSWORD_SYMBOLS for c in password)
        assert all(c in PASSWORD_CHARSET for c in password)


def test_temp_password_custom_length() -> None:
    assert len(generate_temp_password(4)) == 4
    assert len(generate_temp_password(32)) == 32


def test_temp_password_too_short() -> None:
    with pytest.raises(ValueError):
        generate_temp_password(3)


def test_temp_password_guaranteed_chars_not_fixed_position() -> None:
    """The uppercase character is not always first."""
    first_chars = {generate_temp_password()[0].isupper() for _ in range(200)}
    assert first_chars == {True, False}


def test_generate_expiry_defaults_to_five_days() -> None:
    now = datetime(2025, 1, 10, 9, 0, 0)
    assert generate_expiry(now=now) == now + timedelta(days=5)
    assert generate_expiry(2, now=now) == now + timedelta(days=2)


def test_registration_tokens_are_unique_and_url_safe() -> None:
    tokens = {generate_registration_token() for _ in range(200)}
    assert len(tokens) == 200
    assert all(re.match(r"^[A-Za-z0-9_\-]{43}$", t) for t in tokens)
