"""Tests for validators and encoding helpers."""

from types import SimpleNamespace

import pytest

from testhub.utils import (
    b64url_decode, b64url_encode, email_local_part, get_client_ip, redact_token,
    safe_name, validate_email, validate_password,
)


def _request(headers=None, host="10.1.1.1"):
    return SimpleNamespace(headers=headers or {}, client=SimpleNamespace(host=host))


class TestPasswordPolicy:
    """Tests for password strength rules"""

    def test_strong_password(self):
        assert validate_password("Str0ng!Secret#42", "alice@example.com", "Alice Tester").is_valid

    @pytest.mark.parametrize("password,message", [
        (None, "Password is required"),
        ("   ", "Password is required"),
        ("Ab1!", "Password must be at least 8 characters"),
        ("A1!" + "a" * 80, "Password must be at most 72 bytes"),
        ("lowercase1!", "Use both upper and lower case letters"),
        ("NoDigits!!", "Add at least one digit"),
        ("NoSymbol123", "Add at least one symbol"),
    ])
    def test_first_error(self, password, message):
        result = validate_password(password)
        assert not result.is_valid
        assert result.first_error == message

    def test_common_password(self):
        assert "Password is too common" in validate_password("Password1").errors

    def test_contains_email(self):
        result = validate_password("Zed!carol99X", "carol@example.com")
        assert "Password must not contain your email" in result.errors

    def test_contains_name(self):
        result = validate_password("Zed!Tester99", "alice@example.com", "Alice Tester")
        assert "Password must not contain your name" in result.errors

    def test_multibyte_length_counts_bytes(self):
        # 34 characters, 94 bytes
        result = validate_password("Aa1!" + "€" * 30)
        assert "Password must be at most 72 bytes" in result.errors


class TestEmailHelpers:
    """Tests for email helpers"""

    @pytest.mark.parametrize("email,valid", [
        ("user@example.com", True),
        ("first.last+tag@sub.example.org", True),
        ("no-at-sign", False),
        ("user@host", False),
        ("", False),
        (None, False),
    ])
    def test_validate_email(self, email, valid):
        assert validate_email(email) is valid

    def test_local_part(self):
        assert email_local_part(" Bob@Example.com") == "bob"

    def test_safe_name(self):
        assert safe_name("  Bob ", "bob@example.com") == "Bob"
        assert safe_name("   ", "bob@example.com") == "bob@example.com"


class TestEncoding:
    """Tests for base64url helpers"""

    def test_unpadded(self):
        encoded = b64url_encode("7")
        assert "=" not in encoded
        assert b64url_decode(encoded) == "7"

    def test_malformed(self):
        with pytest.raises(ValueError):
            b64url_decode("abcde")

    def test_redact(self):
        assert redact_token("pat_abcdefghijkl", 8) == "pat_abcd..."
        assert redact_token(None) == "<empty>"


class TestClientIp:
    """Tests for client address extraction"""

    def test_forwarded_for_first_entry(self):
        request = _request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
        assert get_client_ip(request) == "203.0.113.5"

    def test_real_ip(self):
        assert get_client_ip(_request({"X-Real-IP": " 198.51.100.7 "})) == "198.51.100.7"

    def test_socket_address(self):
        assert get_client_ip(_request()) == "10.1.1.1"

    def test_no_client(self):
        assert get_client_ip(SimpleNamespace(headers={}, client=None)) == "unknown"
