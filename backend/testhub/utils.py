"""
TestHub Utils - Helper Functions & Validators
Email normalization, password policy, encoding helpers and logging setup
"""

import re
import base64
import logging
import binascii
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72
PASSWORD_MIN_LENGTH = 8

COMMON_PASSWORDS = frozenset([
    "123456", "123456789", "12345678", "1234567890", "12345", "111111",
    "123123", "1234567", "000000", "666666",
    "qwerty", "qwertyuiop", "1q2w3e4r", "qwerty123", "asdfgh", "zxcvbnm",
    "qazwsx", "1qaz2wsx",
    "password", "password1", "password123", "pass", "passw0rd",
    "admin", "admin123", "root", "user", "guest", "welcome", "welcome1",
    "letmein", "login", "test", "test123", "testing", "demo", "sample",
    "abc123", "monkey", "dragon", "master", "superman", "batman",
    "trustno1", "football", "baseball", "iloveyou",
])

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def norm_email(email: Optional[str]) -> str:
    """Trimmed, lower-cased email; None becomes an empty string"""
    if email is None:
        return ""
    return email.strip().lower()


def safe_name(full_name: Optional[str], fallback_email: Optional[str]) -> str:
    """Display name, falling back to the email when the name is blank"""
    if full_name and full_name.strip():
        return full_name.strip()
    return fallback_email or ""


def validate_email(email: Optional[str]) -> bool:
    """Validate email format"""
    if not email:
        return False
    return EMAIL_PATTERN.match(email) is not None


def email_local_part(email: Optional[str]) -> str:
    email = norm_email(email)
    at = email.find('@')
    return email[:at] if at > 0 else email


def validate_password(password: Optional[str], email: Optional[str] = None,
                      full_name: Optional[str] = None) -> ValidationResult:
    """Validate password strength; errors are ordered by severity"""
    errors = []

    if password is None or not password.strip():
        return ValidationResult(is_valid=False, errors=["Password is required"])

    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")

    if len(password.encode('utf-8')) > BCRYPT_MAX_BYTES:
        errors.append(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")

    if not (re.search(r"[a-z]", password) and re.search(r"[A-Z]", password)):
        errors.append("Use both upper and lower case letters")

    if not re.search(r"\d", password):
        errors.append("Add at least one digit")

    if not re.search(r"[^A-Za-z0-9]", password):
        errors.append("Add at least one symbol")

    lowered = password.lower()
    if lowered in COMMON_PASSWORDS:
        errors.append("Password is too common")

    local = email_local_part(email)
    if len(local) >= 3 and local in lowered:
        errors.append("Password must not contain your email")

    if full_name:
        for part in re.split(r"\s+", full_name.strip().lower()):
            if len(part) >= 3 and part in lowered:
                errors.append("Password must not contain your name")
                break

    return ValidationResult(is_valid=len(errors) == 0, errors=errors)


def b64url_encode(value: str) -> str:
    """URL-safe base64 without padding"""
    return base64.urlsafe_b64encode(value.encode('utf-8')).decode('ascii').rstrip('=')


def b64url_decode(value: str) -> str:
    """Inverse of b64url_encode; raises ValueError on malformed input"""
    padded = value + '=' * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode('ascii')).decode('utf-8')
    except (binascii.Error, UnicodeError) as e:
        raise ValueError("Malformed base64url value") from e


def redact_token(token: Optional[str], keep: int = 8) -> str:
    """Loggable form of a credential"""
    if not token:
        return "<empty>"
    return f"{token[:keep]}..." if len(token) > keep else "***"


def get_client_ip(request) -> str:
    """Extract client IP address from request"""
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    real_ip = request.headers.get('X-Real-IP')
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else 'unknown'


def is_secure_request(request) -> bool:
    if request.url.scheme == 'https':
        return True
    return request.headers.get('X-Forwarded-Proto', '').lower() == 'https'


def setup_logging(level: str = 'INFO') -> None:
    """Configure root logging once"""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    else:
        root.setLevel(level.upper())


__all__ = [
    'ValidationResult',
    'COMMON_PASSWORDS',
    'utcnow',
    'norm_email',
    'safe_name',
    'validate_email',
    'email_local_part',
    'validate_password',
    'b64url_encode',
    'b64url_decode',
    'redact_token',
    'get_client_ip',
    'is_secure_request',
    'setup_logging',
]
