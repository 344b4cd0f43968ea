"""
TestHub Security Primitives
Password and secret hashing, token digests and the public route whitelist
"""

import re
import hashlib
import logging
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Tuple

import bcrypt

from .config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Routes reachable without credentials. Ant-style patterns: `*` matches one
# path segment, a trailing `/**` matches the prefix and everything below it.
PUBLIC_ROUTE_PATTERNS: Tuple[str, ...] = (
    "/api/health",
    "/api/auth/register",
    "/api/auth/login",
    "/api/auth/logout",
    "/api/auth/verify",
    "/api/auth/verification/resend",
    "/api/auth/password/request-reset",
    "/api/auth/password/reset",
    "/api/auth/email/confirm",
    "/api/groups/invites/accept",
    "/docs/**",
    "/redoc/**",
    "/openapi.json",
)


class SecurityManager:
    """Hashing helpers for passwords, PAT secrets and one-time tokens"""

    @staticmethod
    def hash_password(password: str, rounds: Optional[int] = None) -> str:
        """Hash a password or token secret with bcrypt"""
        salt = bcrypt.gensalt(rounds=rounds or settings.security.bcrypt_rounds)
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('ascii')

    @staticmethod
    def verify_password(password: Optional[str], hashed: Optional[str]) -> bool:
        """Verify password against hash; unusable hashes never match"""
        if not password or not hashed:
            # Keep timing comparable to a real check
            bcrypt.checkpw(b"dummy-password", _dummy_hash())
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('ascii'))
        except ValueError:
            logger.warning("Stored bcrypt hash is malformed")
            return False

    @staticmethod
    def sha256_hex(raw: str) -> str:
        """Lower-case hex SHA-256 digest of the UTF-8 input"""
        return hashlib.sha256(raw.encode('utf-8')).hexdigest()


@lru_cache(maxsize=1)
def _dummy_hash() -> bytes:
    return bcrypt.hashpw(b"dummy-password", bcrypt.gensalt(rounds=settings.security.bcrypt_rounds))


def _ant_to_regex(pattern: str) -> Pattern:
    if pattern.endswith('/**'):
        base = pattern[:-3]
        tail = r'(?:/.*)?'
    else:
        base = pattern
        tail = ''
    parts = []
    for chunk in re.split(r'(\*\*|\*)', base):
        if chunk == '**':
            parts.append('.*')
        elif chunk == '*':
            parts.append('[^/]*')
        else:
            parts.append(re.escape(chunk))
    return re.compile('^' + ''.join(parts) + tail + '/?$')


class SecurityWhitelist:
    """Single source of truth for which requests skip authentication"""

    def __init__(self, patterns: Iterable[str] = PUBLIC_ROUTE_PATTERNS):
        self.patterns: List[str] = list(patterns)
        self._compiled = [_ant_to_regex(p) for p in self.patterns]

    def is_public(self, method: str, path: str) -> bool:
        # CORS preflight never carries credentials
        if method.upper() == 'OPTIONS':
            return True
        return any(regex.match(path) for regex in self._compiled)


public_routes = SecurityWhitelist()

__all__ = [
    'PUBLIC_ROUTE_PATTERNS',
    'SecurityManager',
    'SecurityWhitelist',
    'public_routes',
]
