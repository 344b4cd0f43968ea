"""
HS256 session tokens whose subject is the user's normalized email
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt

from ..errors import AuthError
from ..utils import utcnow, norm_email

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
MIN_SECRET_BYTES = 32


class JwtService:
    """Issues and verifies signed session tokens"""

    def __init__(self, secret: str, expiration_seconds: int = 3600):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.expiration_seconds = expiration_seconds

        key_bytes = len(secret.encode('utf-8'))
        if key_bytes < MIN_SECRET_BYTES:
            logger.warning(
                f"[JWT] weak secret key ({key_bytes} bytes). "
                f"HS256 recommends at least {MIN_SECRET_BYTES} bytes."
            )
        logger.info(f"[JWT] service ready, tokens live {expiration_seconds}s")

    @staticmethod
    def normalize_subject(subject: Optional[str]) -> str:
        return norm_email(subject)

    def generate_token(self, subject: Optional[str], extra_claims: Optional[Dict[str, Any]] = None) -> str:
        """Create a signed token for subject"""
        now = utcnow()
        payload = dict(extra_claims or {})
        payload.update({
            "sub": self.normalize_subject(subject),
            "iat": now,
            "exp": now + timedelta(seconds=self.expiration_seconds),
        })
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: str) -> Dict[str, Any]:
        """Verify signature and expiry and return the claims"""
        if not token or not token.strip():
            raise AuthError("Token is required", "INVALID_TOKEN")
        try:
            return jwt.decode(
                token.strip(),
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Token has expired", "TOKEN_EXPIRED")
        except jwt.InvalidTokenError:
            raise AuthError("Invalid token", "INVALID_TOKEN")

    def extract_subject(self, token: str) -> str:
        """Subject of a valid token; raises AuthError otherwise"""
        return self.decode(token)["sub"]
