"""
Personal access tokens.

A token reads `pat_<prefix>.<secret>`. The prefix is stored in clear text as
the lookup key, the secret only as a bcrypt hash, and the full token is shown
to its owner once, at creation.
"""

import re
import uuid
import secrets
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import (
    InvalidInputError, NotFoundError, InvalidTokenError,
    TokenNotFoundError, ForbiddenTokenAccessError,
)
from ..models import ApiToken, User
from ..security import SecurityManager
from ..utils import utcnow, norm_email, redact_token

logger = logging.getLogger(__name__)

PAT_PREFIX = "pat_"
TOKEN_PATTERN = re.compile(r"^pat_([A-Za-z0-9_-]+)\.([A-Za-z0-9_-]+)$")
PREFIX_BYTES = 8
SECRET_BYTES = 24
DEFAULT_TOKEN_NAME = "Token"
MAX_NAME_LENGTH = 80


@dataclass
class CreatedToken:
    """A freshly created token; `token` is never retrievable again"""
    api_token: ApiToken
    token: str

    def to_dict(self):
        data = self.api_token.to_dict()
        data['token'] = self.token
        return data


class PersonalAccessTokenService:
    """Create, list, revoke and authenticate personal access tokens"""

    def __init__(self, bcrypt_rounds: Optional[int] = None):
        self.bcrypt_rounds = bcrypt_rounds

    @staticmethod
    def is_pat(token: Optional[str]) -> bool:
        return bool(token) and token.startswith(PAT_PREFIX)

    def _require_user(self, db: Session, email: Optional[str]) -> User:
        email = norm_email(email)
        if not email:
            raise InvalidInputError("Email is required")
        user = db.execute(select(User).where(User.email == email)).scalars().first()
        if user is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return user

    def create_token(
        self,
        db: Session,
        email: str,
        name: Optional[str] = None,
        scopes: Optional[str] = None,
    ) -> CreatedToken:
        user = self._require_user(db, email)

        prefix = secrets.token_urlsafe(PREFIX_BYTES)
        secret = secrets.token_urlsafe(SECRET_BYTES)
        # token_urlsafe can, rarely, collide with an existing prefix
        while db.execute(select(ApiToken.id).where(ApiToken.token_prefix == prefix)).first():
            prefix = secrets.token_urlsafe(PREFIX_BYTES)

        clean_name = (name or "").strip() or DEFAULT_TOKEN_NAME
        api_token = ApiToken(
            user_id=user.id,
            name=clean_name[:MAX_NAME_LENGTH],
            token_prefix=prefix,
            secret_hash=SecurityManager.hash_password(secret, rounds=self.bcrypt_rounds),
            scopes=(scopes or "").strip() or None,
            created_at=utcnow(),
        )
        db.add(api_token)
        db.flush()

        logger.info(f"[PAT] created token {api_token.id} for user {user.id}")
        return CreatedToken(api_token=api_token, token=f"{PAT_PREFIX}{prefix}.{secret}")

    def list_active_tokens(self, db: Session, email: str) -> List[ApiToken]:
        user = self._require_user(db, email)
        return list(db.execute(
            select(ApiToken)
            .where(ApiToken.user_id == user.id, ApiToken.revoked_at.is_(None))
            .order_by(ApiToken.created_at.desc())
        ).scalars())

    def revoke_token(self, db: Session, email: str, token_id) -> None:
        """Revoke an owned token; revoking twice is a no-op"""
        user = self._require_user(db, email)
        if token_id is None or (isinstance(token_id, str) and not token_id.strip()):
            raise InvalidInputError("Token ID is required")
        try:
            token_uuid = token_id if isinstance(token_id, uuid.UUID) else uuid.UUID(str(token_id).strip())
        except ValueError:
            raise InvalidInputError("Invalid token ID")

        api_token = db.get(ApiToken, token_uuid)
        if api_token is None:
            raise NotFoundError("Token not found", "TOKEN_NOT_FOUND")
        if api_token.user_id != user.id:
            logger.warning(f"[PAT] user {user.id} tried to revoke token {token_uuid} of user {api_token.user_id}")
            raise ForbiddenTokenAccessError()
        if api_token.revoked_at is not None:
            return

        api_token.revoked_at = utcnow()
        db.flush()
        logger.info(f"[PAT] revoked token {token_uuid} for user {user.id}")

    def authenticate_token(self, db: Session, token_string: Optional[str]) -> str:
        """Validate a presented token and return the owner's email"""
        if token_string is None or not token_string.strip():
            raise InvalidTokenError("Token is required")

        match = TOKEN_PATTERN.match(token_string.strip())
        if not match:
            raise InvalidTokenError("Invalid token format")
        prefix, secret = match.group(1), match.group(2)

        api_token = db.execute(
            select(ApiToken).where(ApiToken.token_prefix == prefix, ApiToken.revoked_at.is_(None))
        ).scalars().first()
        if api_token is None:
            logger.info(f"[PAT] unknown or revoked token {redact_token(token_string, 12)}")
            raise TokenNotFoundError("Token not found or has been revoked")

        if not SecurityManager.verify_password(secret, api_token.secret_hash):
            logger.warning(f"[PAT] secret mismatch for token {api_token.id}")
            raise InvalidTokenError("Invalid token secret")

        api_token.last_used_at = utcnow()
        db.flush()
        return api_token.user.email
