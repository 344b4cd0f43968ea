"""
One-time email token issuance and consumption.

Raw tokens (`<uuid4>.<uuid4>`) only ever leave the service inside an email
link; the database keeps their SHA-256 hex digest. Consumption is a
compare-and-set on `used_at`, so of two concurrent consumers exactly one
succeeds.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, delete
from sqlalchemy.orm import Session

from ..errors import TokenInvalidOrExpiredError
from ..models import User, VerificationToken, TokenType
from ..security import SecurityManager
from ..utils import utcnow

logger = logging.getLogger(__name__)


class EmailTokenService:
    """Verification, reset, email change and invite tokens"""

    @staticmethod
    def new_raw_token() -> str:
        """Two random UUIDs joined by a dot"""
        return f"{uuid.uuid4()}.{uuid.uuid4()}"

    @staticmethod
    def sha256_hex(raw: str) -> str:
        return SecurityManager.sha256_hex(raw)

    def create_token(
        self,
        db: Session,
        user: User,
        token_type: TokenType,
        ttl: timedelta,
        raw_token: str,
    ) -> VerificationToken:
        """Persist the digest of raw_token, valid for ttl"""
        now = utcnow()
        token = VerificationToken(
            user_id=user.id,
            type=token_type,
            token_hash=self.sha256_hex(raw_token),
            created_at=now,
            expires_at=now + ttl,
            used_at=None,
        )
        db.add(token)
        db.flush()
        logger.debug(f"[EmailToken] created {token_type.value} token for user {user.id}")
        return token

    def validate_and_consume(
        self,
        db: Session,
        raw_token: Optional[str],
        token_type: TokenType,
    ) -> VerificationToken:
        """
        Mark the matching token used and return it. Unknown, foreign-purpose,
        used and expired tokens are indistinguishable to the caller.
        """
        if raw_token is None or not raw_token.strip():
            raise TokenInvalidOrExpiredError()

        now = utcnow()
        token = db.execute(
            select(VerificationToken).where(
                VerificationToken.token_hash == self.sha256_hex(raw_token.strip()),
                VerificationToken.type == token_type,
                VerificationToken.used_at.is_(None),
                VerificationToken.expires_at > now,
            )
        ).scalars().first()

        if token is None:
            logger.info(f"[EmailToken] rejected {token_type.value} token")
            raise TokenInvalidOrExpiredError()

        result = db.execute(
            update(VerificationToken)
            .where(VerificationToken.id == token.id, VerificationToken.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"[EmailToken] lost consume race for token {token.id}")
            raise TokenInvalidOrExpiredError()

        token.used_at = now
        logger.info(f"[EmailToken] consumed {token_type.value} token for user {token.user_id}")
        return token

    def delete_active_tokens(self, db: Session, user_id: int, token_type: TokenType) -> int:
        """Delete unconsumed tokens of one purpose; returns how many went"""
        result = db.execute(
            delete(VerificationToken)
            .where(
                VerificationToken.user_id == user_id,
                VerificationToken.type == token_type,
                VerificationToken.used_at.is_(None),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.debug(f"[EmailToken] deleted {result.rowcount} active {token_type.value} tokens for user {user_id}")
        return result.rowcount

    def delete_token_by_hash(self, db: Session, token_hash: str, token_type: TokenType) -> int:
        """Delete an unconsumed token identified by its digest"""
        result = db.execute(
            delete(VerificationToken)
            .where(
                VerificationToken.token_hash == token_hash,
                VerificationToken.type == token_type,
                VerificationToken.used_at.is_(None),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge_expired(self, db: Session, now: Optional[datetime] = None) -> int:
        """Delete every token whose expiry has passed, used or not"""
        cutoff = now or utcnow()
        result = db.execute(
            delete(VerificationToken)
            .where(VerificationToken.expires_at <= cutoff)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"[EmailToken] purged {result.rowcount} expired tokens")
        return result.rowcount


email_token_service = EmailTokenService()
