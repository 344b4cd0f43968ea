"""
Account lifecycle: registration, email verification, login, password
reset and change, and profile updates including email change
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from ..config import get_settings
from ..errors import (
    AuthError, ForbiddenError, InvalidInputError, RateLimitedError, TokenInvalidOrExpiredError,
)
from ..models import User, PasswordChangeLog, TokenType
from ..security import SecurityManager
from ..utils import (
    utcnow, norm_email, safe_name, validate_email, validate_password, b64url_encode, b64url_decode,
)
from .email_token_service import EmailTokenService, email_token_service
from .group_service import GroupService, group_service

logger = logging.getLogger(__name__)

settings = get_settings()


def _require_valid_password(password: Optional[str], email: Optional[str], full_name: Optional[str]) -> str:
    result = validate_password(password, email, full_name)
    if not result.is_valid:
        raise InvalidInputError(result.first_error, "WEAK_PASSWORD")
    return password


def encode_email_change_token(raw_token: str, new_email: str) -> str:
    return f"{raw_token}.{b64url_encode(new_email)}"


def decode_email_change_target(token: str) -> str:
    parts = token.split('.')
    if len(parts) != 3 or not all(parts):
        raise TokenInvalidOrExpiredError()
    try:
        return norm_email(b64url_decode(parts[2]))
    except ValueError:
        raise TokenInvalidOrExpiredError()


class UserService:
    """User account operations"""

    def __init__(
        self,
        tokens: EmailTokenService = email_token_service,
        groups: GroupService = group_service,
    ):
        self.tokens = tokens
        self.groups = groups

    def find_by_email(self, db: Session, email: Optional[str]) -> Optional[User]:
        email = norm_email(email)
        if not email:
            return None
        return db.execute(select(User).where(User.email == email)).scalars().first()

    def _ensure_email_available(self, db: Session, email: str) -> None:
        if self.find_by_email(db, email) is not None:
            raise InvalidInputError("Email already in use", "EMAIL_IN_USE")

    def register_user(self, db: Session, email: Optional[str], password: Optional[str],
                      full_name: Optional[str] = None) -> User:
        """Create a disabled account with its personal group"""
        email = norm_email(email)
        if not email:
            raise InvalidInputError("Email is required", "EMAIL_REQUIRED")
        if not validate_email(email):
            raise InvalidInputError("Invalid email", "INVALID_EMAIL")
        self._ensure_email_available(db, email)
        _require_valid_password(password, email, full_name)

        user = User(
            email=email,
            password_hash=SecurityManager.hash_password(password),
            full_name=safe_name(full_name, email),
            enabled=False,
        )
        db.add(user)
        db.flush()
        self.groups.ensure_personal_group(db, user)

        logger.info(f"Registered user {user.id}")
        return user

    def issue_email_verification(self, db: Session, user: User,
                                 ttl: Optional[timedelta] = None) -> str:
        """Replace outstanding verification tokens with a fresh one"""
        self.tokens.delete_active_tokens(db, user.id, TokenType.EMAIL_VERIFY)
        raw_token = self.tokens.new_raw_token()
        self.tokens.create_token(
            db, user, TokenType.EMAIL_VERIFY,
            ttl or settings.token_lifetimes.email_verification, raw_token,
        )
        return raw_token

    def resend_verification(self, db: Session, email: Optional[str]) -> Optional[Tuple[User, str]]:
        """None for unknown or already verified emails so callers can answer uniformly"""
        user = self.find_by_email(db, email)
        if user is None:
            return None
        if user.enabled:
            logger.info(f"Verification resend skipped for verified user {user.id}")
            return None
        return user, self.issue_email_verification(db, user)

    def verify_email(self, db: Session, token: Optional[str]) -> User:
        consumed = self.tokens.validate_and_consume(db, token, TokenType.EMAIL_VERIFY)
        user = consumed.user
        user.enabled = True
        db.flush()
        logger.info(f"Verified email of user {user.id}")
        return user

    def authenticate(self, db: Session, email: Optional[str], password: Optional[str]) -> User:
        """Check credentials for login"""
        user = self.find_by_email(db, email)
        if user is None:
            SecurityManager.verify_password(None, None)
            raise AuthError("Invalid email or password", "INVALID_CREDENTIALS")
        if not SecurityManager.verify_password(password, user.password_hash):
            logger.warning(f"Failed login for user {user.id}")
            raise AuthError("Invalid email or password", "INVALID_CREDENTIALS")
        if not user.enabled:
            raise ForbiddenError("Email address is not verified", "EMAIL_NOT_VERIFIED")
        return user

    def request_password_reset(self, db: Session, email: Optional[str]) -> Optional[Tuple[User, str]]:
        user = self.find_by_email(db, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return None
        self.tokens.delete_active_tokens(db, user.id, TokenType.PASSWORD_RESET)
        raw_token = self.tokens.new_raw_token()
        self.tokens.create_token(
            db, user, TokenType.PASSWORD_RESET, settings.token_lifetimes.password_reset, raw_token,
        )
        return user, raw_token

    def reset_password(self, db: Session, token: Optional[str], new_password: Optional[str]) -> User:
        consumed = self.tokens.validate_and_consume(db, token, TokenType.PASSWORD_RESET)
        user = consumed.user
        _require_valid_password(new_password, user.email, user.full_name)
        user.password_hash = SecurityManager.hash_password(new_password)
        db.flush()
        logger.info(f"Password reset for user {user.id}")
        return user

    def change_password(self, db: Session, user: User, current_password: Optional[str],
                        new_password: Optional[str]) -> None:
        window_start = utcnow() - timedelta(hours=24)
        recent = db.execute(
            select(func.count(PasswordChangeLog.id)).where(
                PasswordChangeLog.user_id == user.id,
                PasswordChangeLog.created_at > window_start,
            )
        ).scalar_one()
        limit = settings.passwords.changes_per_day
        if recent >= limit:
            raise RateLimitedError(f"Password can be changed up to {limit} times in 24 hours")

        if not SecurityManager.verify_password(current_password, user.password_hash):
            raise InvalidInputError("Current password is incorrect", "WRONG_PASSWORD")
        if new_password and SecurityManager.verify_password(new_password, user.password_hash):
            raise InvalidInputError("New password must be different from current", "SAME_PASSWORD")
        _require_valid_password(new_password, user.email, user.full_name)

        user.password_hash = SecurityManager.hash_password(new_password)
        db.add(PasswordChangeLog(user_id=user.id))
        db.flush()
        logger.info(f"Password changed for user {user.id}")

    def get_profile(self, db: Session, user: User) -> Dict[str, Any]:
        profile = user.to_dict()
        profile['groups'] = self.groups.my_groups(db, user)
        return profile

    def update_profile(self, db: Session, user: User, full_name: Optional[str] = None,
                       new_email: Optional[str] = None) -> Optional[str]:
        """
        Apply a name change and/or start an email change. Returns the raw
        EMAIL_CHANGE token when one was issued.
        """
        if full_name is not None:
            if not full_name.strip():
                raise InvalidInputError("Full name is required", "FULL_NAME_REQUIRED")
            user.full_name = full_name.strip()

        raw_token = None
        if new_email is not None:
            target = norm_email(new_email)
            if not target:
                raise InvalidInputError("New email is required", "EMAIL_REQUIRED")
            if not validate_email(target):
                raise InvalidInputError("Invalid email", "INVALID_EMAIL")
            if target == user.email:
                raise InvalidInputError("New email must be different", "SAME_EMAIL")
            self._ensure_email_available(db, target)

            self.tokens.delete_active_tokens(db, user.id, TokenType.EMAIL_CHANGE)
            raw_token = encode_email_change_token(self.tokens.new_raw_token(), target)
            self.tokens.create_token(
                db, user, TokenType.EMAIL_CHANGE, settings.token_lifetimes.email_change, raw_token,
            )
            logger.info(f"Email change requested by user {user.id}")

        db.flush()
        return raw_token

    def confirm_email_change(self, db: Session, token: Optional[str]) -> User:
        if token is None or not token.strip():
            raise TokenInvalidOrExpiredError()
        token = token.strip()
        new_email = decode_email_change_target(token)
        consumed = self.tokens.validate_and_consume(db, token, TokenType.EMAIL_CHANGE)
        # Availability is only revealed to holders of a live token
        self._ensure_email_available(db, new_email)

        user = consumed.user
        user.email = new_email
        db.flush()
        logger.info(f"Email changed for user {user.id}")
        return user


user_service = UserService()
