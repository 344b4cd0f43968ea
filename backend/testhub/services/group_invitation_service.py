"""
Group invitations: invite by email, accept by token, cancel, list pending.

An invitation is three records kept in step: a PENDING membership, a
GROUP_INVITE verification token whose raw form reaches the invitee by mail,
and a GroupInvitation row carrying the same token digest.
"""

import secrets
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import get_settings
from ..errors import InvalidInputError, NotFoundError, ForbiddenError, TokenInvalidOrExpiredError
from ..models import (
    User, Group, GroupMembership, GroupInvitation, GroupRole,
    MembershipStatus, InvitationStatus, TokenType,
)
from ..security import SecurityManager
from ..utils import utcnow, norm_email, validate_email, email_local_part, b64url_encode, b64url_decode
from .email_token_service import EmailTokenService, email_token_service
from .group_access import GroupAccessControl, group_access

logger = logging.getLogger(__name__)

settings = get_settings()


@dataclass
class InviteResult:
    group: Group
    membership: GroupMembership
    invitation: GroupInvitation
    invitee: User
    raw_token: str


def encode_invite_token(raw_token: str, group_id: int) -> str:
    return f"{raw_token}.{b64url_encode(str(group_id))}"


def decode_invite_group_id(token: str) -> int:
    """Group id carried in the last segment; malformed tokens are rejected uniformly"""
    parts = token.split('.')
    if len(parts) != 3 or not all(parts):
        raise TokenInvalidOrExpiredError()
    try:
        return int(b64url_decode(parts[2]))
    except ValueError:
        raise TokenInvalidOrExpiredError()


class GroupInvitationService:
    """Invitation lifecycle for shared groups"""

    def __init__(
        self,
        tokens: EmailTokenService = email_token_service,
        access: GroupAccessControl = group_access,
        invite_ttl: Optional[timedelta] = None,
        max_members: Optional[int] = None,
    ):
        self.tokens = tokens
        self.access = access
        self.invite_ttl = invite_ttl or settings.token_lifetimes.group_invite
        self.max_members = max_members or settings.groups.max_members

    def _ensure_capacity(self, db: Session, group_id: int) -> None:
        if self.access.count_active_members(db, group_id) >= self.max_members:
            raise InvalidInputError(
                f"Group member limit of {self.max_members} reached", "LIMIT_REACHED"
            )

    def _find_or_create_placeholder(self, db: Session, email: str) -> User:
        user = db.execute(select(User).where(User.email == email)).scalars().first()
        if user is not None:
            return user

        # Unusable password until the invitee sets one through password reset
        user = User(
            email=email,
            full_name=email_local_part(email),
            password_hash=SecurityManager.hash_password(secrets.token_urlsafe(32)),
            enabled=False,
        )
        db.add(user)
        db.flush()
        logger.info(f"Created placeholder user {user.id} for invitation")
        return user

    def retire_pending_invitations(
        self,
        db: Session,
        group_id: int,
        email: str,
        status: InvitationStatus = InvitationStatus.CANCELLED,
    ) -> int:
        """Close PENDING invitations for (group, email) and drop their tokens"""
        invitations = db.execute(
            select(GroupInvitation).where(
                GroupInvitation.group_id == group_id,
                GroupInvitation.invitee_email == norm_email(email),
                GroupInvitation.status == InvitationStatus.PENDING,
            )
        ).scalars().all()

        now = utcnow()
        for invitation in invitations:
            self.tokens.delete_token_by_hash(db, invitation.token_hash, TokenType.GROUP_INVITE)
            invitation.status = status
            if status == InvitationStatus.CANCELLED:
                invitation.cancelled_at = now
        db.flush()
        return len(invitations)

    def invite_user(self, db: Session, inviter: User, group_id: int, email: Optional[str]) -> Optional[InviteResult]:
        """
        Invite email to the group. Returns None when the invitee is already an
        active member; otherwise the caller mails `raw_token` to the invitee.
        """
        email = norm_email(email)
        if not validate_email(email):
            raise InvalidInputError("Invalid email", "INVALID_EMAIL")

        group = self.access.require_group(db, group_id)
        self.access.require_owner_active_member(db, group.id, inviter.id)

        invitee = self._find_or_create_placeholder(db, email)
        membership = self.access.find_membership(db, group.id, invitee.id)
        if membership is not None and membership.status == MembershipStatus.ACTIVE:
            logger.info(f"User {invitee.id} is already an active member of group {group.id}")
            return None

        self._ensure_capacity(db, group.id)

        if membership is None:
            membership = GroupMembership(group_id=group.id, user_id=invitee.id)
            db.add(membership)
        membership.role = GroupRole.MEMBER
        membership.status = MembershipStatus.PENDING
        membership.invited_by_id = inviter.id

        raw_token = encode_invite_token(self.tokens.new_raw_token(), group.id)
        token_hash = self.tokens.sha256_hex(raw_token)
        now = utcnow()

        invitation = db.execute(
            select(GroupInvitation).where(
                GroupInvitation.group_id == group.id,
                GroupInvitation.invitee_email == email,
                GroupInvitation.status == InvitationStatus.PENDING,
            )
        ).scalars().first()
        if invitation is None:
            invitation = GroupInvitation(
                group_id=group.id,
                invitee_email=email,
                created_at=now,
            )
            db.add(invitation)
        else:
            self.tokens.delete_token_by_hash(db, invitation.token_hash, TokenType.GROUP_INVITE)

        invitation.inviter_id = inviter.id
        invitation.invitee_user_id = invitee.id
        invitation.token_hash = token_hash
        invitation.last_sent_at = now
        invitation.expires_at = now + self.invite_ttl

        self.tokens.create_token(db, invitee, TokenType.GROUP_INVITE, self.invite_ttl, raw_token)
        db.flush()

        logger.info(f"User {inviter.id} invited user {invitee.id} to group {group.id}")
        return InviteResult(
            group=group,
            membership=membership,
            invitation=invitation,
            invitee=invitee,
            raw_token=raw_token,
        )

    def accept_invitation(self, db: Session, token: Optional[str],
                          current_email: Optional[str] = None) -> Dict[str, Any]:
        if token is None or not token.strip():
            raise InvalidInputError("Token is required", "TOKEN_REQUIRED")
        token = token.strip()

        group_id = decode_invite_group_id(token)
        consumed = self.tokens.validate_and_consume(db, token, TokenType.GROUP_INVITE)
        invitee = consumed.user

        if current_email and norm_email(current_email) != invitee.email:
            logger.warning(f"Invitation for user {invitee.id} presented by another account")
            raise ForbiddenError("This invitation was sent to another email address", "EMAIL_MISMATCH")

        group = self.access.require_group(db, group_id)
        membership = self.access.find_membership(db, group.id, invitee.id)
        if membership is None or membership.status == MembershipStatus.REMOVED:
            raise TokenInvalidOrExpiredError()

        needs_password = not invitee.enabled
        if needs_password:
            invitee.enabled = True

        if membership.status != MembershipStatus.ACTIVE:
            self._ensure_capacity(db, group.id)
            membership.status = MembershipStatus.ACTIVE
            membership.role = GroupRole.MEMBER

        invitation = db.execute(
            select(GroupInvitation).where(
                GroupInvitation.token_hash == consumed.token_hash,
                GroupInvitation.status == InvitationStatus.PENDING,
            )
        ).scalars().first()
        if invitation is not None:
            invitation.status = InvitationStatus.ACCEPTED
            invitation.accepted_at = utcnow()
        db.flush()

        logger.info(f"User {invitee.id} joined group {group.id}")
        return {
            'needs_password': needs_password,
            'email': invitee.email,
            'group_name': group.name,
            'group_id': group.id,
        }

    def cancel_invitation(self, db: Session, owner: User, group_id: int, membership_id: int) -> None:
        group = self.access.require_group(db, group_id)
        self.access.require_owner_active_member(db, group.id, owner.id)

        membership = db.get(GroupMembership, membership_id)
        if membership is None or membership.group_id != group.id:
            raise NotFoundError("Membership not found", "MEMBERSHIP_NOT_FOUND")
        if membership.status != MembershipStatus.PENDING:
            return

        membership.status = MembershipStatus.REMOVED
        self.retire_pending_invitations(db, group.id, membership.user.email)
        logger.info(f"User {owner.id} cancelled invitation of user {membership.user_id} to group {group.id}")

    def list_pending_invitations(self, db: Session, owner: User, group_id: int) -> List[Dict[str, Any]]:
        group = self.access.require_group(db, group_id)
        self.access.require_owner_active_member(db, group.id, owner.id)

        rows = db.execute(
            select(GroupMembership, GroupInvitation)
            .join(
                GroupInvitation,
                (GroupInvitation.group_id == GroupMembership.group_id)
                & (GroupInvitation.invitee_user_id == GroupMembership.user_id)
                & (GroupInvitation.status == InvitationStatus.PENDING),
                isouter=True,
            )
            .where(
                GroupMembership.group_id == group.id,
                GroupMembership.status == MembershipStatus.PENDING,
            )
            .order_by(GroupMembership.created_at)
        ).all()

        pending = []
        for membership, invitation in rows:
            pending.append({
                'membership_id': membership.id,
                'user_id': membership.user_id,
                'email': membership.user.email,
                'invited_by': membership.invited_by.email if membership.invited_by else None,
                'created_at': membership.created_at,
                'last_sent_at': invitation.last_sent_at if invitation else None,
                'expires_at': invitation.expires_at if invitation else None,
            })
        return pending


group_invitation_service = GroupInvitationService()
