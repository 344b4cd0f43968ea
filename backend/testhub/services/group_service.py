"""
Group management and member administration
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from ..errors import InvalidInputError, ForbiddenError, NotFoundError
from ..models import (
    User, Group, GroupMembership, GroupInvitation, GroupType, GroupRole,
    MembershipStatus, InvitationStatus, TokenType,
)
from ..utils import utcnow
from .email_token_service import EmailTokenService, email_token_service
from .group_access import GroupAccessControl, group_access
from .group_invitation_service import GroupInvitationService, group_invitation_service

logger = logging.getLogger(__name__)

GROUP_NAME_MIN_LENGTH = 3
GROUP_NAME_MAX_LENGTH = 200


def validate_group_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidInputError("Group name is required", "NAME_REQUIRED")
    if len(name) < GROUP_NAME_MIN_LENGTH:
        raise InvalidInputError(
            f"Group name must be at least {GROUP_NAME_MIN_LENGTH} characters", "NAME_TOO_SHORT"
        )
    if len(name) > GROUP_NAME_MAX_LENGTH:
        raise InvalidInputError("Group name too long", "NAME_TOO_LONG")
    return name


def _member_dict(membership: GroupMembership) -> Dict[str, Any]:
    return {
        'membership_id': membership.id,
        'user_id': membership.user_id,
        'email': membership.user.email,
        'full_name': membership.user.full_name,
        'role': membership.role.value,
        'status': membership.status.value,
        'invited_by': membership.invited_by.email if membership.invited_by else None,
        'created_at': membership.created_at,
    }


class GroupService:
    """Create, inspect, rename, delete and leave groups; administer members"""

    def __init__(
        self,
        tokens: EmailTokenService = email_token_service,
        access: GroupAccessControl = group_access,
        invitations: GroupInvitationService = group_invitation_service,
    ):
        self.tokens = tokens
        self.access = access
        self.invitations = invitations

    def ensure_personal_group(self, db: Session, user: User) -> Group:
        """Idempotent: creates the personal group and repairs its owner membership"""
        group = db.execute(
            select(Group).where(Group.owner_id == user.id, Group.group_type == GroupType.PERSONAL)
        ).scalars().first()
        if group is None:
            group = Group(
                name=f"Personal group for {user.email}",
                owner_id=user.id,
                group_type=GroupType.PERSONAL,
            )
            db.add(group)
            db.flush()
            logger.info(f"Created personal group {group.id} for user {user.id}")

        membership = self.access.find_membership(db, group.id, user.id)
        if membership is None:
            membership = GroupMembership(group_id=group.id, user_id=user.id)
            db.add(membership)
        membership.role = GroupRole.OWNER
        membership.status = MembershipStatus.ACTIVE
        db.flush()
        return group

    def my_groups(self, db: Session, user: User) -> List[Dict[str, Any]]:
        """Groups the user is an active member of, with active member counts"""
        counts = (
            select(GroupMembership.group_id, func.count(GroupMembership.id).label('members'))
            .where(GroupMembership.status == MembershipStatus.ACTIVE)
            .group_by(GroupMembership.group_id)
            .subquery()
        )
        rows = db.execute(
            select(Group, GroupMembership.role, counts.c.members)
            .join(GroupMembership, GroupMembership.group_id == Group.id)
            .join(counts, counts.c.group_id == Group.id)
            .where(
                GroupMembership.user_id == user.id,
                GroupMembership.status == MembershipStatus.ACTIVE,
            )
            .order_by(Group.group_type, Group.created_at)
        ).all()

        return [
            {
                'id': group.id,
                'name': group.name,
                'personal': group.personal,
                'owner_id': group.owner_id,
                'role': role.value,
                'members_count': members,
                'created_at': group.created_at,
            }
            for group, role, members in rows
        ]

    def get_group_details(self, db: Session, user: User, group_id: int) -> Dict[str, Any]:
        group = self.access.require_group(db, group_id)
        own = self.access.require_active_member(db, group.id, user.id)

        members = db.execute(
            select(GroupMembership)
            .where(
                GroupMembership.group_id == group.id,
                GroupMembership.status.in_([MembershipStatus.ACTIVE, MembershipStatus.PENDING]),
            )
            .order_by(GroupMembership.created_at)
        ).scalars().all()

        return {
            'id': group.id,
            'name': group.name,
            'personal': group.personal,
            'owner_id': group.owner_id,
            'owner_email': group.owner.email,
            'my_role': own.role.value,
            'created_at': group.created_at,
            'updated_at': group.updated_at,
            'members': [_member_dict(m) for m in members],
        }

    def create_group(self, db: Session, user: User, name: Optional[str]) -> Group:
        group = Group(
            name=validate_group_name(name),
            owner_id=user.id,
            group_type=GroupType.SHARED,
        )
        db.add(group)
        db.flush()
        db.add(GroupMembership(
            group_id=group.id,
            user_id=user.id,
            role=GroupRole.OWNER,
            status=MembershipStatus.ACTIVE,
        ))
        db.flush()
        logger.info(f"User {user.id} created group {group.id}")
        return group

    def rename_group(self, db: Session, user: User, group_id: int, name: Optional[str]) -> Group:
        group = self.access.require_group(db, group_id)
        self.access.require_at_least(db, group.id, user.id, GroupRole.MAINTAINER)
        group.name = validate_group_name(name)
        group.updated_at = utcnow()
        db.flush()
        return group

    def delete_group(self, db: Session, user: User, group_id: int) -> None:
        group = self.access.require_group(db, group_id)
        if group.owner_id != user.id:
            raise ForbiddenError("Only the group owner can do this", "OWNER_ONLY")
        if group.personal:
            raise InvalidInputError("Personal group cannot be deleted", "CANNOT_DELETE_PERSONAL")

        self.purge_group(db, group)
        logger.info(f"User {user.id} deleted group {group_id}")

    def purge_group(self, db: Session, group: Group) -> None:
        """Delete a group together with the email tokens of its pending invitations"""
        pending_hashes = db.execute(
            select(GroupInvitation.token_hash).where(
                GroupInvitation.group_id == group.id,
                GroupInvitation.status == InvitationStatus.PENDING,
            )
        ).scalars().all()
        for token_hash in pending_hashes:
            self.tokens.delete_token_by_hash(db, token_hash, TokenType.GROUP_INVITE)

        db.delete(group)
        db.flush()

    def leave_group(self, db: Session, user: User, group_id: int) -> None:
        group = self.access.require_group(db, group_id)
        if group.owner_id == user.id:
            raise InvalidInputError("The owner cannot leave the group", "OWNER_CANNOT_LEAVE")

        membership = self.access.find_membership(db, group.id, user.id)
        if membership is None or membership.status == MembershipStatus.REMOVED:
            raise ForbiddenError("Not a member of this group", "NOT_A_MEMBER")

        membership.status = MembershipStatus.REMOVED
        self.invitations.retire_pending_invitations(db, group.id, user.email)
        db.flush()
        logger.info(f"User {user.id} left group {group.id}")

    def _target_membership(self, db: Session, group: Group, membership_id: int) -> GroupMembership:
        membership = db.get(GroupMembership, membership_id)
        if membership is None:
            raise NotFoundError("Membership not found", "MEMBERSHIP_NOT_FOUND")
        if membership.group_id != group.id:
            raise InvalidInputError("Membership does not belong to this group", "MEMBERSHIP_GROUP_MISMATCH")
        return membership

    def remove_member(self, db: Session, owner: User, group_id: int, membership_id: int) -> None:
        group = self.access.require_group(db, group_id)
        self.access.require_owner_active_member(db, group.id, owner.id)
        membership = self._target_membership(db, group, membership_id)

        if membership.role == GroupRole.OWNER:
            raise InvalidInputError("The owner cannot be removed", "CANNOT_REMOVE_OWNER")
        if membership.status == MembershipStatus.PENDING:
            raise InvalidInputError(
                "Pending invitations are cancelled through the invite endpoint", "USE_INVITE_CANCEL_ENDPOINT"
            )
        if membership.status == MembershipStatus.REMOVED:
            return

        membership.status = MembershipStatus.REMOVED
        db.flush()
        logger.info(f"User {owner.id} removed user {membership.user_id} from group {group.id}")

    def change_member_role(self, db: Session, owner: User, group_id: int,
                           membership_id: int, new_role: Optional[str]) -> GroupMembership:
        try:
            role = GroupRole((new_role or "").strip().upper())
        except ValueError:
            raise InvalidInputError("Unknown role", "INVALID_ROLE")

        group = self.access.require_group(db, group_id)
        self.access.require_owner_active_member(db, group.id, owner.id)
        membership = self._target_membership(db, group, membership_id)

        if membership.role == GroupRole.OWNER:
            raise InvalidInputError("The owner role cannot be changed", "OWNER_ROLE_FIXED")
        if membership.status != MembershipStatus.ACTIVE:
            raise InvalidInputError("Member is not active", "MEMBER_NOT_ACTIVE")
        if role == GroupRole.OWNER:
            raise InvalidInputError("Members cannot be promoted to owner", "CANNOT_PROMOTE_TO_OWNER")

        membership.role = role
        db.flush()
        logger.info(f"User {owner.id} set role {role.value} for user {membership.user_id} in group {group.id}")
        return membership


group_service = GroupService()
