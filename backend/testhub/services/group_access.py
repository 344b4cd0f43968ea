"""
Authorization checks for group-scoped operations.

Every check either returns the loaded entity or raises; none of them modify
membership state.
"""

import logging
from typing import Optional, Union

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from ..errors import ForbiddenError, NotFoundError
from ..models import User, Group, GroupMembership, GroupRole, MembershipStatus, ROLE_RANKS
from ..utils import norm_email

logger = logging.getLogger(__name__)


def role_rank(role: Union[GroupRole, str]) -> int:
    """OWNER 3 > MAINTAINER 2 > MEMBER 1"""
    return ROLE_RANKS[GroupRole(role)]


def role_at_least(actual: Union[GroupRole, str], required: Union[GroupRole, str]) -> bool:
    return role_rank(actual) >= role_rank(required)


class GroupAccessControl:
    """Loads principals and groups and enforces membership rules"""

    def require_user(self, db: Session, email: Optional[str]) -> User:
        user = db.execute(select(User).where(User.email == norm_email(email))).scalars().first()
        if user is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return user

    def require_group(self, db: Session, group_id: int) -> Group:
        group = db.get(Group, group_id)
        if group is None:
            raise NotFoundError("Group not found", "GROUP_NOT_FOUND")
        return group

    def find_membership(self, db: Session, group_id: int, user_id: int) -> Optional[GroupMembership]:
        return db.execute(
            select(GroupMembership).where(
                GroupMembership.group_id == group_id,
                GroupMembership.user_id == user_id,
            )
        ).scalars().first()

    def count_active_members(self, db: Session, group_id: int) -> int:
        return db.execute(
            select(func.count(GroupMembership.id)).where(
                GroupMembership.group_id == group_id,
                GroupMembership.status == MembershipStatus.ACTIVE,
            )
        ).scalar_one()

    def require_active_member(self, db: Session, group_id: int, user_id: int) -> GroupMembership:
        membership = self.find_membership(db, group_id, user_id)
        if membership is None:
            logger.info(f"User {user_id} is not a member of group {group_id}")
            raise ForbiddenError("Not a member of this group", "NOT_A_MEMBER")
        if membership.status != MembershipStatus.ACTIVE:
            raise ForbiddenError("Membership is not active", "MEMBERSHIP_NOT_ACTIVE")
        return membership

    def require_owner_active_member(self, db: Session, group_id: int, user_id: int) -> GroupMembership:
        membership = self.find_membership(db, group_id, user_id)
        if membership is None:
            raise ForbiddenError("Not a member of this group", "NOT_A_MEMBER")
        if membership.status != MembershipStatus.ACTIVE or membership.role != GroupRole.OWNER:
            logger.info(f"User {user_id} denied owner-only action on group {group_id}")
            raise ForbiddenError("Only the group owner can do this", "OWNER_ONLY")
        return membership

    def require_at_least(self, db: Session, group_id: int, user_id: int,
                         min_role: GroupRole) -> GroupMembership:
        membership = self.require_active_member(db, group_id, user_id)
        if role_rank(membership.role) < role_rank(min_role):
            code = f"{GroupRole(min_role).value}_OR_HIGHER_ONLY"
            logger.info(f"User {user_id} with role {membership.role.value} denied {code} on group {group_id}")
            raise ForbiddenError(f"Requires {GroupRole(min_role).value} role or higher", code)
        return membership


group_access = GroupAccessControl()
