"""
Platform administration of user accounts: listing, enable and disable,
deletion and role assignment
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from ..errors import ForbiddenError, InvalidInputError, NotFoundError
from ..models import User, UserRole, UserRoleAssignment, Group, GroupMembership, MembershipStatus
from .group_service import GroupService, group_service

logger = logging.getLogger(__name__)


def parse_roles(names: Optional[Iterable[str]]) -> List[UserRole]:
    """Role names to enum members; ROLE_USER must always be present"""
    roles = []
    for name in names or []:
        try:
            role = UserRole((name or "").strip())
        except ValueError:
            raise InvalidInputError(f"Invalid role name: {name}", "INVALID_ROLE")
        if role not in roles:
            roles.append(role)
    if UserRole.ROLE_USER not in roles:
        raise InvalidInputError("ROLE_USER is required", "ROLE_USER_REQUIRED")
    return roles


class AdminUserService:
    """Account operations reserved to ROLE_ADMIN holders"""

    def __init__(self, groups: Optional[GroupService] = None):
        self.groups = groups or group_service

    @staticmethod
    def require_admin(user: User) -> None:
        if user is None or not user.is_admin:
            raise ForbiddenError("Admin access required", "ADMIN_ONLY")

    @staticmethod
    def _require_user(db: Session, user_id: int) -> User:
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return user

    @staticmethod
    def _require_other_non_admin(admin: User, target: User, own_message: str, admin_message: str) -> None:
        if target.id == admin.id:
            raise InvalidInputError(own_message, "CANNOT_MODIFY_SELF")
        if target.is_admin:
            raise InvalidInputError(admin_message, "CANNOT_MODIFY_ADMIN")

    def list_users(self, db: Session, admin: User) -> List[Dict[str, Any]]:
        self.require_admin(admin)
        active_counts = dict(db.execute(
            select(GroupMembership.user_id, func.count(GroupMembership.id))
            .where(GroupMembership.status == MembershipStatus.ACTIVE)
            .group_by(GroupMembership.user_id)
        ).all())

        users = db.execute(select(User).order_by(User.created_at, User.id)).scalars().all()
        return [
            {
                'id': user.id,
                'email': user.email,
                'full_name': user.full_name,
                'enabled': user.enabled,
                'role': user.primary_role,
                'roles': user.roles,
                'group_count': active_counts.get(user.id, 0),
                'created_at': user.created_at,
            }
            for user in users
        ]

    def enable_user(self, db: Session, admin: User, user_id: int) -> User:
        self.require_admin(admin)
        user = self._require_user(db, user_id)
        if user.enabled:
            raise InvalidInputError("User is already enabled", "ALREADY_ENABLED")
        user.enabled = True
        db.flush()
        logger.info(f"Admin {admin.id} enabled user {user.id}")
        return user

    def disable_user(self, db: Session, admin: User, user_id: int) -> User:
        self.require_admin(admin)
        user = self._require_user(db, user_id)
        self._require_other_non_admin(admin, user, "Cannot disable your own account", "Cannot disable admin users")
        if not user.enabled:
            raise InvalidInputError("User is already disabled", "ALREADY_DISABLED")
        user.enabled = False
        db.flush()
        logger.info(f"Admin {admin.id} disabled user {user.id}")
        return user

    def delete_user(self, db: Session, admin: User, user_id: int) -> None:
        """Owned groups go first, then the account with its tokens and memberships"""
        self.require_admin(admin)
        user = self._require_user(db, user_id)
        self._require_other_non_admin(admin, user, "Cannot delete your own account", "Cannot delete admin users")

        owned = db.execute(select(Group).where(Group.owner_id == user.id)).scalars().all()
        for group in owned:
            self.groups.purge_group(db, group)

        # Memberships of purged groups are gone from the database
        db.expire(user, ['memberships'])
        db.delete(user)
        db.flush()
        logger.info(f"Admin {admin.id} deleted user {user_id} and {len(owned)} owned group(s)")

    def update_roles(self, db: Session, admin: User, user_id: int, role_names: Optional[Iterable[str]]) -> User:
        self.require_admin(admin)
        user = self._require_user(db, user_id)
        self._require_other_non_admin(admin, user, "Cannot modify your own roles", "Cannot modify admin user roles")
        wanted = parse_roles(role_names)

        for assignment in list(user.role_assignments):
            if assignment.role not in wanted:
                user.role_assignments.remove(assignment)
        held = {a.role for a in user.role_assignments}
        for role in wanted:
            if role not in held:
                user.role_assignments.append(UserRoleAssignment(role=role))

        db.flush()
        logger.info(f"Admin {admin.id} set roles of user {user.id} to {user.roles}")
        return user


admin_user_service = AdminUserService()
