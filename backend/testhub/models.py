"""
TestHub ORM Models
Users, groups, memberships, invitations and credential records
"""

import uuid
from enum import Enum
from typing import Dict, Any, List

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Uuid,
    Enum as SQLEnum, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship, validates

from .database import Base
from .utils import utcnow, norm_email


class UserRole(str, Enum):
    ROLE_USER = "ROLE_USER"
    ROLE_ADMIN = "ROLE_ADMIN"


class GroupType(str, Enum):
    PERSONAL = "PERSONAL"
    SHARED = "SHARED"


class GroupRole(str, Enum):
    OWNER = "OWNER"
    MAINTAINER = "MAINTAINER"
    MEMBER = "MEMBER"

    @property
    def rank(self) -> int:
        return ROLE_RANKS[self]


ROLE_RANKS = {
    GroupRole.OWNER: 3,
    GroupRole.MAINTAINER: 2,
    GroupRole.MEMBER: 1,
}


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    REMOVED = "REMOVED"


class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class TokenType(str, Enum):
    EMAIL_VERIFY = "EMAIL_VERIFY"
    PASSWORD_RESET = "PASSWORD_RESET"
    EMAIL_CHANGE = "EMAIL_CHANGE"
    GROUP_INVITE = "GROUP_INVITE"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), unique=True, index=True, nullable=False)
    password_hash = Column(String(100), nullable=False)
    full_name = Column(String(200), nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    memberships = relationship(
        "GroupMembership",
        back_populates="user",
        foreign_keys="GroupMembership.user_id",
        cascade="all, delete-orphan",
    )
    api_tokens = relationship("ApiToken", back_populates="user", cascade="all, delete-orphan")
    verification_tokens = relationship(
        "VerificationToken", back_populates="user", cascade="all, delete-orphan"
    )
    role_assignments = relationship(
        "UserRoleAssignment", back_populates="user", cascade="all, delete-orphan", lazy="selectin"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.role_assignments:
            self.role_assignments.append(UserRoleAssignment(role=UserRole.ROLE_USER))

    @validates('email')
    def validate_email(self, key, email):
        return norm_email(email)

    @property
    def roles(self) -> List[str]:
        return sorted(a.role.value for a in self.role_assignments)

    @property
    def is_admin(self) -> bool:
        return any(a.role == UserRole.ROLE_ADMIN for a in self.role_assignments)

    @property
    def primary_role(self) -> str:
        return UserRole.ROLE_ADMIN.value if self.is_admin else UserRole.ROLE_USER.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'full_name': self.full_name,
            'enabled': self.enabled,
            'roles': self.roles,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class UserRoleAssignment(Base):
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False)

    user = relationship("User", back_populates="role_assignments")

    __table_args__ = (
        UniqueConstraint('user_id', 'role', name='uq_user_roles_user_role'),
    )


class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    group_type = Column(SQLEnum(GroupType), default=GroupType.SHARED, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", foreign_keys=[owner_id])
    memberships = relationship("GroupMembership", back_populates="group", cascade="all, delete-orphan")
    invitations = relationship("GroupInvitation", back_populates="group", cascade="all, delete-orphan")

    __table_args__ = (
        # One personal group per user
        Index(
            'uq_groups_personal_owner', 'owner_id',
            unique=True,
            postgresql_where=text("group_type = 'PERSONAL'"),
            sqlite_where=text("group_type = 'PERSONAL'"),
        ),
    )

    @property
    def personal(self) -> bool:
        return self.group_type == GroupType.PERSONAL


class GroupMembership(Base):
    __tablename__ = "group_memberships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(SQLEnum(GroupRole), default=GroupRole.MEMBER, nullable=False)
    status = Column(SQLEnum(MembershipStatus), default=MembershipStatus.PENDING, nullable=False)
    invited_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    group = relationship("Group", back_populates="memberships")
    user = relationship("User", back_populates="memberships", foreign_keys=[user_id])
    invited_by = relationship("User", foreign_keys=[invited_by_id])

    __table_args__ = (
        UniqueConstraint('group_id', 'user_id', name='uq_group_membership_group_user'),
        Index('idx_membership_user_status', 'user_id', 'status'),
        Index('idx_membership_group_status', 'group_id', 'status'),
    )


class GroupInvitation(Base):
    __tablename__ = "group_invitations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    inviter_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    invitee_email = Column(String(320), nullable=False)
    invitee_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    token_hash = Column(String(64), nullable=False)
    status = Column(SQLEnum(InvitationStatus), default=InvitationStatus.PENDING, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_sent_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    group = relationship("Group", back_populates="invitations")
    inviter = relationship("User", foreign_keys=[inviter_id])
    invitee_user = relationship("User", foreign_keys=[invitee_user_id])

    __table_args__ = (
        # Only one pending invitation per group and email
        Index(
            'uq_invitation_pending_group_email', 'group_id', 'invitee_email',
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index('idx_invitation_token_hash', 'token_hash'),
        Index('idx_invitation_status_expires', 'status', 'expires_at'),
    )

    @validates('invitee_email')
    def validate_invitee_email(self, key, email):
        return norm_email(email)


class VerificationToken(Base):
    __tablename__ = "verification_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(SQLEnum(TokenType), nullable=False)
    token_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", back_populates="verification_tokens")

    __table_args__ = (
        Index('idx_verification_token_hash_type', 'token_hash', 'type'),
        Index('idx_verification_token_user_type', 'user_id', 'type'),
        Index('idx_verification_token_expires_at', 'expires_at'),
    )


class ApiToken(Base):
    __tablename__ = "api_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(80), nullable=False)
    token_prefix = Column(String(32), unique=True, nullable=False)
    secret_hash = Column(String(128), nullable=False)
    scopes = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="api_tokens")

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def to_dict(self) -> Dict[str, Any]:
        """Token metadata, never the secret or its hash"""
        return {
            'id': str(self.id),
            'name': self.name,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
            'revoked': self.revoked,
        }


class PasswordChangeLog(Base):
    __tablename__ = "password_change_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_password_change_user_created', 'user_id', 'created_at'),
    )


__all__ = [
    'UserRole',
    'GroupType',
    'GroupRole',
    'ROLE_RANKS',
    'MembershipStatus',
    'InvitationStatus',
    'TokenType',
    'User',
    'UserRoleAssignment',
    'Group',
    'GroupMembership',
    'GroupInvitation',
    'VerificationToken',
    'ApiToken',
    'PasswordChangeLog',
]
