"""
TestHub Pydantic Schemas
Request validation and response serialization models
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# AUTH REQUESTS
# ============================================================================

class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=200)
    full_name: Optional[str] = Field(None, max_length=200)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=200)


class PasswordResetRequest(BaseModel):
    new_password: str = Field(..., max_length=200)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., max_length=200)
    new_password: str = Field(..., max_length=200)


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, max_length=200)
    new_email: Optional[str] = Field(None, max_length=320)


class TokenCreateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    scopes: Optional[str] = Field(None, max_length=128)


# ============================================================================
# AUTH RESPONSES
# ============================================================================

class MessageResponse(BaseModel):
    message: str


class LoginResponse(BaseModel):
    token: str
    token_type: str = "Bearer"
    expires_in: int


class GroupSummary(BaseModel):
    id: int
    name: str
    personal: bool
    owner_id: int
    role: str
    members_count: int
    created_at: datetime


class UserProfileResponse(BaseModel):
    id: int
    email: str
    full_name: str
    enabled: bool
    roles: List[str]
    created_at: Optional[str] = None
    groups: List[GroupSummary] = []


class ProfileUpdateResponse(BaseModel):
    message: str
    email_change_pending: bool = False


class ApiTokenResponse(BaseModel):
    """Token metadata; `token` is only present right after creation"""
    id: str
    name: str
    created_at: Optional[str] = None
    last_used_at: Optional[str] = None
    revoked: bool
    token: Optional[str] = None


# ============================================================================
# GROUPS
# ============================================================================

class GroupCreateRequest(BaseModel):
    name: Optional[str] = None


class GroupRenameRequest(BaseModel):
    name: Optional[str] = None


class InviteRequest(BaseModel):
    email: Optional[str] = Field(None, max_length=320)


class AcceptInviteRequest(BaseModel):
    token: Optional[str] = None


class RoleChangeRequest(BaseModel):
    role: str

    @field_validator('role')
    @classmethod
    def normalize_role(cls, v):
        return v.strip().upper()


class GroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    personal: bool
    owner_id: int
    created_at: datetime
    updated_at: datetime


class GroupMember(BaseModel):
    membership_id: int
    user_id: int
    email: str
    full_name: str
    role: str
    status: str
    invited_by: Optional[str] = None
    created_at: datetime


class GroupDetails(BaseModel):
    id: int
    name: str
    personal: bool
    owner_id: int
    owner_email: str
    my_role: str
    created_at: datetime
    updated_at: datetime
    members: List[GroupMember]


class MembershipResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    user_id: int
    role: str
    status: str


class InviteResponse(BaseModel):
    invited: bool
    email: str
    membership_id: Optional[int] = None
    expires_at: Optional[datetime] = None


class PendingInvitation(BaseModel):
    membership_id: int
    user_id: int
    email: str
    invited_by: Optional[str] = None
    created_at: datetime
    last_sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class AcceptInviteResponse(BaseModel):
    needs_password: bool
    email: str
    group_name: str
    group_id: int


class AdminUserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    enabled: bool
    role: str
    roles: List[str]
    group_count: int
    created_at: datetime


class UpdateRolesRequest(BaseModel):
    roles: List[str]


class HealthResponse(BaseModel):
    status: str
    database: str
    version: str
    timestamp: datetime
