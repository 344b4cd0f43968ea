"""
TestHub - Groups API
Group management, invitations and member administration
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_optional_email
from ..database import get_db
from ..dependencies import get_rate_limiter, get_mail_service
from ..models import User
from ..schemas import (
    GroupSummary, GroupDetails, GroupCreateRequest, GroupRenameRequest, GroupResponse,
    InviteRequest, InviteResponse, PendingInvitation, AcceptInviteRequest, AcceptInviteResponse,
    RoleChangeRequest, MembershipResponse,
)
from ..services import rate_limit_service as limits
from ..services.group_invitation_service import group_invitation_service
from ..services.group_service import group_service
from ..services.mail_service import MailService
from ..services.rate_limit_service import RateLimitService
from ..utils import norm_email, safe_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("/my", response_model=List[GroupSummary])
def my_groups(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_service.my_groups(db, current_user)


@router.post("", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return group_service.create_group(db, current_user, payload.name)


# Declared before /{group_id} routes so "invites" is never parsed as an id
@router.post("/invites/accept", response_model=AcceptInviteResponse)
def accept_invite(
    payload: Optional[AcceptInviteRequest] = None,
    token: Optional[str] = Query(None),
    current_email: Optional[str] = Depends(get_optional_email),
    db: Session = Depends(get_db),
):
    """Public: the token itself authorizes the invitee"""
    raw_token = token or (payload.token if payload else None)
    return group_invitation_service.accept_invitation(db, raw_token, current_email)


@router.get("/{group_id}", response_model=GroupDetails)
def group_details(group_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_service.get_group_details(db, current_user, group_id)


@router.patch("/{group_id}", response_model=GroupResponse)
def rename_group(
    group_id: int,
    payload: GroupRenameRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return group_service.rename_group(db, current_user, group_id, payload.name)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_group(group_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    group_service.delete_group(db, current_user, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{group_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
def leave_group(group_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    group_service.leave_group(db, current_user, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{group_id}/members", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
def invite_member(
    group_id: int,
    payload: InviteRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    limiter: RateLimitService = Depends(get_rate_limiter),
    mail: MailService = Depends(get_mail_service),
):
    limiter.check(limits.INVITE, str(current_user.id), "Too many invitations")

    result = group_invitation_service.invite_user(db, current_user, group_id, payload.email)
    if result is None:
        return InviteResponse(invited=False, email=norm_email(payload.email))

    background_tasks.add_task(
        mail.send_group_invite,
        result.invitee.email,
        result.group.name,
        safe_name(current_user.full_name, current_user.email),
        result.raw_token,
    )
    return InviteResponse(
        invited=True,
        email=result.invitee.email,
        membership_id=result.membership.id,
        expires_at=result.invitation.expires_at,
    )


@router.get("/{group_id}/invites/pending", response_model=List[PendingInvitation])
def pending_invites(group_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return group_invitation_service.list_pending_invitations(db, current_user, group_id)


@router.delete("/{group_id}/invites/{membership_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_invite(
    group_id: int,
    membership_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    group_invitation_service.cancel_invitation(db, current_user, group_id, membership_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{group_id}/members/{membership_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    group_id: int,
    membership_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    group_service.remove_member(db, current_user, group_id, membership_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{group_id}/members/{membership_id}", response_model=MembershipResponse)
def change_member_role(
    group_id: int,
    membership_id: int,
    payload: RoleChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    membership = group_service.change_member_role(db, current_user, group_id, membership_id, payload.role)
    return MembershipResponse(
        id=membership.id,
        group_id=membership.group_id,
        user_id=membership.user_id,
        role=membership.role.value,
        status=membership.status.value,
    )
