"""
Periodic clean-up of expired tokens and invitations
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import GroupInvitation, GroupMembership, InvitationStatus, MembershipStatus
from ..utils import utcnow
from .email_token_service import EmailTokenService, email_token_service

logger = logging.getLogger(__name__)


class MaintenanceService:
    def __init__(self, tokens: EmailTokenService = email_token_service):
        self.tokens = tokens

    def expire_invitations(self, db: Session, now: Optional[datetime] = None) -> int:
        """Mark overdue PENDING invitations EXPIRED and drop their pending memberships"""
        cutoff = now or utcnow()
        overdue = db.execute(
            select(GroupInvitation).where(
                GroupInvitation.status == InvitationStatus.PENDING,
                GroupInvitation.expires_at <= cutoff,
            )
        ).scalars().all()

        for invitation in overdue:
            invitation.status = InvitationStatus.EXPIRED
            if invitation.invitee_user_id is None:
                continue
            membership = db.execute(
                select(GroupMembership).where(
                    GroupMembership.group_id == invitation.group_id,
                    GroupMembership.user_id == invitation.invitee_user_id,
                    GroupMembership.status == MembershipStatus.PENDING,
                )
            ).scalars().first()
            if membership is not None:
                membership.status = MembershipStatus.REMOVED
        db.flush()

        if overdue:
            logger.info(f"Expired {len(overdue)} pending invitations")
        return len(overdue)

    def run_once(self, db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        return {
            'invitations_expired': self.expire_invitations(db, now),
            'tokens_purged': self.tokens.purge_expired(db, now),
        }


maintenance_service = MaintenanceService()
