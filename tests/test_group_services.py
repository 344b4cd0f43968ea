"""Tests for group management, invitations and maintenance."""

from datetime import timedelta

import pytest

from testhub.errors import ForbiddenError, InvalidInputError, NotFoundError, TokenInvalidOrExpiredError
from testhub.models import (
    Group, GroupInvitation, GroupRole, InvitationStatus, MembershipStatus, TokenType, User, VerificationToken,
)
from testhub.services.group_access import GroupAccessControl
from testhub.services.group_invitation_service import (
    GroupInvitationService, decode_invite_group_id, encode_invite_token,
)
from testhub.services.group_service import GroupService, validate_group_name
from testhub.services.maintenance_service import MaintenanceService
from testhub.utils import utcnow


@pytest.fixture
def invitations():
    return GroupInvitationService(invite_ttl=timedelta(hours=72), max_members=3)


@pytest.fixture
def groups(invitations):
    return GroupService(invitations=invitations)


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com", full_name="Olivia Owner")


@pytest.fixture
def bob(make_user):
    return make_user("bob@example.com", full_name="Bob Builder")


@pytest.fixture
def team(db, groups, owner):
    group = groups.create_group(db, owner, "  QA Team  ")
    db.commit()
    return group


def _personal_group(db, user):
    return db.query(Group).filter_by(owner_id=user.id).order_by(Group.id).first()


class TestGroupNames:
    @pytest.mark.parametrize("name,code", [
        ("", "NAME_REQUIRED"),
        ("   ", "NAME_REQUIRED"),
        ("ab", "NAME_TOO_SHORT"),
        ("x" * 201, "NAME_TOO_LONG"),
    ])
    def test_invalid(self, name, code):
        with pytest.raises(InvalidInputError) as exc_info:
            validate_group_name(name)
        assert exc_info.value.error_code == code

    def test_trimmed(self):
        assert validate_group_name("  abc ") == "abc"


class TestGroupService:
    """Tests for group lifecycle"""

    def test_create_makes_owner_member(self, db, groups, owner, team):
        assert team.name == "QA Team"
        assert not team.personal
        membership = GroupAccessControl().find_membership(db, team.id, owner.id)
        assert membership.role == GroupRole.OWNER
        assert membership.status == MembershipStatus.ACTIVE

    def test_ensure_personal_group_is_idempotent(self, db, groups, owner):
        first = groups.ensure_personal_group(db, owner)
        second = groups.ensure_personal_group(db, owner)
        assert first.id == second.id
        assert first.personal

    def test_my_groups_lists_personal_first(self, db, groups, owner, bob, team, add_member):
        add_member(team, bob)
        listed = groups.my_groups(db, owner)
        assert [g["personal"] for g in listed] == [True, False]
        assert listed[1]["members_count"] == 2
        assert listed[1]["role"] == "OWNER"

    def test_details_require_active_membership(self, db, groups, bob, team):
        with pytest.raises(ForbiddenError):
            groups.get_group_details(db, bob, team.id)

    def test_details(self, db, groups, owner, bob, team, add_member):
        add_member(team, bob, role=GroupRole.MAINTAINER)
        details = groups.get_group_details(db, bob, team.id)
        assert details["my_role"] == "MAINTAINER"
        assert details["owner_email"] == "owner@example.com"
        assert {m["email"] for m in details["members"]} == {"owner@example.com", "bob@example.com"}

    def test_maintainer_can_rename(self, db, groups, bob, team, add_member):
        add_member(team, bob, role=GroupRole.MAINTAINER)
        assert groups.rename_group(db, bob, team.id, "Renamed Team").name == "Renamed Team"

    def test_member_cannot_rename(self, db, groups, bob, team, add_member):
        add_member(team, bob)
        with pytest.raises(ForbiddenError) as exc_info:
            groups.rename_group(db, bob, team.id, "Renamed Team")
        assert exc_info.value.error_code == "MAINTAINER_OR_HIGHER_ONLY"

    def test_delete(self, db, groups, owner, team):
        groups.delete_group(db, owner, team.id)
        db.commit()
        assert db.get(Group, team.id) is None

    def test_delete_drops_pending_invite_tokens(self, db, groups, invitations, owner, team):
        invitations.invite_user(db, owner, team.id, "guest@example.com")
        groups.delete_group(db, owner, team.id)
        db.commit()
        assert db.query(VerificationToken).filter_by(type=TokenType.GROUP_INVITE).count() == 0

    def test_only_owner_deletes(self, db, groups, bob, team, add_member):
        add_member(team, bob, role=GroupRole.MAINTAINER)
        with pytest.raises(ForbiddenError):
            groups.delete_group(db, bob, team.id)

    def test_personal_group_cannot_be_deleted(self, db, groups, owner):
        with pytest.raises(InvalidInputError) as exc_info:
            groups.delete_group(db, owner, _personal_group(db, owner).id)
        assert exc_info.value.error_code == "CANNOT_DELETE_PERSONAL"

    def test_delete_missing_group(self, db, groups, owner):
        with pytest.raises(NotFoundError):
            groups.delete_group(db, owner, 424242)

    def test_leave(self, db, groups, bob, team, add_member):
        membership = add_member(team, bob)
        groups.leave_group(db, bob, team.id)
        assert membership.status == MembershipStatus.REMOVED
        with pytest.raises(ForbiddenError):
            groups.leave_group(db, bob, team.id)

    def test_owner_cannot_leave(self, db, groups, owner, team):
        with pytest.raises(InvalidInputError) as exc_info:
            groups.leave_group(db, owner, team.id)
        assert exc_info.value.error_code == "OWNER_CANNOT_LEAVE"


class TestMemberAdministration:
    """Tests for removing members and changing roles"""

    def test_remove_member(self, db, groups, owner, bob, team, add_member):
        membership = add_member(team, bob)
        groups.remove_member(db, owner, team.id, membership.id)
        assert membership.status == MembershipStatus.REMOVED
        # second removal is a no-op
        groups.remove_member(db, owner, team.id, membership.id)

    def test_remove_rules(self, db, groups, owner, bob, team, add_member):
        owner_membership = GroupAccessControl().find_membership(db, team.id, owner.id)
        with pytest.raises(InvalidInputError) as exc_info:
            groups.remove_member(db, owner, team.id, owner_membership.id)
        assert exc_info.value.error_code == "CANNOT_REMOVE_OWNER"

        pending = add_member(team, bob, status=MembershipStatus.PENDING)
        with pytest.raises(InvalidInputError) as exc_info:
            groups.remove_member(db, owner, team.id, pending.id)
        assert exc_info.value.error_code == "USE_INVITE_CANCEL_ENDPOINT"

    def test_membership_of_other_group(self, db, groups, owner, bob, team):
        foreign = GroupAccessControl().find_membership(db, _personal_group(db, bob).id, bob.id)
        with pytest.raises(InvalidInputError) as exc_info:
            groups.remove_member(db, owner, team.id, foreign.id)
        assert exc_info.value.error_code == "MEMBERSHIP_GROUP_MISMATCH"

    def test_missing_membership(self, db, groups, owner, team):
        with pytest.raises(NotFoundError):
            groups.remove_member(db, owner, team.id, 99999)

    def test_maintainer_cannot_remove(self, db, groups, bob, make_user, team, add_member):
        add_member(team, bob, role=GroupRole.MAINTAINER)
        carol = add_member(team, make_user("carol@example.com", full_name="Carol"))
        with pytest.raises(ForbiddenError) as exc_info:
            groups.remove_member(db, bob, team.id, carol.id)
        assert exc_info.value.error_code == "OWNER_ONLY"

    def test_change_role(self, db, groups, owner, bob, team, add_member):
        membership = add_member(team, bob)
        assert groups.change_member_role(db, owner, team.id, membership.id, " maintainer ").role == GroupRole.MAINTAINER

    @pytest.mark.parametrize("role,code", [("ADMIN", "INVALID_ROLE"), ("OWNER", "CANNOT_PROMOTE_TO_OWNER")])
    def test_change_role_rejections(self, db, groups, owner, bob, team, add_member, role, code):
        membership = add_member(team, bob)
        with pytest.raises(InvalidInputError) as exc_info:
            groups.change_member_role(db, owner, team.id, membership.id, role)
        assert exc_info.value.error_code == code

    def test_owner_role_is_fixed(self, db, groups, owner, team):
        own = GroupAccessControl().find_membership(db, team.id, owner.id)
        with pytest.raises(InvalidInputError) as exc_info:
            groups.change_member_role(db, owner, team.id, own.id, "MEMBER")
        assert exc_info.value.error_code == "OWNER_ROLE_FIXED"

    def test_inactive_member_role(self, db, groups, owner, bob, team, add_member):
        membership = add_member(team, bob, status=MembershipStatus.PENDING)
        with pytest.raises(InvalidInputError) as exc_info:
            groups.change_member_role(db, owner, team.id, membership.id, "MAINTAINER")
        assert exc_info.value.error_code == "MEMBER_NOT_ACTIVE"


class TestInvitations:
    """Tests for the invitation lifecycle"""

    def test_invite_unknown_email_creates_placeholder(self, db, invitations, owner, team):
        result = invitations.invite_user(db, owner, team.id, " Guest@Example.com ")
        assert result.invitee.email == "guest@example.com"
        assert result.invitee.enabled is False
        assert result.invitee.full_name == "guest"
        assert result.membership.status == MembershipStatus.PENDING
        assert result.invitation.status == InvitationStatus.PENDING
        assert decode_invite_group_id(result.raw_token) == team.id

    def test_accept_enables_placeholder(self, db, invitations, owner, team):
        result = invitations.invite_user(db, owner, team.id, "guest@example.com")
        accepted = invitations.accept_invitation(db, result.raw_token)

        assert accepted == {
            "needs_password": True,
            "email": "guest@example.com",
            "group_name": "QA Team",
            "group_id": team.id,
        }
        assert result.membership.status == MembershipStatus.ACTIVE
        assert result.invitation.status == InvitationStatus.ACCEPTED
        with pytest.raises(TokenInvalidOrExpiredError):
            invitations.accept_invitation(db, result.raw_token)

    def test_accept_existing_user(self, db, invitations, owner, bob, team):
        result = invitations.invite_user(db, owner, team.id, bob.email)
        assert invitations.accept_invitation(db, result.raw_token, bob.email)["needs_password"] is False

    def test_accept_with_other_account(self, db, invitations, owner, bob, team):
        result = invitations.invite_user(db, owner, team.id, "guest@example.com")
        with pytest.raises(ForbiddenError) as exc_info:
            invitations.accept_invitation(db, result.raw_token, bob.email)
        assert exc_info.value.error_code == "EMAIL_MISMATCH"

    def test_reinvite_replaces_token(self, db, invitations, owner, team):
        first = invitations.invite_user(db, owner, team.id, "guest@example.com")
        second = invitations.invite_user(db, owner, team.id, "guest@example.com")

        assert first.invitation.id == second.invitation.id
        with pytest.raises(TokenInvalidOrExpiredError):
            invitations.accept_invitation(db, first.raw_token)
        invitations.accept_invitation(db, second.raw_token)

    def test_invite_active_member_is_noop(self, db, invitations, owner, bob, team, add_member):
        add_member(team, bob)
        assert invitations.invite_user(db, owner, team.id, bob.email) is None

    def test_invite_requires_owner(self, db, invitations, bob, team, add_member):
        add_member(team, bob, role=GroupRole.MAINTAINER)
        with pytest.raises(ForbiddenError):
            invitations.invite_user(db, bob, team.id, "guest@example.com")

    def test_invalid_email(self, db, invitations, owner, team):
        with pytest.raises(InvalidInputError) as exc_info:
            invitations.invite_user(db, owner, team.id, "nope")
        assert exc_info.value.error_code == "INVALID_EMAIL"

    def test_member_limit(self, db, invitations, owner, team, make_user, add_member):
        add_member(team, make_user("m1@example.com", full_name="Member One"))
        add_member(team, make_user("m2@example.com", full_name="Member Two"))
        with pytest.raises(InvalidInputError) as exc_info:
            invitations.invite_user(db, owner, team.id, "guest@example.com")
        assert exc_info.value.error_code == "LIMIT_REACHED"

    def test_cancel(self, db, invitations, owner, team):
        result = invitations.invite_user(db, owner, team.id, "guest@example.com")
        invitations.cancel_invitation(db, owner, team.id, result.membership.id)

        assert result.membership.status == MembershipStatus.REMOVED
        assert result.invitation.status == InvitationStatus.CANCELLED
        assert result.invitation.cancelled_at is not None
        with pytest.raises(TokenInvalidOrExpiredError):
            invitations.accept_invitation(db, result.raw_token)

    def test_cancel_unknown_membership(self, db, invitations, owner, team):
        with pytest.raises(NotFoundError):
            invitations.cancel_invitation(db, owner, team.id, 99999)

    def test_list_pending(self, db, invitations, owner, team):
        invitations.invite_user(db, owner, team.id, "guest@example.com")
        pending = invitations.list_pending_invitations(db, owner, team.id)
        assert [p["email"] for p in pending] == ["guest@example.com"]
        assert pending[0]["invited_by"] == "owner@example.com"
        assert pending[0]["expires_at"] is not None

    @pytest.mark.parametrize("token", [
        "", "   ", "a.b", "a.b.%%%", "a.b." + encode_invite_token("x", 1).split(".")[1] + ".extra",
    ])
    def test_malformed_tokens(self, db, invitations, token):
        with pytest.raises((InvalidInputError, TokenInvalidOrExpiredError)):
            invitations.accept_invitation(db, token)

    def test_tampered_group_id(self, db, invitations, owner, team):
        result = invitations.invite_user(db, owner, team.id, "guest@example.com")
        head = result.raw_token.rsplit(".", 1)[0]
        forged = encode_invite_token(head, team.id + 1)
        with pytest.raises(TokenInvalidOrExpiredError):
            invitations.accept_invitation(db, forged)


class TestMaintenance:
    """Tests for periodic clean-up"""

    def test_expires_overdue_invitations(self, db, invitations, owner, team):
        result = invitations.invite_user(db, owner, team.id, "guest@example.com")
        db.commit()

        report = MaintenanceService().run_once(db, utcnow() + timedelta(days=4))
        db.commit()

        invitation = db.get(GroupInvitation, result.invitation.id)
        db.refresh(result.membership)
        assert report == {"invitations_expired": 1, "tokens_purged": 1}
        assert invitation.status == InvitationStatus.EXPIRED
        assert result.membership.status == MembershipStatus.REMOVED

    def test_leaves_live_invitations(self, db, invitations, owner, team):
        result = invitations.invite_user(db, owner, team.id, "guest@example.com")
        report = MaintenanceService().run_once(db)
        assert report == {"invitations_expired": 0, "tokens_purged": 0}
        assert result.invitation.status == InvitationStatus.PENDING
        assert db.query(User).filter_by(email="guest@example.com").one().enabled is False
