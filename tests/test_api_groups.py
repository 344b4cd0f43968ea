"""HTTP tests for group management and invitations."""

import pytest

from testhub.models import GroupRole


@pytest.fixture
def owner_headers(make_user, auth_headers):
    make_user("owner@example.com", full_name="Olivia Owner")
    return auth_headers("owner@example.com")


@pytest.fixture
def team_id(client, owner_headers):
    response = client.post("/api/groups", json={"name": "QA Team"}, headers=owner_headers)
    assert response.status_code == 201
    return response.json()["id"]


def _membership_id(client, headers, group_id, email):
    members = client.get(f"/api/groups/{group_id}", headers=headers).json()["members"]
    return next(m["membership_id"] for m in members if m["email"] == email)


class TestGroups:
    """Tests for group lifecycle endpoints"""

    def test_my_groups(self, client, owner_headers, team_id):
        groups = client.get("/api/groups/my", headers=owner_headers).json()
        assert [g["personal"] for g in groups] == [True, False]
        assert groups[1]["id"] == team_id
        assert groups[1]["role"] == "OWNER"

    def test_requires_authentication(self, client, team_id):
        assert client.get(f"/api/groups/{team_id}").status_code == 401

    def test_short_name(self, client, owner_headers):
        response = client.post("/api/groups", json={"name": "ab"}, headers=owner_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "NAME_TOO_SHORT"

    def test_rename_and_delete(self, client, owner_headers, team_id):
        response = client.patch(f"/api/groups/{team_id}", json={"name": "Release Team"}, headers=owner_headers)
        assert response.json()["name"] == "Release Team"

        assert client.delete(f"/api/groups/{team_id}", headers=owner_headers).status_code == 204
        assert client.get(f"/api/groups/{team_id}", headers=owner_headers).status_code == 404

    def test_non_member_forbidden(self, client, make_user, auth_headers, team_id):
        make_user("bob@example.com", full_name="Bob Builder")
        response = client.get(f"/api/groups/{team_id}", headers=auth_headers("bob@example.com"))
        assert response.status_code == 403
        assert response.json()["error"] == "NOT_A_MEMBER"

    def test_personal_group_cannot_be_deleted(self, client, owner_headers):
        personal = client.get("/api/groups/my", headers=owner_headers).json()[0]
        response = client.delete(f"/api/groups/{personal['id']}", headers=owner_headers)
        assert response.status_code == 400


class TestInvitationFlow:
    """Tests for invite, accept and member administration"""

    def test_invite_accept_and_manage(self, client, owner_headers, team_id, make_user, auth_headers, mailer):
        make_user("bob@example.com", full_name="Bob Builder")
        bob_headers = auth_headers("bob@example.com")

        invited = client.post(f"/api/groups/{team_id}/members", json={"email": "bob@example.com"}, headers=owner_headers)
        assert invited.status_code == 201
        assert invited.json()["invited"] is True

        pending = client.get(f"/api/groups/{team_id}/invites/pending", headers=owner_headers).json()
        assert [p["email"] for p in pending] == ["bob@example.com"]

        token = mailer.last("invite", "bob@example.com").token
        accepted = client.post("/api/groups/invites/accept", json={"token": token}, headers=bob_headers)
        assert accepted.status_code == 200
        assert accepted.json()["group_name"] == "QA Team"
        assert client.get(f"/api/groups/{team_id}", headers=bob_headers).json()["my_role"] == "MEMBER"

        membership_id = _membership_id(client, owner_headers, team_id, "bob@example.com")
        promoted = client.patch(
            f"/api/groups/{team_id}/members/{membership_id}", json={"role": "maintainer"}, headers=owner_headers,
        )
        assert promoted.json()["role"] == GroupRole.MAINTAINER.value

        renamed = client.patch(f"/api/groups/{team_id}", json={"name": "Bob's Team"}, headers=bob_headers)
        assert renamed.status_code == 200
        # maintainers still cannot delete
        assert client.delete(f"/api/groups/{team_id}", headers=bob_headers).json()["error"] == "OWNER_ONLY"

        assert client.delete(
            f"/api/groups/{team_id}/members/{membership_id}", headers=owner_headers,
        ).status_code == 204
        assert client.get(f"/api/groups/{team_id}", headers=bob_headers).status_code == 403

    def test_accept_without_login_via_query(self, client, owner_headers, team_id, mailer):
        client.post(f"/api/groups/{team_id}/members", json={"email": "guest@example.com"}, headers=owner_headers)
        token = mailer.last("invite", "guest@example.com").token

        response = client.post("/api/groups/invites/accept", params={"token": token})
        assert response.status_code == 200
        assert response.json()["needs_password"] is True

    def test_accept_as_wrong_account(self, client, owner_headers, team_id, mailer):
        client.post(f"/api/groups/{team_id}/members", json={"email": "guest@example.com"}, headers=owner_headers)
        token = mailer.last("invite", "guest@example.com").token

        response = client.post("/api/groups/invites/accept", json={"token": token}, headers=owner_headers)
        assert response.status_code == 403
        assert response.json()["error"] == "EMAIL_MISMATCH"

    def test_accept_garbage_token(self, client):
        response = client.post("/api/groups/invites/accept", json={"token": "garbage"})
        assert response.status_code == 401

    def test_cancel_invitation(self, client, owner_headers, team_id, mailer):
        invited = client.post(
            f"/api/groups/{team_id}/members", json={"email": "guest@example.com"}, headers=owner_headers,
        ).json()
        token = mailer.last("invite", "guest@example.com").token

        response = client.delete(f"/api/groups/{team_id}/invites/{invited['membership_id']}", headers=owner_headers)
        assert response.status_code == 204
        assert client.get(f"/api/groups/{team_id}/invites/pending", headers=owner_headers).json() == []
        assert client.post("/api/groups/invites/accept", params={"token": token}).status_code == 401

    def test_invite_existing_member_is_noop(self, client, owner_headers, team_id):
        response = client.post(
            f"/api/groups/{team_id}/members", json={"email": "owner@example.com"}, headers=owner_headers,
        )
        assert response.json() == {"invited": False, "email": "owner@example.com", "membership_id": None, "expires_at": None}

    def test_leave(self, client, owner_headers, team_id, make_user, auth_headers, mailer):
        make_user("bob@example.com", full_name="Bob Builder")
        bob_headers = auth_headers("bob@example.com")
        client.post(f"/api/groups/{team_id}/members", json={"email": "bob@example.com"}, headers=owner_headers)
        client.post("/api/groups/invites/accept", json={"token": mailer.last("invite").token}, headers=bob_headers)

        assert client.post(f"/api/groups/{team_id}/leave", headers=bob_headers).status_code == 204
        owner_leave = client.post(f"/api/groups/{team_id}/leave", headers=owner_headers)
        assert owner_leave.json()["error"] == "OWNER_CANNOT_LEAVE"
