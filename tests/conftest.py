import os

# Configure the environment before the application reads its settings
os.environ.setdefault("ENV", "development")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_GLOBAL", "10000/minute")
os.environ.setdefault("MAINTENANCE_INTERVAL_SECONDS", "0")
os.environ.setdefault("FRONTEND_URL", "http://testhub.local")

from dataclasses import dataclass  # noqa: E402
from typing import List, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from testhub.database import db_manager  # noqa: E402
from testhub.main import create_app  # noqa: E402
from testhub.models import (  # noqa: E402
    User, UserRole, UserRoleAssignment, GroupMembership, GroupRole, MembershipStatus,
)
from testhub.security import SecurityManager  # noqa: E402
from testhub.services.group_service import group_service  # noqa: E402
from testhub.services.mail_service import MailService  # noqa: E402

DEFAULT_PASSWORD = "Str0ng!Secret#42"


@dataclass
class SentMail:
    kind: str
    to: str
    token: str


class RecordingMailService(MailService):
    """Keeps outgoing mails in memory instead of talking to SMTP"""

    def __init__(self):
        super().__init__({'host': ''}, 'http://testhub.local')
        self.outbox: List[SentMail] = []

    def send_email_verification(self, to, name, raw_token):
        self.outbox.append(SentMail('verify', to, raw_token))

    def send_password_reset(self, to, name, raw_token):
        self.outbox.append(SentMail('reset', to, raw_token))

    def send_email_change(self, to, name, raw_token):
        self.outbox.append(SentMail('email_change', to, raw_token))

    def send_group_invite(self, to, group_name, inviter_name, raw_token):
        self.outbox.append(SentMail('invite', to, raw_token))

    def last(self, kind: str, to: Optional[str] = None) -> SentMail:
        for mail in reversed(self.outbox):
            if mail.kind == kind and (to is None or mail.to == to):
                return mail
        raise AssertionError(f"No '{kind}' mail sent to {to or 'anyone'}")


@pytest.fixture
def database(tmp_path):
    """Fresh SQLite file database per test"""
    db_manager.initialize(f"sqlite:///{tmp_path / 'testhub.db'}")
    yield db_manager
    db_manager.close()


@pytest.fixture
def db(database):
    session = database.session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_user(db):
    """Create and commit a user with a personal group"""
    def _make(email="alice@example.com", password=DEFAULT_PASSWORD, full_name="Alice Tester", enabled=True,
              admin=False):
        user = User(
            email=email,
            password_hash=SecurityManager.hash_password(password),
            full_name=full_name,
            enabled=enabled,
        )
        if admin:
            user.role_assignments.append(UserRoleAssignment(role=UserRole.ROLE_ADMIN))
        db.add(user)
        db.flush()
        group_service.ensure_personal_group(db, user)
        db.commit()
        return user
    return _make


@pytest.fixture
def add_member(db):
    """Attach a user to a group with the given role and status"""
    def _add(group, user, role=GroupRole.MEMBER, status=MembershipStatus.ACTIVE):
        membership = GroupMembership(group_id=group.id, user_id=user.id, role=role, status=status)
        db.add(membership)
        db.commit()
        return membership
    return _add


@pytest.fixture
def mailer():
    return RecordingMailService()


@pytest.fixture
def app(database, mailer):
    application = create_app()
    application.state.mail_service = mailer
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(app):
    """Bearer headers carrying a freshly issued JWT for email"""
    def _headers(email):
        token = app.state.jwt_service.generate_token(email)
        return {"Authorization": f"Bearer {token}"}
    return _headers
