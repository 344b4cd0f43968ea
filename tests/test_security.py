"""Tests for hashing primitives, the public route whitelist and credential dispatch."""

import hashlib

import pytest

from testhub.auth import JwtCredential, PatCredential, TokenSource, classify_credential
from testhub.security import SecurityManager, SecurityWhitelist, public_routes


class TestSecurityManager:
    """Tests for password and digest helpers"""

    def test_hash_and_verify(self):
        hashed = SecurityManager.hash_password("Str0ng!Secret#42", rounds=4)
        assert hashed.startswith("$2")
        assert SecurityManager.verify_password("Str0ng!Secret#42", hashed)
        assert not SecurityManager.verify_password("wrong", hashed)

    @pytest.mark.parametrize("password,hashed", [(None, None), ("", "x"), ("pw", None)])
    def test_missing_inputs_never_match(self, password, hashed):
        assert SecurityManager.verify_password(password, hashed) is False

    def test_malformed_hash(self):
        assert SecurityManager.verify_password("password", "not-a-bcrypt-hash") is False

    def test_sha256_hex(self):
        assert SecurityManager.sha256_hex("abc") == hashlib.sha256(b"abc").hexdigest()
        assert len(SecurityManager.sha256_hex("")) == 64


class TestWhitelist:
    """Tests for the public route whitelist"""

    @pytest.mark.parametrize("path", [
        "/api/health",
        "/api/auth/login",
        "/api/auth/register",
        "/api/auth/verify",
        "/api/auth/password/reset",
        "/api/groups/invites/accept",
        "/docs",
        "/docs/oauth2-redirect",
        "/openapi.json",
    ])
    def test_public(self, path):
        assert public_routes.is_public("GET", path)

    @pytest.mark.parametrize("path", [
        "/api/auth/me",
        "/api/auth/tokens",
        "/api/groups/my",
        "/api/groups/1",
        "/docsx",
        "/api/auth/login/extra",
    ])
    def test_protected(self, path):
        assert not public_routes.is_public("GET", path)

    def test_options_always_public(self):
        assert public_routes.is_public("OPTIONS", "/api/groups/1")

    def test_single_segment_wildcard(self):
        whitelist = SecurityWhitelist(["/api/public/*"])
        assert whitelist.is_public("GET", "/api/public/item")
        assert not whitelist.is_public("GET", "/api/public/item/deeper")


class TestClassifyCredential:
    """Tests for picking the scheme exactly once"""

    def test_header_pat(self):
        credential = classify_credential("pat_abc.def", TokenSource.HEADER)
        assert isinstance(credential, PatCredential)

    def test_header_jwt(self):
        credential = classify_credential("eyJhbGciOiJIUzI1NiJ9.e30.sig", TokenSource.HEADER)
        assert isinstance(credential, JwtCredential)

    def test_cookie_is_always_jwt(self):
        credential = classify_credential("pat_abc.def", TokenSource.COOKIE)
        assert credential == JwtCredential(token="pat_abc.def", source=TokenSource.COOKIE)
