"""
tests/test_strategies.py -- Unit tests for LocalStrategy, OAuthStrategy and
SessionAuthenticator.

Strategies must classify every failure themselves: the orchestrator only ever
sees Authenticated, Rejected or ProviderFailure.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from authlib.integrations.base_client import MismatchingStateError, OAuthError
from sqlalchemy.exc import OperationalError

from auth.csrf import CSRF_SESSION_KEY
from auth.errors import SessionError
from auth.models import LoginRequest, User
from auth.passwords import CredentialService, hash_password
from auth.sessions import ESTABLISHED_KEY, IDENTITY_KEY, SessionAuthenticator, current_identity
from auth.strategies import Authenticated, LocalStrategy, OAuthStrategy, ProviderFailure, Rejected
from conftest import FakeRequest


def _add_user(user_store, email="ada@example.com", password="analytical1", is_active=True, **kwargs) -> User:
    user = User(
        first_name="Ada",
        last_name="Lovelace",
        email=email,
        hashed_password=hash_password(password) if password else None,
        is_active=is_active,
        **kwargs,
    )
    user.id = user_store.create_user(user)
    return user


# ---------------------------------------------------------------------------
# LocalStrategy
# ---------------------------------------------------------------------------


class TestLocalStrategy:
    def _resolve(self, user_store, email, password):
        strategy = LocalStrategy(CredentialService(user_store))
        return asyncio.run(strategy.resolve(FakeRequest(), LoginRequest(email=email, password=password)))

    def test_correct_password_authenticates(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        outcome = self._resolve(user_store, "ada@example.com", "analytical1")
        assert isinstance(outcome, Authenticated)
        assert outcome.identity.email == "ada@example.com"

    def test_wrong_password_rejected(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        assert isinstance(self._resolve(user_store, "ada@example.com", "wrong-pass1"), Rejected)

    def test_unknown_account_rejected_after_timing_check(self, stores) -> None:
        user_store, _ = stores
        credentials = CredentialService(user_store)
        credentials.verify = AsyncMock(return_value=False)
        strategy = LocalStrategy(credentials)

        outcome = asyncio.run(strategy.resolve(FakeRequest(), LoginRequest("nobody@example.com", "analytical1")))

        assert isinstance(outcome, Rejected)
        credentials.verify.assert_awaited_once_with("analytical1", None)

    def test_oauth_only_account_rejected(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store, password=None, oauth_provider="github", oauth_subject="1")
        assert isinstance(self._resolve(user_store, "ada@example.com", "analytical1"), Rejected)

    def test_disabled_account_rejected(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store, is_active=False)
        assert isinstance(self._resolve(user_store, "ada@example.com", "analytical1"), Rejected)

    def test_store_failure_is_provider_failure(self) -> None:
        credentials = MagicMock()
        credentials.find_by_email = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("locked")))
        outcome = asyncio.run(LocalStrategy(credentials).resolve(FakeRequest(), LoginRequest("a@b.co", "x")))
        assert isinstance(outcome, ProviderFailure)
        assert isinstance(outcome.cause, OperationalError)

    def test_missing_credentials_rejected(self, stores) -> None:
        user_store, _ = stores
        outcome = asyncio.run(LocalStrategy(CredentialService(user_store)).resolve(FakeRequest()))
        assert isinstance(outcome, Rejected)


# ---------------------------------------------------------------------------
# OAuthStrategy
# ---------------------------------------------------------------------------


def _google_token(email="ada@example.com", sub="g-123", verified=True) -> dict:
    return {"userinfo": {"email": email, "sub": sub, "email_verified": verified}}


def _registry(token=None, exchange_error=None):
    client = MagicMock()
    if exchange_error is not None:
        client.authorize_access_token = AsyncMock(side_effect=exchange_error)
    else:
        client.authorize_access_token = AsyncMock(return_value=token)
    registry = MagicMock()
    registry.create_client.return_value = client
    return registry


class TestOAuthStrategy:
    def _resolve(self, user_store, registry, name="google"):
        strategy = OAuthStrategy(name, registry, CredentialService(user_store))
        return asyncio.run(strategy.resolve(FakeRequest()))

    def test_first_login_links_account_by_email(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        outcome = self._resolve(user_store, _registry(_google_token(email="ADA@example.com")))

        assert isinstance(outcome, Authenticated)
        linked = user_store.get_by_oauth("google", "g-123")
        assert linked is not None
        assert linked.email == "ada@example.com"

    def test_later_login_matches_on_subject(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store, oauth_provider="google", oauth_subject="g-123")
        # Provider email changed since linking; the subject still matches.
        outcome = self._resolve(user_store, _registry(_google_token(email="ada@new.example.com")))
        assert isinstance(outcome, Authenticated)
        assert outcome.identity.email == "ada@example.com"

    def test_no_matching_account_rejected(self, stores) -> None:
        user_store, _ = stores
        outcome = self._resolve(user_store, _registry(_google_token()))
        assert isinstance(outcome, Rejected)
        assert user_store.count_users() == 0

    def test_unverified_email_rejected(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        assert isinstance(self._resolve(user_store, _registry(_google_token(verified=False))), Rejected)

    def test_different_subject_for_same_provider_rejected(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store, oauth_provider="google", oauth_subject="g-999")
        assert isinstance(self._resolve(user_store, _registry(_google_token())), Rejected)

    def test_state_mismatch_rejected(self, stores) -> None:
        user_store, _ = stores
        outcome = self._resolve(user_store, _registry(exchange_error=MismatchingStateError()))
        assert isinstance(outcome, Rejected)

    def test_consent_denied_rejected(self, stores) -> None:
        user_store, _ = stores
        outcome = self._resolve(user_store, _registry(exchange_error=OAuthError(error="access_denied")))
        assert isinstance(outcome, Rejected)

    def test_provider_error_is_provider_failure(self, stores) -> None:
        user_store, _ = stores
        outcome = self._resolve(user_store, _registry(exchange_error=OAuthError(error="server_error")))
        assert isinstance(outcome, ProviderFailure)

    def test_network_error_is_provider_failure(self, stores) -> None:
        user_store, _ = stores
        outcome = self._resolve(user_store, _registry(exchange_error=httpx.ConnectError("unreachable")))
        assert isinstance(outcome, ProviderFailure)
        assert isinstance(outcome.cause, httpx.ConnectError)

    def test_unconfigured_provider_rejected(self, stores) -> None:
        user_store, _ = stores
        registry = MagicMock()
        registry.create_client.return_value = None
        assert isinstance(self._resolve(user_store, registry), Rejected)

    def test_github_uses_primary_verified_email(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        profile = MagicMock()
        profile.json.return_value = {"id": 42}
        emails = MagicMock()
        emails.json.return_value = [
            {"email": "other@example.com", "primary": False, "verified": True},
            {"email": "ada@example.com", "primary": True, "verified": True},
        ]
        registry = _registry({"access_token": "t"})
        registry.create_client.return_value.get = AsyncMock(side_effect=[profile, emails])

        outcome = self._resolve(user_store, registry, name="github")

        assert isinstance(outcome, Authenticated)
        assert user_store.get_by_oauth("github", "42") is not None

    def _github_registry(self, profile_json, emails_json=None):
        profile = MagicMock()
        if isinstance(profile_json, Exception):
            profile.json.side_effect = profile_json
        else:
            profile.json.return_value = profile_json
        emails = MagicMock()
        emails.json.return_value = emails_json or []
        registry = _registry({"access_token": "t"})
        registry.create_client.return_value.get = AsyncMock(side_effect=[profile, emails])
        return registry

    def test_github_unparseable_profile_is_provider_failure(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        registry = self._github_registry(json.JSONDecodeError("bad", "", 0))

        outcome = self._resolve(user_store, registry, name="github")

        assert isinstance(outcome, ProviderFailure)
        assert isinstance(outcome.cause, json.JSONDecodeError)

    def test_github_profile_without_id_is_provider_failure(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        registry = self._github_registry({"message": "Bad credentials"})

        outcome = self._resolve(user_store, registry, name="github")

        assert isinstance(outcome, ProviderFailure)
        assert isinstance(outcome.cause, KeyError)

    def test_github_malformed_email_list_is_provider_failure(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        registry = self._github_registry({"id": 42}, emails_json=["ada@example.com"])
        assert isinstance(self._resolve(user_store, registry, name="github"), ProviderFailure)

    def test_github_without_verified_email_rejected(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        registry = self._github_registry(
            {"id": 42}, emails_json=[{"email": "ada@example.com", "primary": True, "verified": False}]
        )
        assert isinstance(self._resolve(user_store, registry, name="github"), Rejected)

    def test_oidc_token_without_userinfo_is_provider_failure(self, stores) -> None:
        user_store, _ = stores
        _add_user(user_store)
        assert isinstance(self._resolve(user_store, _registry({"access_token": "t"})), ProviderFailure)


# ---------------------------------------------------------------------------
# SessionAuthenticator
# ---------------------------------------------------------------------------


class TestSessionAuthenticator:
    def test_unknown_strategy_is_rejected(self) -> None:
        authenticator = SessionAuthenticator({})
        outcome = asyncio.run(authenticator.authenticate("saml", FakeRequest()))
        assert isinstance(outcome, Rejected)
        assert not authenticator.supports("saml")

    def test_establish_session_binds_identity(self) -> None:
        request = FakeRequest({"stale": "value", CSRF_SESSION_KEY: "old-token"})
        user = User(first_name="Ada", last_name="Lovelace", email="ada@example.com")

        session = SessionAuthenticator({}).establish_session(request, user)

        assert session.identity == "ada@example.com"
        assert request.session[IDENTITY_KEY] == "ada@example.com"
        assert request.session[ESTABLISHED_KEY] == session.established_at
        assert "stale" not in request.session
        assert request.session[CSRF_SESSION_KEY] != "old-token"
        assert current_identity(request) == "ada@example.com"

    def test_establish_session_without_session_raises(self) -> None:
        user = User(first_name="Ada", last_name="Lovelace", email="ada@example.com")
        with pytest.raises(SessionError):
            SessionAuthenticator({}).establish_session(FakeRequest(with_session=False), user)

    def test_invalidate_session_clears_identity(self) -> None:
        request = FakeRequest({IDENTITY_KEY: "ada@example.com"})
        SessionAuthenticator({}).invalidate_session(request)
        assert current_identity(request) is None
        assert CSRF_SESSION_KEY in request.session
