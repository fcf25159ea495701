"""
auth/strategies.py -- Pluggable identity resolution strategies.

A strategy turns a request (plus, for local login, the validated credentials)
into exactly one of three outcomes:

  Authenticated(identity)  -- the request acts on behalf of this User
  Rejected(reason)         -- wrong password, unknown or disabled account,
                              unverified provider email, cancelled consent
  ProviderFailure(cause)   -- the store or the upstream provider broke

The set is closed. The orchestrator dispatches on it with isinstance() and
never inspects exceptions from a strategy -- strategies classify their own
failures. reason strings are for logs only; users see a generic message.

Strategies do not touch the session. Binding an Authenticated identity to the
session is SessionAuthenticator.establish_session() (auth/sessions.py), a
separate step so the audit entry can be written strictly after both succeed.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Union

import httpx
from authlib.integrations.base_client import MismatchingStateError, OAuthError
from sqlalchemy.exc import SQLAlchemyError

from auth.models import LoginRequest, User
from auth.oauth import UnverifiedEmail, get_oauth_user_info
from auth.passwords import CredentialService

logger = logging.getLogger("accessledger.auth")

# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Authenticated:
    identity: User


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class ProviderFailure:
    cause: BaseException


AuthOutcome = Union[Authenticated, Rejected, ProviderFailure]


class AuthStrategy(Protocol):
    name: str

    async def resolve(self, request, credentials: LoginRequest | None = None) -> AuthOutcome: ...


# ---------------------------------------------------------------------------
# Local email + password
# ---------------------------------------------------------------------------


class LocalStrategy:
    """Resolve an identity from a validated email/password pair.

    Always runs one bcrypt check, whether or not the account exists, so
    response time does not reveal which emails are registered.
    """

    name = "local"

    def __init__(self, credentials: CredentialService) -> None:
        self._credentials = credentials

    async def resolve(self, request, credentials: LoginRequest | None = None) -> AuthOutcome:
        if credentials is None:
            return Rejected("no credentials supplied")
        try:
            user = await self._credentials.find_by_email(credentials.email)
        except SQLAlchemyError as exc:
            return ProviderFailure(exc)

        if user is None or user.hashed_password is None:
            # Equalize timing -- do NOT return before running bcrypt
            await self._credentials.verify(credentials.password, None)
            return Rejected("unknown account" if user is None else "account has no local password")
        if not await self._credentials.verify(credentials.password, user.hashed_password):
            return Rejected("password mismatch")
        if not user.is_active:
            return Rejected("account disabled")
        return Authenticated(user)


# ---------------------------------------------------------------------------
# OAuth / OIDC provider callback
# ---------------------------------------------------------------------------


class OAuthStrategy:
    """Resolve an identity from an OAuth authorization-code callback.

    Accounts are never created here. The provider's verified email must match
    an existing account; the first successful login links the provider's
    stable subject ID to that account, and later logins match on it directly.
    """

    def __init__(self, name: str, registry, credentials: CredentialService) -> None:
        self.name = name
        self._registry = registry
        self._credentials = credentials

    async def resolve(self, request, credentials: LoginRequest | None = None) -> AuthOutcome:
        client = self._registry.create_client(self.name)
        if client is None:
            return Rejected(f"provider {self.name!r} is not configured")

        # Step 1: exchange the authorization code (authlib checks the state)
        try:
            token = await client.authorize_access_token(request)
        except MismatchingStateError:
            return Rejected("state mismatch on callback")
        except OAuthError as exc:
            if exc.error == "access_denied":
                return Rejected("consent denied at provider")
            return ProviderFailure(exc)
        except httpx.HTTPError as exc:
            return ProviderFailure(exc)

        # Step 2: verified email and stable subject
        try:
            email, subject = await get_oauth_user_info(client, self.name, token)
        except UnverifiedEmail as exc:
            return Rejected(str(exc))
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
            # Malformed or failed provider response
            return ProviderFailure(exc)

        # Step 3: match an existing account
        try:
            user = await self._credentials.find_by_oauth(self.name, subject)
            if user is None:
                user = await self._credentials.find_by_email(email)
                if user is None:
                    return Rejected("no account for provider email")
                if user.oauth_provider is None:
                    user = await self._credentials.link_oauth(user, self.name, subject)
                elif user.oauth_provider == self.name and user.oauth_subject != subject:
                    return Rejected("email is linked to a different provider identity")
        except SQLAlchemyError as exc:
            return ProviderFailure(exc)

        if not user.is_active:
            return Rejected("account disabled")
        return Authenticated(user)
