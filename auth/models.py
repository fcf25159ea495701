"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, strategies and the orchestrator do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered account. email is the unique identity key.

    hashed_password is None for OAuth-only users (they have no local password).
    oauth_provider / oauth_subject are None until the user logs in via OAuth for
    the first time, at which point link_oauth() fills them in.
    """

    first_name: str
    last_name: str
    email: str
    id: int | None = None
    hashed_password: str | None = None  # None = OAuth-only user
    oauth_provider: str | None = None  # "google", "github", "oidc"
    oauth_subject: str | None = None  # provider's stable user ID
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class SignupRequest:
    """Normalized signup payload. password is plaintext and never persisted."""

    first_name: str
    last_name: str
    email: str
    password: str


@dataclass(frozen=True)
class LoginRequest:
    email: str
    password: str


@dataclass(frozen=True)
class Session:
    """Server-side proof that the current request acts on behalf of identity."""

    identity: str  # email
    established_at: str
