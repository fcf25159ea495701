"""
auth/sessions.py -- SessionAuthenticator: strategy dispatch plus session binding.

Session transport is Starlette's SessionMiddleware (signed cookie holding a
small dict). This module only decides what goes into that dict:

  _identity        -- email of the authenticated account
  _established_at  -- ISO 8601 UTC timestamp of the login
  _csrf_token      -- see auth/csrf.py

establish_session() clears everything else first, so a session fixed before
login (including leftover OAuth state) cannot carry over into the
authenticated one.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from auth.csrf import rotate_csrf_token
from auth.errors import SessionError
from auth.models import LoginRequest, Session, User
from auth.strategies import AuthOutcome, AuthStrategy, Rejected

logger = logging.getLogger("accessledger.auth")

IDENTITY_KEY = "_identity"
ESTABLISHED_KEY = "_established_at"


def current_identity(request) -> str | None:
    """Return the email bound to this request's session, or None."""
    session = request.scope.get("session")
    if not session:
        return None
    identity = session.get(IDENTITY_KEY)
    return identity if isinstance(identity, str) and identity else None


class SessionAuthenticator:
    """Dispatch to named strategies and bind resolved identities to sessions."""

    def __init__(self, strategies: Mapping[str, AuthStrategy]) -> None:
        self._strategies = dict(strategies)

    @property
    def names(self) -> list[str]:
        return list(self._strategies)

    def supports(self, name: str) -> bool:
        return name in self._strategies

    async def authenticate(self, name: str, request, credentials: LoginRequest | None = None) -> AuthOutcome:
        """Run the named strategy. An unregistered name is a rejection."""
        strategy = self._strategies.get(name)
        if strategy is None:
            return Rejected(f"no strategy registered for {name!r}")
        return await strategy.resolve(request, credentials)

    def establish_session(self, request, identity: User) -> Session:
        """Bind identity to the request's session and return the Session.

        Raises SessionError if the request carries no session (middleware
        missing) or the session rejects the write.
        """
        if "session" not in request.scope:
            raise SessionError("no session is attached to this request")
        established_at = datetime.now(timezone.utc).isoformat()
        try:
            request.session.clear()
            request.session[IDENTITY_KEY] = identity.email
            request.session[ESTABLISHED_KEY] = established_at
            rotate_csrf_token(request)
        except (TypeError, ValueError) as exc:
            raise SessionError(f"could not bind session: {exc}") from exc
        logger.info("Session established for %s", identity.email)
        return Session(identity=identity.email, established_at=established_at)

    def invalidate_session(self, request) -> None:
        if "session" not in request.scope:
            raise SessionError("no session is attached to this request")
        identity = current_identity(request)
        request.session.clear()
        rotate_csrf_token(request)
        logger.info("Session closed for %s", identity)
