"""
auth/dependencies.py -- FastAPI Depends() helpers for the identity context.

The session cookie (Starlette SessionMiddleware) is the only credential.
try_get_current_identity() is the soft variant (returns None).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.
get_current_user() additionally loads the account and rejects inactive ones.

Layer rule: no imports from web/ or history/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.sessions import current_identity


def try_get_current_identity(request: Request) -> str | None:
    """Return the email bound to the session, or None. Never raises."""
    return current_identity(request)


def get_current_identity(request: Request) -> str:
    """Require an authenticated session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: str = Depends(get_current_identity)): ...
    """
    identity = try_get_current_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return identity


def get_current_user(request: Request) -> User:
    """Require an authenticated session whose account still exists and is active."""
    identity = get_current_identity(request)
    user = request.app.state.user_store.get_by_email(identity)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
