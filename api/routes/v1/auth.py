"""
api/routes/v1/auth.py -- Read-only identity endpoints for API clients.

Routes:
  GET /api/v1/auth/providers  -- list enabled OAuth providers (public)
  GET /api/v1/auth/me         -- account bound to the current session

Signup, login, logout and the OAuth callback are browser flows and live in
web/routes.py; they render pages and redirect rather than return JSON.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import MeResponse, OAuthProviderInfo
from auth.dependencies import get_current_user
from auth.models import User
from auth.oauth import get_enabled_providers
from auth.sessions import ESTABLISHED_KEY
from core.config import get_settings

# Auth policy:
# - GET /api/v1/auth/providers: public -- the login page renders buttons from it
# - GET /api/v1/auth/me:        requires a session (get_current_user)
router = APIRouter()


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(get_settings())]


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, current_user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        email=current_user.email,
        first_name=current_user.first_name,
        last_name=current_user.last_name,
        oauth_provider=current_user.oauth_provider,
        session_established_at=request.session.get(ESTABLISHED_KEY),
    )
