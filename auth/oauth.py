"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

build_oauth_registry() is called once from the application lifespan with the
Settings object. Only providers with both client ID and secret configured get
registered -- the login template renders buttons from get_enabled_providers().

Security notes:
  Email verification is mandatory. get_oauth_user_info() raises UnverifiedEmail
  if the provider does not confirm the email is verified. An unverified
  email could belong to an attacker who added a victim's address without
  confirming it.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Supported providers:
  google -- Authorization code flow; OIDC discovery.
  github -- Authorization code flow; static endpoints.
  oidc   -- Generic OIDC discovery (Okta, Azure AD, Keycloak, Authentik, etc.)

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from core.config import Settings

logger = logging.getLogger("accessledger.auth.oauth")


def build_oauth_registry(settings: Settings) -> OAuth:
    """Return an Authlib registry holding every configured provider."""
    oauth = OAuth()

    # Google -- OIDC discovery
    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    # GitHub -- static endpoints (no OIDC discovery document)
    if settings.github_client_id and settings.github_client_secret:
        oauth.register(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    # Generic OIDC
    if settings.oidc_client_id and settings.oidc_client_secret and settings.oidc_discovery_url:
        oauth.register(
            name="oidc",
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            server_metadata_url=settings.oidc_discovery_url,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Generic OIDC provider registered (display name: %s)", settings.oidc_display_name)

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    providers: list[dict] = []
    if settings.google_client_id and settings.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if settings.github_client_id and settings.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if settings.oidc_client_id and settings.oidc_client_secret and settings.oidc_discovery_url:
        providers.append({"name": "oidc", "label": settings.oidc_display_name})
    return providers


# ---------------------------------------------------------------------------
# Email / subject extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


class UnverifiedEmail(Exception):
    """The provider did not vouch for a usable email address.

    This is the only failure here that means "the user cannot sign in this
    way". Malformed provider responses surface as ValueError, KeyError or
    TypeError and are provider faults.
    """


async def get_oauth_user_info(client, provider: str, token: dict) -> tuple[str, str]:
    """Extract (email, subject_id) from a provider token response.

    The email is returned lower-cased so it matches the normalized form the
    signup validator stores.

    Raises:
        UnverifiedEmail: The provider did not confirm a verified email.
        httpx.HTTPError: A provider API call failed (GitHub only).
        ValueError, KeyError, TypeError: The provider response was malformed.
    """
    if provider == "github":
        email, subject = await _get_github_user_info(client, token)
    elif provider in ("google", "oidc"):
        email, subject = _get_oidc_user_info(token, provider)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")
    return email.strip().lower(), subject


async def _get_github_user_info(client, token: dict) -> tuple[str, str]:
    """Extract (email, subject_id) from a GitHub token.

    GitHub does not include the email in the access token. Two API calls are
    required:
      1. GET /user -- to get the numeric user ID (stable subject).
      2. GET /user/emails -- to find the primary verified email.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()
    subject_id = str(profile["id"])

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()
    emails = emails_resp.json()

    email: str | None = None
    for entry in emails:
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise UnverifiedEmail(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before logging in."
        )

    return email, subject_id


def _get_oidc_user_info(token: dict, provider: str) -> tuple[str, str]:
    """Extract (email, subject_id) from a Google/OIDC id_token.

    The email claim is only accepted when email_verified is True. Some OIDC
    providers omit email_verified entirely -- we treat that as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise UnverifiedEmail(
            f"{provider} OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")

    if not subject_id:
        raise ValueError(f"{provider} OAuth: missing sub claim in userinfo")
    if not email:
        raise UnverifiedEmail(f"{provider} OAuth: no email claim in userinfo")

    return email, str(subject_id)
