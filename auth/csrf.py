"""
auth/csrf.py -- Synchronizer-token CSRF protection for the HTML forms.

One random token per session, stored server-side in the signed session and
echoed into every form as a hidden csrf_token field. POST handlers compare
the submitted value with the stored one in constant time before doing any
work. The token is replaced whenever the session is rotated (login, logout).
"""

from __future__ import annotations

import hmac
import secrets

from starlette.requests import Request

CSRF_SESSION_KEY = "_csrf_token"
CSRF_FORM_FIELD = "csrf_token"


def csrf_token(request: Request) -> str:
    """Return the session's CSRF token, creating one on first use."""
    token = request.session.get(CSRF_SESSION_KEY)
    if not token:
        token = rotate_csrf_token(request)
    return token


def rotate_csrf_token(request: Request) -> str:
    token = secrets.token_urlsafe(32)
    request.session[CSRF_SESSION_KEY] = token
    return token


def validate_csrf(request: Request, submitted: str | None) -> bool:
    expected = request.session.get(CSRF_SESSION_KEY)
    if not expected or not isinstance(submitted, str) or not submitted:
        return False
    return hmac.compare_digest(expected.encode(), submitted.encode())
