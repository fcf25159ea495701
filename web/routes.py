"""
web/routes.py -- Jinja2 template routes for the AccessLedger web UI.

These routes are the HTTP side of the auth flows. Each POST handler checks
the CSRF token, hands the raw form to the AuthOrchestrator on app.state and
turns the Render / Redirect it returns into a response. Errors the
orchestrator raises are not caught here; they reach the error pages
installed by web/errors.py.

Route registration order matters: GET /login/oauth/{provider} and
GET /login/callback/{provider} are registered before GET /login.

Routes:
  GET  /                             -- redirect to /menu or /login
  GET  /signup                       -- signup form
  POST /signup                       -- create account, render login page
  GET  /login/oauth/{provider}       -- redirect to the OAuth provider
  GET  /login/callback/{provider}    -- OAuth callback handler
  GET  /login                        -- login form
  POST /login                        -- password login (rate limited)
  POST /logout                       -- close session, render login page
  GET  /menu                         -- landing page after login (session required)
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from auth.csrf import CSRF_FORM_FIELD, csrf_token, validate_csrf
from auth.dependencies import try_get_current_identity
from auth.oauth import get_enabled_providers
from auth.orchestrator import AuthOrchestrator, Redirect, Render
from auth.store import UserStore
from core.config import get_settings
from core.limiter import limiter, login_rate_limit
from history.store import HistoryStore

logger = logging.getLogger("accessledger.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Lets layout.html show the signed-in email without every handler passing it.
templates.env.globals["current_identity"] = try_get_current_identity
router = APIRouter()

_MENU_HISTORY_LIMIT = 10


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def render_page(request: Request, template: str, status_code: int = 200, **context) -> HTMLResponse:
    """Render a page with the fields every template expects.

    csrf_token is created on first use and stored in the session, so any
    rendered form can be posted back.
    """
    context.setdefault("error", "")
    context.setdefault("errors", {})
    # Pages rendered outside SessionMiddleware (unexpected-error page) have no session
    context["csrf_token"] = csrf_token(request) if "session" in request.scope else ""
    context["providers"] = get_enabled_providers(get_settings())
    context["self_registration_enabled"] = get_settings().self_registration_enabled
    resp = templates.TemplateResponse(request, template, context, status_code=status_code)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _respond(request: Request, outcome) -> Response:
    if isinstance(outcome, Redirect):
        resp = RedirectResponse(outcome.path, status_code=outcome.status_code)
        resp.headers["Cache-Control"] = "no-store"
        return resp
    if isinstance(outcome, Render):
        return render_page(request, outcome.template, status_code=outcome.status_code, error=outcome.error)
    raise TypeError(f"Unexpected outcome {outcome!r}")


def _orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.orchestrator


def _csrf_failure(request: Request) -> HTMLResponse:
    logger.warning("CSRF token mismatch on %s %s", request.method, request.url.path)
    return render_page(
        request,
        "error.html",
        status_code=403,
        error="Your form expired. Reload the page and try again.",
    )


# ---------------------------------------------------------------------------
# GET / -- entry point
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> RedirectResponse:
    settings = get_settings()
    target = settings.menu_path if try_get_current_identity(request) else settings.login_path
    return RedirectResponse(target, status_code=302)


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


@router.get("/signup", response_class=HTMLResponse)
def signup_form(request: Request) -> Response:
    if not get_settings().self_registration_enabled:
        raise HTTPException(status_code=404)
    if try_get_current_identity(request) is not None:
        return RedirectResponse(get_settings().menu_path, status_code=302)
    return render_page(request, "signup.html")


@router.post("/signup", response_class=HTMLResponse)
async def signup_post(request: Request) -> Response:
    """Create an account. Validation errors re-render signup.html (web/errors.py)."""
    if not get_settings().self_registration_enabled:
        raise HTTPException(status_code=404)
    form = await request.form()
    if not validate_csrf(request, form.get(CSRF_FORM_FIELD)):
        return _csrf_failure(request)
    outcome = await _orchestrator(request).signup(request, form)
    return _respond(request, outcome)


# ---------------------------------------------------------------------------
# OAuth -- registered before GET /login
# ---------------------------------------------------------------------------


@router.get("/login/oauth/{provider}", response_class=HTMLResponse)
async def oauth_redirect(request: Request, provider: str) -> Response:
    """Redirect the browser to the OAuth provider's authorization page.

    Only providers with a registered strategy are accepted, so a spoofed
    provider name cannot send the browser anywhere else.
    """
    if provider == "local" or not _orchestrator(request).authenticator.supports(provider):
        return RedirectResponse(get_settings().login_path, status_code=302)

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/login/callback/{provider}", response_class=HTMLResponse, name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> Response:
    """Finish the OAuth flow: menu on success, login page on rejection."""
    if provider == "local":
        return RedirectResponse(get_settings().login_path, status_code=302)
    outcome = await _orchestrator(request).oauth_callback(request, provider)
    return _respond(request, outcome)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> Response:
    """Render the login page with the email/password form and OAuth buttons."""
    if try_get_current_identity(request) is not None:
        return RedirectResponse(get_settings().menu_path, status_code=302)
    return render_page(request, "login.html")


@limiter.limit(login_rate_limit)  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_class=HTMLResponse)
async def login_post(request: Request) -> Response:
    form = await request.form()
    if not validate_csrf(request, form.get(CSRF_FORM_FIELD)):
        return _csrf_failure(request)
    outcome = await _orchestrator(request).login(request, form)
    return _respond(request, outcome)


@router.post("/logout", response_class=HTMLResponse)
async def logout(request: Request) -> Response:
    """Close the session. Without one, the orchestrator raises InternalError."""
    form = await request.form()
    if not validate_csrf(request, form.get(CSRF_FORM_FIELD)):
        return _csrf_failure(request)
    outcome = await _orchestrator(request).logout(request)
    return _respond(request, outcome)


# ---------------------------------------------------------------------------
# GET /menu -- landing page after login
# ---------------------------------------------------------------------------


@router.get("/menu", response_class=HTMLResponse)
def menu(request: Request) -> Response:
    identity: Optional[str] = try_get_current_identity(request)
    if identity is None:
        return RedirectResponse(get_settings().login_path, status_code=302)
    user_store: UserStore = request.app.state.user_store
    history_store: HistoryStore = request.app.state.history_store
    return render_page(
        request,
        "menu.html",
        user=user_store.get_by_email(identity),
        identity=identity,
        history=history_store.list_for_email(identity, limit=_MENU_HISTORY_LIMIT),
    )
