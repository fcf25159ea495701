"""
auth/orchestrator.py -- The signup / login / logout / OAuth callback flows.

Each operation is a short, strictly sequential chain of awaited steps with
explicit terminal outcomes. Nothing is retried.

  signup          validate -> hash -> create user -> history "created account"
                  -> Render(login page, success message)
  login           validate -> local strategy
                    Authenticated   -> establish session -> history "login" -> Redirect(menu)
                    Rejected        -> Render(login page, generic retry message)
                    ProviderFailure -> raise ProviderError
  logout          current identity (required) -> history "logout"
                  -> invalidate session -> Render(login page, empty)
  oauth_callback  provider strategy
                    ProviderFailure -> raise ProviderError
                    Rejected        -> Redirect(login)
                    Authenticated   -> establish session -> history "login" -> Redirect(menu)

Ordering rules:
  - Validation runs before any side effect, so malformed input leaves no
    partial account or session behind.
  - History is written only after the change it describes has committed,
    and a history failure never changes the outcome (HistoryRecorder logs it).

Errors leave through exceptions and reach the single error channel in
api/main.py: ValidationError (re-rendered with field detail), ProviderError
and InternalError (500, sanitized). Credential rejection is the only failure
rendered here, and it deliberately carries no field detail.

The orchestrator knows nothing about HTTP responses or templates. It returns
Render / Redirect values; web/routes.py turns them into responses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from auth.errors import CredentialRejected, InternalError, ProviderError
from auth.passwords import CredentialService
from auth.sessions import SessionAuthenticator, current_identity
from auth.strategies import Authenticated, ProviderFailure, Rejected
from auth.validation import PasswordPolicy, validate
from history.models import CREATED_ACCOUNT, LOGIN, LOGOUT
from history.recorder import HistoryRecorder

logger = logging.getLogger("accessledger.auth")

SIGNUP_SUCCESS_MESSAGE = "You signed up successfully."


# ---------------------------------------------------------------------------
# Configuration and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthConfig:
    """Everything the flows need from configuration, fixed at startup."""

    menu_path: str = "/menu"
    login_path: str = "/login"
    login_template: str = "login.html"
    password_policy: PasswordPolicy = field(default_factory=PasswordPolicy)

    @classmethod
    def from_settings(cls, settings) -> AuthConfig:
        return cls(
            menu_path=settings.menu_path,
            login_path=settings.login_path,
            password_policy=PasswordPolicy.from_settings(settings),
        )


@dataclass(frozen=True)
class Render:
    template: str
    error: str = ""
    status_code: int = 200


@dataclass(frozen=True)
class Redirect:
    path: str
    status_code: int = 302


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class AuthOrchestrator:
    def __init__(
        self,
        config: AuthConfig,
        credentials: CredentialService,
        authenticator: SessionAuthenticator,
        history: HistoryRecorder,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self.authenticator = authenticator
        self.history = history

    async def signup(self, request, payload) -> Render:
        """Create an account from a raw signup form.

        Raises:
            ValidationError: the payload is malformed; nothing was written.
            InternalError:   hashing or persistence failed, including an
                             already-registered email (DuplicateIdentity).
        """
        result = validate("signup", payload, self.config.password_policy)
        if result.error is not None:
            logger.info("Signup rejected by validation (fields: %s)", ", ".join(result.error.fields))
            raise result.error
        signup = result.value

        try:
            hashed = await self.credentials.hash(signup.password)
            user = await self.credentials.create_user(signup, hashed)
        except InternalError as exc:
            logger.warning("Signup failed for %s: %s", signup.email, exc.reason)
            raise
        except Exception as exc:
            raise InternalError(f"signup failed: {exc.__class__.__name__}") from exc

        await self.history.record(user.email, CREATED_ACCOUNT)
        return Render(self.config.login_template, SIGNUP_SUCCESS_MESSAGE)

    async def login(self, request, payload) -> Render | Redirect:
        """Log in with email and password.

        Returns Redirect(menu) on success and a 401 Render of the login page
        on a credential mismatch.

        Raises:
            ValidationError: the payload is malformed.
            ProviderError:   the credential store failed.
            InternalError:   identity resolved but the session could not be bound.
        """
        result = validate("login", payload)
        if result.error is not None:
            logger.info("Login rejected by validation (fields: %s)", ", ".join(result.error.fields))
            raise result.error
        credentials = result.value

        outcome = await self.authenticator.authenticate("local", request, credentials)
        if isinstance(outcome, Authenticated):
            return await self._complete_login(request, outcome)
        if isinstance(outcome, Rejected):
            logger.info("Login rejected for %s: %s", credentials.email, outcome.reason)
            return Render(self.config.login_template, CredentialRejected.public_message, status_code=401)
        if isinstance(outcome, ProviderFailure):
            raise ProviderError(outcome.cause) from outcome.cause
        raise InternalError(f"unexpected authentication outcome {outcome!r}")

    async def logout(self, request) -> Render:
        """Close the current session.

        Raises InternalError when the request is not authenticated; calling
        logout twice therefore fails the second time instead of silently
        succeeding.
        """
        identity = current_identity(request)
        if identity is None:
            raise InternalError("logout without an authenticated session")

        await self.history.record(identity, LOGOUT)
        self.authenticator.invalidate_session(request)
        return Render(self.config.login_template, "")

    async def oauth_callback(self, request, provider: str) -> Redirect:
        """Finish a third-party login started at /login/oauth/{provider}.

        Raises:
            ProviderError: the provider or the credential store failed.
            InternalError: identity resolved but the session could not be bound.
        """
        outcome = await self.authenticator.authenticate(provider, request)
        if isinstance(outcome, ProviderFailure):
            raise ProviderError(outcome.cause) from outcome.cause
        if isinstance(outcome, Rejected):
            logger.info("OAuth login via %s rejected: %s", provider, outcome.reason)
            return Redirect(self.config.login_path)
        if isinstance(outcome, Authenticated):
            return await self._complete_login(request, outcome)
        raise InternalError(f"unexpected authentication outcome {outcome!r}")

    async def _complete_login(self, request, outcome: Authenticated) -> Redirect:
        user = outcome.identity
        # SessionError is an InternalError and propagates unchanged
        session = self.authenticator.establish_session(request, user)
        # The audit entry names the resolved account, never the raw form input.
        await self.history.record(session.identity, LOGIN)
        return Redirect(self.config.menu_path)
