"""
auth/errors.py -- Exception taxonomy for the authentication flow.

Every error carries a machine-readable code and a classification used by the
error channel in api/main.py:

  "validation" -- user input malformed; re-rendered with field detail.
  "rejected"   -- credentials well-formed but wrong; generic retry prompt.
  "internal"   -- provider, persistence, hashing or session failure. The
                  message shown to the user is sanitized; the cause is logged.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldViolation:
    field: str
    message: str


class AuthFlowError(Exception):
    """Base class for every error raised by the auth flow."""

    code = "auth_error"
    status = "internal"
    public_message = "An unexpected error occurred."

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(AuthFlowError):
    """Raised when a signup or login payload fails validation.

    kind names the form the payload came from ("signup" or "login") so the
    error handler can re-render the right page. violations lists every failed
    field, not just the first.
    """

    code = "validation_error"
    status = "validation"
    public_message = "Some fields need your attention."

    def __init__(self, kind: str, violations: list[FieldViolation]) -> None:
        super().__init__(self.public_message)
        self.kind = kind
        self.violations = list(violations)

    @property
    def fields(self) -> list[str]:
        return [v.field for v in self.violations]

    def as_dict(self) -> dict[str, list[str]]:
        """Group messages by field for template rendering."""
        grouped: dict[str, list[str]] = {}
        for v in self.violations:
            grouped.setdefault(v.field, []).append(v.message)
        return grouped


class CredentialRejected(AuthFlowError):
    """Well-formed credentials that did not match an account.

    Never carries field-level detail -- the user must not learn whether the
    email or the password was wrong.
    """

    code = "bad_credentials"
    status = "rejected"
    public_message = "Check your email and password."

    def __init__(self, reason: str = "") -> None:
        super().__init__(self.public_message)
        self.reason = reason


class ProviderError(AuthFlowError):
    """An authentication provider (local store or OAuth upstream) failed."""

    code = "provider_error"
    public_message = "Sign-in is temporarily unavailable. Please try again later."

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(self.public_message)
        self.cause = cause


class InternalError(AuthFlowError):
    """Hashing, persistence, session or precondition failure.

    reason is for operators and logs; public_message is what users see.
    """

    code = "internal_error"

    def __init__(self, reason: str) -> None:
        super().__init__(self.public_message)
        self.reason = reason

    def __str__(self) -> str:
        return self.reason


class DuplicateIdentity(InternalError):
    code = "duplicate_identity"

    def __init__(self, email: str) -> None:
        super().__init__(f"an account already exists for {email}")
        self.email = email


class SessionError(InternalError):
    code = "session_error"
