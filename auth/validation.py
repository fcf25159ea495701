"""
auth/validation.py -- Signup and login payload validation.

validate() is a pure function: raw form mapping in, ValidationResult out.
It never touches the store, the session or the history trail, so a payload
that fails here cannot leave partial state behind.

Pydantic v2 models describe the shape of each form. Their errors are
translated into FieldViolation entries keyed by the form field names the
templates use (firstName, lastName, email, password). The password strength
rules live in PasswordPolicy, built from Settings at startup and applied to
signup only -- login accepts any non-empty password so that accounts created
under an older policy can still sign in.

Every violated field is reported, not just the first one.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError

from auth.errors import FieldViolation, ValidationError
from auth.models import LoginRequest, SignupRequest

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
_Email = Annotated[
    str,
    StringConstraints(strip_whitespace=True, to_lower=True, min_length=1, max_length=254, pattern=EMAIL_PATTERN),
]
# Passwords are never stripped -- leading/trailing spaces are part of the secret.
_Password = Annotated[str, StringConstraints(min_length=1, max_length=1024)]

# Python attribute name -> form field name shown to the user
_FORM_NAMES = {
    "first_name": "firstName",
    "last_name": "lastName",
    "email": "email",
    "password": "password",
}


@dataclass(frozen=True)
class PasswordPolicy:
    """Minimum strength rules for new passwords."""

    min_length: int = 8
    max_length: int = 72
    require_letter: bool = True
    require_digit: bool = True

    @classmethod
    def from_settings(cls, settings) -> PasswordPolicy:
        return cls(
            min_length=settings.password_min_length,
            max_length=settings.password_max_length,
            require_letter=settings.password_require_letter,
            require_digit=settings.password_require_digit,
        )

    def check(self, password: str) -> list[str]:
        """Return one message per broken rule; empty list means acceptable."""
        problems: list[str] = []
        if len(password) < self.min_length:
            problems.append(f"must be at least {self.min_length} characters")
        # bcrypt truncates at 72 bytes, so the limit is on the encoded length
        if len(password.encode("utf-8")) > self.max_length:
            problems.append(f"must be at most {self.max_length} bytes")
        if self.require_letter and not re.search(r"[A-Za-z]", password):
            problems.append("must contain at least one letter")
        if self.require_digit and not re.search(r"\d", password):
            problems.append("must contain at least one digit")
        return problems


class _SignupForm(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    first_name: _Name = Field(alias="firstName")
    last_name: _Name = Field(alias="lastName")
    email: _Email
    password: _Password

    def to_request(self) -> SignupRequest:
        return SignupRequest(
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            password=self.password,
        )


class _LoginForm(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: _Email
    password: _Password

    def to_request(self) -> LoginRequest:
        return LoginRequest(email=self.email, password=self.password)


_FORMS: dict[str, type[BaseModel]] = {"signup": _SignupForm, "login": _LoginForm}


@dataclass(frozen=True)
class ValidationResult:
    """Exactly one of value / error is set."""

    value: SignupRequest | LoginRequest | None = None
    error: ValidationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _message_for(field: str, error_type: str, default: str) -> str:
    if error_type == "missing":
        return "is required"
    if error_type == "string_type":
        return "must be text"
    if error_type == "string_too_short":
        return "must not be empty"
    if error_type == "string_too_long":
        return "is too long"
    if error_type == "string_pattern_mismatch" and field == "email":
        return "must be a valid email address"
    return default


def _translate(exc: PydanticValidationError) -> list[FieldViolation]:
    violations: list[FieldViolation] = []
    for err in exc.errors():
        loc = err.get("loc") or ("__all__",)
        raw = str(loc[0])
        field = _FORM_NAMES.get(raw, raw)
        violations.append(FieldViolation(field, _message_for(field, err["type"], err["msg"])))
    return violations


def validate(kind: str, payload: Any, policy: PasswordPolicy | None = None) -> ValidationResult:
    """Validate a raw signup or login payload.

    Args:
        kind:    "signup" or "login". Anything else is a programming error
                 and raises ValueError.
        payload: Mapping of form fields (a Starlette FormData or a dict).
                 Non-mapping input is treated as an empty form.
        policy:  Password strength policy for signup. Defaults to
                 PasswordPolicy().

    Returns a ValidationResult holding either the normalized request
    (email lower-cased, names stripped) or a ValidationError listing every
    violated field.
    """
    form = _FORMS.get(kind)
    if form is None:
        raise ValueError(f"Unknown validation kind: {kind!r}")
    policy = policy or PasswordPolicy()
    data = dict(payload) if isinstance(payload, Mapping) else {}

    violations: list[FieldViolation] = []
    parsed = None
    try:
        parsed = form.model_validate(data)
    except PydanticValidationError as exc:
        violations.extend(_translate(exc))

    if kind == "signup":
        password = data.get("password")
        already_flagged = any(v.field == "password" for v in violations)
        if isinstance(password, str) and password and not already_flagged:
            violations.extend(FieldViolation("password", msg) for msg in policy.check(password))

    if violations:
        return ValidationResult(error=ValidationError(kind, violations))
    return ValidationResult(value=parsed.to_request())
