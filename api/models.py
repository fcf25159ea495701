"""
API response models for AccessLedger REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
history/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    """One violated form field."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    detail is a free-form string for most errors and a list of FieldError
    entries for validation failures.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Union[str, list[FieldError]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class MeResponse(BaseModel):
    """Identity of the account bound to the current session."""

    model_config = ConfigDict(frozen=True)

    email: str
    first_name: str
    last_name: str
    oauth_provider: Optional[str] = None
    session_established_at: Optional[str] = None


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class HistoryEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation: str
    created_at: str


class HistoryResponse(BaseModel):
    """Audit trail of the current identity, newest first."""

    model_config = ConfigDict(frozen=True)

    email: str
    entries: list[HistoryEntryResponse]
