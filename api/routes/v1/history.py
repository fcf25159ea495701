"""
api/routes/v1/history.py -- The current identity's account audit trail.

Routes:
  GET /api/v1/history?limit=N  -- newest first, 1 <= N <= 200 (default 50)

An identity can only read its own entries. There is no write endpoint:
entries are appended by the auth flows alone.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.models import HistoryEntryResponse, HistoryResponse
from auth.dependencies import get_current_identity
from history.store import HistoryStore

router = APIRouter()


@router.get("/history", response_model=HistoryResponse)
def list_history(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    identity: str = Depends(get_current_identity),
) -> HistoryResponse:
    store: HistoryStore = request.app.state.history_store
    entries = store.list_for_email(identity, limit=limit)
    return HistoryResponse(
        email=identity,
        entries=[HistoryEntryResponse(operation=e.operation, created_at=e.created_at) for e in entries],
    )
