from __future__ import annotations

from fastapi import APIRouter, Query, Request

router = APIRouter(prefix="/events", tags=["events"])


@router.get("")
def list_events(request: Request, limit: int = Query(default=50, ge=1, le=1000)) -> dict[str, object]:
    state = request.app.state.petwatch
    items = state.session.recent_events(limit=limit)
    return {"items": items, "total": len(items)}
