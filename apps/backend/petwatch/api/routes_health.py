from __future__ import annotations

from fastapi import APIRouter, Request

from petwatch.config.defaults import APP_VERSION_STRING

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def get_health(request: Request) -> dict[str, object]:
    state = request.app.state.petwatch
    settings = state.settings_store.settings
    return {
        "ok": True,
        "version": APP_VERSION_STRING,
        "bind": settings.bind,
        "port": settings.port,
        "data_dir": settings.data_dir,
        "session": state.session.status(),
    }
