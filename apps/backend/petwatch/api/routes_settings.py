from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from petwatch.errors import ConfigurationError
from petwatch.util.security import scrub_sensitive

router = APIRouter(prefix="/settings", tags=["settings"])


class DetectionPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    motion_enabled: bool | None = None
    sound_enabled: bool | None = None
    motion_sensitivity: float | None = Field(default=None, ge=0.0, le=1.0)
    sound_sensitivity: float | None = Field(default=None, ge=0.0, le=1.0)
    cooldown_seconds: int | None = Field(default=None, ge=0)


@router.get("")
def get_settings(request: Request) -> dict[str, object]:
    state = request.app.state.petwatch
    settings = state.settings_store.settings
    return {
        "settings": scrub_sensitive(settings.model_dump(mode="json")),
        "detection": state.session.events.settings.model_dump(by_alias=True),
        "data_tree": {name: str(path) for name, path in state.settings_store.data_tree.items()},
    }


@router.patch("/detection")
def update_detection(payload: DetectionPayload, request: Request) -> dict[str, object]:
    state = request.app.state.petwatch
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No detection settings supplied")
    try:
        detection = state.session.update_settings(**changes)
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"ok": True, "detection": detection.model_dump(by_alias=True)}
