from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request, Response

from petwatch.channel.messages import EventType
from petwatch.errors import StorageError
from petwatch.storage.clips import StoredClip

router = APIRouter(prefix="/clips", tags=["clips"])


def _load_clip(request: Request, clip_id: str) -> StoredClip:
    recorder = request.app.state.petwatch.recorder
    try:
        clip = recorder.get_clip(clip_id)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    if clip is None:
        raise HTTPException(status_code=404, detail="Clip not found")
    return clip


@router.get("")
def list_clips(
    request: Request,
    type: EventType | None = None,
    synced: bool | None = None,
    limit: int | None = Query(default=None, ge=1, le=2000),
) -> dict[str, object]:
    recorder = request.app.state.petwatch.recorder
    try:
        items = recorder.clip_summaries(event_type=type, synced=synced, limit=limit)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    for item in items:
        item["video_url"] = f"/api/clips/{item['id']}/video"
        item["image_url"] = f"/api/clips/{item['id']}/image" if item["has_image"] else None
    return {"items": items, "total": len(items)}


@router.get("/{clip_id}/video")
def get_clip_video(clip_id: str, request: Request) -> Response:
    clip = _load_clip(request, clip_id)
    return Response(content=clip.video_blob, media_type="video/mp4")


@router.get("/{clip_id}/image")
def get_clip_image(clip_id: str, request: Request) -> Response:
    clip = _load_clip(request, clip_id)
    if clip.image_blob is None:
        raise HTTPException(status_code=404, detail="Clip has no image")
    return Response(content=clip.image_blob, media_type="image/jpeg")


@router.post("/{clip_id}/synced")
def mark_synced(clip_id: str, request: Request) -> dict[str, object]:
    recorder = request.app.state.petwatch.recorder
    try:
        recorder.mark_synced(clip_id)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"ok": True, "clip_id": clip_id, "synced": True}


@router.delete("/{clip_id}")
def delete_clip(clip_id: str, request: Request) -> dict[str, object]:
    recorder = request.app.state.petwatch.recorder
    try:
        recorder.delete_clip(clip_id)
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"ok": True, "clip_id": clip_id}
