from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(tags=["rooms"])


@router.get("/api/rooms/{room_id}")
async def room_summary(room_id: str, request: Request) -> dict[str, object]:
    summary = request.app.state.runtime.get_room_summary(room_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return summary
