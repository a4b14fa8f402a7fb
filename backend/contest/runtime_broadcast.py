from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .runtime_constants import ROSTER_MESSAGE_TYPES
from .runtime_state_builders import build_roster
from .runtime_types import RoomRuntime

logger = logging.getLogger(__name__)


def is_writable(websocket: WebSocket | None) -> bool:
    if websocket is None:
        return False
    return (
        getattr(websocket, "client_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
        and getattr(websocket, "application_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
    )


async def send_safe(
    websocket: WebSocket | None,
    data: dict[str, Any],
    room_id: str | None = None,
    peer_id: str | None = None,
) -> bool:
    if not is_writable(websocket):
        return False
    try:
        await websocket.send_json(data)  # type: ignore[union-attr]
    except Exception as exc:
        # Connection may already be closed; the disconnect handler reaps it.
        logger.debug(
            "[SEND_FAIL] room=%s peer=%s type=%s reason=%s",
            room_id or "-",
            peer_id or "-",
            data.get("type"),
            repr(exc),
        )
        return False
    return True


def with_roster(room: RoomRuntime, message: dict[str, Any]) -> dict[str, Any]:
    if message.get("type") not in ROSTER_MESSAGE_TYPES:
        return message
    return {**message, "playerNumbers": build_roster(room)}


async def broadcast(room: RoomRuntime, message: dict[str, Any]) -> tuple[int, int]:
    """Send ``message`` to every writable connection in ``room``.

    Returns ``(delivered, failed)``. Players without a live channel are
    skipped and not counted as failures.
    """
    payload = with_roster(room, message)
    delivered = 0
    failed = 0
    for player in room.players:
        if not is_writable(player.websocket):
            continue
        if await send_safe(player.websocket, payload, room_id=room.room_id, peer_id=player.player_id):
            delivered += 1
        else:
            failed += 1
    return delivered, failed
