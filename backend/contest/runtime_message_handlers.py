from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .runtime_errors import ProtocolError
from .runtime_utils import now_ms

if TYPE_CHECKING:
    from .runtime import GameRuntime
    from .runtime_types import ConnectionContext


async def handle_message(
    runtime: "GameRuntime",
    ctx: "ConnectionContext",
    data: dict[str, Any],
) -> None:
    message_type = data.get("type")

    if message_type == "ping":
        runtime._increment_stat("pingReceived")
        await runtime._send_safe(
            ctx.websocket,
            {"type": "pong", "serverTime": now_ms()},
            room_id=ctx.room_id,
            peer_id=ctx.player_id,
        )
        return

    if message_type == "join":
        await runtime.join(ctx, data.get("roomId"), data.get("playerName"))
        return

    if message_type == "number":
        if "number" not in data:
            raise ProtocolError("number message without a number field")
        await runtime.submit(ctx, data.get("number"))
        return

    raise ProtocolError(f"unknown message type {message_type!r}")
