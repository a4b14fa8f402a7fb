from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

from .config import GameRules
from .runtime_broadcast import broadcast as broadcast_to_room
from .runtime_broadcast import send_safe
from .runtime_constants import (
    DEFAULT_RULES,
    ERROR_ALREADY_JOINED,
    ERROR_INVALID_ROOM_ID,
    ERROR_ROOM_FULL,
    TIMER_GAME_START,
    TIMER_KEYS,
)
from .runtime_directory import RoomDirectory
from .runtime_errors import AdmissionError, ProtocolError
from .runtime_message_handlers import handle_message as handle_room_message
from .runtime_registry import PlayerRegistry
from .runtime_round_flow import all_active_submitted, close_round, finish_game, start_game, submit_number
from .runtime_state_builders import (
    build_error,
    build_player_info,
    build_player_joined,
    build_player_left,
    build_room_summary,
)
from .runtime_types import ConnectionContext, PlayerConnection, RoomRuntime
from .runtime_utils import (
    now_ms,
    parse_submitted_number,
    random_id,
    sanitize_player_name,
    sanitize_room_id,
)

logger = logging.getLogger(__name__)

TimerCallback = Callable[[RoomRuntime], Awaitable[None]]


class GameRuntime:
    def __init__(self, directory: RoomDirectory, rules: GameRules = DEFAULT_RULES) -> None:
        self.directory = directory
        self.rules = rules
        self._ws_stats: dict[str, int] = {
            "connectSuccess": 0,
            "disconnects": 0,
            "messageReceived": 0,
            "protocolErrors": 0,
            "pingReceived": 0,
            "sendFailures": 0,
            "joinAttempts": 0,
            "joinSuccess": 0,
            "joinRejected": 0,
            "rejectRoomFull": 0,
            "rejectRoomNotWaiting": 0,
            "rejectInvalidRoomId": 0,
            "staleSubmissions": 0,
            "gamesStarted": 0,
            "roundsScored": 0,
            "gamesFinished": 0,
            "activeConnections": 0,
            "peakConnections": 0,
        }

    @property
    def active_rooms_count(self) -> int:
        return len(self.directory)

    def _increment_stat(self, key: str, amount: int = 1) -> None:
        self._ws_stats[key] = int(self._ws_stats.get(key, 0)) + amount

    def _on_connect(self) -> None:
        self._increment_stat("connectSuccess")
        active_connections = int(self._ws_stats.get("activeConnections", 0)) + 1
        self._ws_stats["activeConnections"] = active_connections
        if active_connections > int(self._ws_stats.get("peakConnections", 0)):
            self._ws_stats["peakConnections"] = active_connections

    def _on_disconnect(self) -> None:
        self._increment_stat("disconnects")
        active_connections = max(0, int(self._ws_stats.get("activeConnections", 0)) - 1)
        self._ws_stats["activeConnections"] = active_connections

    def _log_ws_event(self, event: str, level: int = logging.INFO, **fields: object) -> None:
        logger.log(
            level,
            "ws.%s %s",
            event,
            json.dumps(fields, ensure_ascii=False, separators=(",", ":"), default=str),
        )

    async def get_ws_stats(self) -> dict[str, Any]:
        async with self.directory.lock:
            room_summaries = [
                {
                    "roomId": room.room_id,
                    "players": len(room.players),
                    "connections": len(room.players.connected_players()),
                    "state": room.state,
                    "round": room.current_round.number,
                }
                for room in self.directory.values()
            ]

        room_summaries.sort(key=lambda item: int(item.get("connections", 0)), reverse=True)

        return {
            "generatedAt": now_ms(),
            "activeRooms": len(room_summaries),
            "stats": dict(self._ws_stats),
            "rooms": room_summaries[:50],
        }

    def get_room_summary(self, room_id: str) -> dict[str, Any] | None:
        room = self.directory.get(sanitize_room_id(room_id))
        if room is None:
            return None
        return build_room_summary(room)

    async def shutdown(self) -> None:
        pending: list[asyncio.Task[None]] = []
        for room in await self.directory.drain():
            async with room.lock:
                pending.extend(task for task in room.timers.values() if task is not None)
                self._clear_timers(room)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._ws_stats["activeConnections"] = 0

    async def handle_websocket(self, websocket: WebSocket) -> None:
        await websocket.accept()

        ctx = ConnectionContext(player_id=random_id(), websocket=websocket, connected_at=now_ms())
        self._on_connect()
        self._log_ws_event("connect", peerId=ctx.player_id)

        disconnect_code: int | None = None
        disconnect_reason = "unknown"

        try:
            while True:
                raw = await websocket.receive_text()
                self._increment_stat("messageReceived")
                try:
                    data = json.loads(raw)
                    if not isinstance(data, dict):
                        raise ProtocolError("frame is not a JSON object")
                    await handle_room_message(self, ctx, data)
                except (json.JSONDecodeError, ProtocolError) as exc:
                    self._increment_stat("protocolErrors")
                    logger.debug(
                        "[PROTOCOL] room=%s peer=%s dropped frame: %s",
                        ctx.room_id or "-",
                        ctx.player_id,
                        exc,
                    )
        except WebSocketDisconnect as exc:
            disconnect_code = exc.code
            disconnect_reason = "websocket_disconnect"
        except Exception:
            disconnect_reason = "server_error"
            logger.exception("Unexpected websocket error for room %s peer %s", ctx.room_id, ctx.player_id)
        finally:
            self._on_disconnect()
            await self.disconnect(ctx, reason=disconnect_reason, close_code=disconnect_code)

    async def _send_safe(
        self,
        websocket: WebSocket | None,
        data: dict[str, Any],
        room_id: str | None = None,
        peer_id: str | None = None,
    ) -> bool:
        sent = await send_safe(websocket, data, room_id=room_id, peer_id=peer_id)
        if not sent and websocket is not None:
            self._increment_stat("sendFailures")
        return sent

    async def _send_error(
        self,
        ctx: ConnectionContext,
        message: str,
        code: str,
        room_id: str | None = None,
    ) -> None:
        await self._send_safe(ctx.websocket, build_error(message, code), room_id=room_id, peer_id=ctx.player_id)

    async def _broadcast(self, room: RoomRuntime, message: dict[str, Any]) -> None:
        _, failed = await broadcast_to_room(room, message)
        if failed:
            self._increment_stat("sendFailures", failed)

    def _create_room(self, room_id: str) -> RoomRuntime:
        self._log_ws_event("room_created", roomId=room_id, capacity=self.rules.capacity)
        return RoomRuntime(
            room_id=room_id,
            rules=self.rules,
            players=PlayerRegistry(room_id, self.rules.capacity),
            created_at=now_ms(),
        )

    async def join(self, ctx: ConnectionContext, room_id_raw: Any, player_name_raw: Any) -> bool:
        self._increment_stat("joinAttempts")

        if ctx.room_id is not None:
            current = self.directory.get(ctx.room_id)
            if current is not None and not current.is_finished and ctx.player_id in current.players:
                self._increment_stat("joinRejected")
                await self._send_error(ctx, "You have already joined a room.", ERROR_ALREADY_JOINED, ctx.room_id)
                return False
            await self.disconnect(ctx, reason="rejoin")

        room_id = sanitize_room_id(room_id_raw)
        if not room_id:
            self._increment_stat("joinRejected")
            self._increment_stat("rejectInvalidRoomId")
            await self._send_error(ctx, "Room id required", ERROR_INVALID_ROOM_ID)
            return False

        player_name = sanitize_player_name(player_name_raw)

        for _ in range(3):
            room = await self.directory.resolve(room_id, self._create_room, on_discard=self._clear_timers)
            async with room.lock:
                # The room may have been emptied and dropped while we waited for its lock.
                if self.directory.get(room_id) is not room:
                    continue
                return await self._admit(ctx, room, player_name)

        logger.warning("Giving up join for room %s peer %s after repeated room turnover", room_id, ctx.player_id)
        return False

    async def _admit(self, ctx: ConnectionContext, room: RoomRuntime, player_name: str) -> bool:
        try:
            player = room.players.admit(ctx.player_id, player_name, ctx.websocket)
        except AdmissionError as exc:
            self._increment_stat("joinRejected")
            self._increment_stat("rejectRoomFull" if exc.code == ERROR_ROOM_FULL else "rejectRoomNotWaiting")
            await self._send_error(ctx, exc.message, exc.code, room.room_id)
            self._log_ws_event(
                "join_rejected",
                level=logging.WARNING,
                roomId=room.room_id,
                peerId=ctx.player_id,
                code=exc.code,
                state=room.state,
            )
            return False

        ctx.room_id = room.room_id
        self._increment_stat("joinSuccess")
        await self._send_safe(ctx.websocket, build_player_info(player), room_id=room.room_id, peer_id=player.player_id)
        await self._broadcast(room, build_player_joined(room))
        self._log_ws_event(
            "join",
            roomId=room.room_id,
            peerId=player.player_id,
            playerNumber=player.player_number,
            count=len(room.players),
        )

        if room.players.is_full:
            self._schedule_timer(room, TIMER_GAME_START, room.rules.game_start_delay_ms, self._start_game)
        return True

    async def _start_game(self, room: RoomRuntime) -> None:
        if await start_game(self, room):
            self._increment_stat("gamesStarted")

    async def submit(self, ctx: ConnectionContext, raw_number: Any) -> bool:
        number = parse_submitted_number(raw_number, self.rules.min_number, self.rules.max_number)

        room = self.directory.get(ctx.room_id) if ctx.room_id else None
        if room is None:
            self._increment_stat("staleSubmissions")
            return False

        async with room.lock:
            player = room.players.get(ctx.player_id)
            accepted = player is not None and await submit_number(self, room, player, number)

        if not accepted:
            self._increment_stat("staleSubmissions")
        return accepted

    def _eliminate_disconnected(self, room: RoomRuntime, player: PlayerConnection) -> None:
        # Keep the seat so indices and round math stay stable; the player
        # can no longer submit because they are no longer active.
        player.points = max(player.points, room.rules.elimination_score)
        room.players.mark_eliminated(player.player_id)
        room.current_round.numbers.pop(player.player_id, None)

    async def disconnect(
        self,
        ctx: ConnectionContext,
        reason: str = "unknown",
        close_code: int | None = None,
    ) -> None:
        room_id = ctx.room_id
        ctx.room_id = None
        if room_id is None:
            return

        room = self.directory.get(room_id)
        if room is None:
            return

        remove_room = False

        async with room.lock:
            player = room.players.get(ctx.player_id)
            if player is None or player.websocket is not ctx.websocket:
                return

            if room.state == "waiting":
                room.players.remove(player.player_id)
                self._cancel_timer(room, TIMER_GAME_START)
            elif room.state == "playing":
                self._eliminate_disconnected(room, player)
            player.websocket = None

            if not room.players.connected_players():
                self._clear_timers(room)
                remove_room = True
            elif room.state != "finished":
                await self._broadcast(room, build_player_left(room))
                current = room.current_round
                if room.state == "playing" and current.phase == "idle":
                    # Between rounds: nobody left to play against.
                    if len(room.players.active_players()) <= 1:
                        await finish_game(self, room)
                elif (
                    room.state == "playing"
                    and current.phase == "open"
                    and room.rules.early_close
                    and all_active_submitted(room)
                ):
                    await close_round(self, room, current.number, reason="disconnect")

            self._log_ws_event(
                "disconnect",
                roomId=room_id,
                peerId=ctx.player_id,
                state=room.state,
                reason=reason,
                closeCode=close_code,
            )

        if remove_room and await self.directory.discard(room_id, room):
            self._log_ws_event("room_empty", roomId=room_id)

    def _cancel_timer(self, room: RoomRuntime, key: str) -> None:
        task = room.timers.get(key)
        # A timer callback may cancel its own key; never cancel the running task.
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        room.timers[key] = None

    def _clear_timers(self, room: RoomRuntime) -> None:
        for key in TIMER_KEYS:
            self._cancel_timer(room, key)

    def _schedule_timer(
        self,
        room: RoomRuntime,
        key: str,
        delay_ms: int,
        callback: TimerCallback,
    ) -> None:
        self._cancel_timer(room, key)
        delay_s = max(0, delay_ms or 0) / 1000

        async def runner() -> None:
            try:
                await asyncio.sleep(delay_s)
            except asyncio.CancelledError:
                return
            async with room.lock:
                if room.timers.get(key) is not asyncio.current_task():
                    return
                room.timers[key] = None
                try:
                    await callback(room)
                except Exception:
                    logger.exception("Timer %s failed for room %s", key, room.room_id)

        room.timers[key] = asyncio.create_task(runner(), name=f"{room.room_id}:{key}")


runtime = GameRuntime(RoomDirectory())
