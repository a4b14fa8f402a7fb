from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .runtime_constants import (
    NO_WINNER_NAME,
    TIMER_GAME_START,
    TIMER_NEXT_ROUND,
    TIMER_ROUND_DEADLINE,
)
from .runtime_scoring import score_round
from .runtime_state_builders import build_game_over, build_round_result, build_round_start
from .runtime_types import RoundState
from .runtime_utils import now_ms

if TYPE_CHECKING:
    from .runtime import GameRuntime
    from .runtime_types import PlayerConnection, RoomRuntime

logger = logging.getLogger(__name__)


def all_active_submitted(room: "RoomRuntime") -> bool:
    return room.players.active_ids() <= room.current_round.numbers.keys()


async def start_game(runtime: "GameRuntime", room: "RoomRuntime") -> bool:
    if room.state != "waiting":
        return False
    if len(room.players) < room.rules.capacity:
        runtime._log_ws_event(
            "game_start_aborted",
            level=logging.WARNING,
            roomId=room.room_id,
            count=len(room.players),
        )
        return False

    runtime._cancel_timer(room, TIMER_GAME_START)
    room.players.close()
    room.state = "playing"
    runtime._log_ws_event("game_start", roomId=room.room_id, players=room.players.names())
    await runtime._broadcast(room, {"type": "gameStart"})
    await open_round(runtime, room)
    return True


async def open_round(runtime: "GameRuntime", room: "RoomRuntime") -> bool:
    if room.state != "playing" or room.current_round.phase != "idle":
        return False

    runtime._cancel_timer(room, TIMER_NEXT_ROUND)
    if len(room.players.active_players()) <= 1:
        await finish_game(runtime, room)
        return False

    duration_ms = room.rules.round_duration_ms
    round_number = room.current_round.number + 1
    room.current_round = RoundState(
        number=round_number,
        phase="open",
        ends_at=now_ms() + duration_ms,
    )

    async def on_deadline(inner_room: "RoomRuntime") -> None:
        await close_round(runtime, inner_room, round_number, reason="timeout")

    runtime._schedule_timer(room, TIMER_ROUND_DEADLINE, duration_ms, on_deadline)
    runtime._log_ws_event("round_open", roomId=room.room_id, round=round_number, endsAt=room.current_round.ends_at)
    await runtime._broadcast(room, build_round_start(room))
    return True


async def submit_number(
    runtime: "GameRuntime",
    room: "RoomRuntime",
    player: "PlayerConnection",
    number: int,
) -> bool:
    current = room.current_round
    if room.state != "playing" or current.phase != "open":
        return False
    if player.eliminated or player.player_id not in room.players:
        return False

    current.numbers[player.player_id] = number
    if room.rules.early_close and all_active_submitted(room):
        await close_round(runtime, room, current.number, reason="complete")
    return True


async def close_round(
    runtime: "GameRuntime",
    room: "RoomRuntime",
    expected_round: int,
    reason: str = "timeout",
) -> bool:
    """Score the open round exactly once.

    Both the deadline timer and the all-submitted check call this; the
    ``open -> closing`` transition is the guard, so whichever comes second
    returns ``False`` without side effects.
    """
    current = room.current_round
    if current.number != expected_round or current.phase != "open":
        logger.debug(
            "close skipped room=%s round=%s expected=%s phase=%s reason=%s",
            room.room_id,
            current.number,
            expected_round,
            current.phase,
            reason,
        )
        return False

    current.phase = "closing"
    runtime._cancel_timer(room, TIMER_ROUND_DEADLINE)

    outcome = score_round(room.players, current.numbers, room.rules)
    if outcome is None:
        runtime._log_ws_event("round_skipped", roomId=room.room_id, round=current.number, reason=reason)
        await finish_game(runtime, room)
        return True

    runtime._increment_stat("roundsScored")
    runtime._log_ws_event(
        "round_scored",
        roomId=room.room_id,
        round=current.number,
        reason=reason,
        average=outcome.average,
        target=outcome.target,
        winner=outcome.winner_id,
        eliminated=outcome.eliminated_ids,
    )
    await runtime._broadcast(room, build_round_result(room, outcome))

    if len(room.players.active_players()) <= 1:
        await finish_game(runtime, room)
        return True

    current.phase = "idle"
    current.ends_at = None

    async def on_next_round(inner_room: "RoomRuntime") -> None:
        if inner_room.current_round.number != expected_round:
            return
        await open_round(runtime, inner_room)

    runtime._schedule_timer(room, TIMER_NEXT_ROUND, room.rules.next_round_delay_ms, on_next_round)
    return True


async def finish_game(runtime: "GameRuntime", room: "RoomRuntime") -> None:
    if room.state == "finished":
        return

    survivors = room.players.active_players()
    winner_name = survivors[0].name if len(survivors) == 1 else NO_WINNER_NAME

    runtime._clear_timers(room)
    room.players.close()
    room.state = "finished"
    room.finished_at = now_ms()
    room.winner_name = winner_name
    room.current_round.phase = "idle"
    room.current_round.ends_at = None
    runtime._increment_stat("gamesFinished")
    runtime._log_ws_event("game_over", roomId=room.room_id, winner=winner_name, rounds=room.current_round.number)
    await runtime._broadcast(room, build_game_over(winner_name))
