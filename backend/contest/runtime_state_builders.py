from __future__ import annotations

from typing import Any

from .runtime_scoring import RoundOutcome
from .runtime_types import PlayerConnection, RoomRuntime


def build_roster(room: RoomRuntime) -> list[dict[str, Any]]:
    return [{"name": name, "number": number} for name, number in room.players.snapshot()]


def build_player_info(player: PlayerConnection) -> dict[str, Any]:
    return {
        "type": "playerInfo",
        "playerId": player.player_id,
        "playerNumber": player.player_number,
    }


def build_player_joined(room: RoomRuntime) -> dict[str, Any]:
    return {
        "type": "playerJoined",
        "count": len(room.players),
        "players": room.players.names(),
    }


def build_player_left(room: RoomRuntime) -> dict[str, Any]:
    return {
        "type": "playerLeft",
        "count": len(room.players),
        "players": [player.name for player in room.players.active_players()],
    }


def build_round_start(room: RoomRuntime) -> dict[str, Any]:
    return {
        "type": "roundStart",
        "round": room.current_round.number,
        "endsAt": room.current_round.ends_at,
    }


def build_player_summaries(room: RoomRuntime) -> list[dict[str, Any]]:
    return [
        {
            "id": player.player_id,
            "name": player.name,
            "points": player.points,
            "eliminated": player.eliminated,
        }
        for player in room.players
    ]


def build_round_result(room: RoomRuntime, outcome: RoundOutcome) -> dict[str, Any]:
    no_choice_names = []
    for player_id in outcome.no_choice_ids:
        player = room.players.get(player_id)
        if player is not None:
            no_choice_names.append(player.name)

    return {
        "type": "roundResult",
        "round": room.current_round.number,
        "average": outcome.average,
        "target": outcome.target,
        "winner": outcome.winner_id,
        "numbers": dict(outcome.numbers),
        "noChoicePlayers": no_choice_names,
        "players": build_player_summaries(room),
    }


def build_game_over(winner_name: str) -> dict[str, Any]:
    return {"type": "gameOver", "winner": winner_name}


def build_error(message: str, code: str) -> dict[str, Any]:
    return {"type": "error", "code": code, "message": message}


def build_room_summary(room: RoomRuntime) -> dict[str, Any]:
    return {
        "roomId": room.room_id,
        "state": room.state,
        "capacity": room.rules.capacity,
        "count": len(room.players),
        "playerNumbers": build_roster(room),
        "round": room.current_round.number,
        "roundPhase": room.current_round.phase,
        "roundEndsAt": room.current_round.ends_at,
        "players": build_player_summaries(room),
        "winner": room.winner_name,
    }
