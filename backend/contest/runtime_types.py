from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from fastapi import WebSocket

from .config import GameRules

if TYPE_CHECKING:
    from .runtime_registry import PlayerRegistry

RoomState = Literal["waiting", "playing", "finished"]
RoundPhase = Literal["idle", "open", "closing"]


@dataclass
class PlayerConnection:
    player_id: str
    name: str
    player_number: int
    websocket: WebSocket | None
    points: int = 0
    eliminated: bool = False
    joined_at: int = 0

    @property
    def is_connected(self) -> bool:
        return self.websocket is not None


@dataclass
class RoundState:
    number: int = 0
    phase: RoundPhase = "idle"
    numbers: dict[str, int] = field(default_factory=dict)
    ends_at: int | None = None


@dataclass
class RoomRuntime:
    room_id: str
    rules: GameRules
    players: "PlayerRegistry"
    state: RoomState = "waiting"
    current_round: RoundState = field(default_factory=RoundState)
    created_at: int = 0
    finished_at: int | None = None
    winner_name: str | None = None
    timers: dict[str, asyncio.Task[None] | None] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def is_finished(self) -> bool:
        return self.state == "finished"


@dataclass
class ConnectionContext:
    player_id: str
    websocket: WebSocket
    room_id: str | None = None
    connected_at: int = 0
