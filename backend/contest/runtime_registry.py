from __future__ import annotations

import logging
from typing import Iterator

from fastapi import WebSocket

from .runtime_errors import RoomFull, RoomNotWaiting
from .runtime_types import PlayerConnection
from .runtime_utils import now_ms

logger = logging.getLogger(__name__)


class PlayerRegistry:
    """Seats of a single room, keyed by player id in admission order.

    The registry accepts admissions until it is closed, which happens when
    the room leaves the waiting state. Seat numbers are the smallest free
    integer in ``[1, capacity]`` at admission time.
    """

    def __init__(self, room_id: str, capacity: int) -> None:
        self.room_id = room_id
        self.capacity = capacity
        self._players: dict[str, PlayerConnection] = {}
        self._accepting = True

    def __len__(self) -> int:
        return len(self._players)

    def __contains__(self, player_id: object) -> bool:
        return player_id in self._players

    def __iter__(self) -> Iterator[PlayerConnection]:
        return iter(list(self._players.values()))

    @property
    def is_full(self) -> bool:
        return len(self._players) >= self.capacity

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    def close(self) -> None:
        self._accepting = False

    def get(self, player_id: str) -> PlayerConnection | None:
        return self._players.get(player_id)

    def _next_player_number(self) -> int | None:
        used = {player.player_number for player in self._players.values()}
        for number in range(1, self.capacity + 1):
            if number not in used:
                return number
        return None

    def admit(self, player_id: str, name: str, websocket: WebSocket | None) -> PlayerConnection:
        if not self._accepting:
            raise RoomNotWaiting(self.room_id)
        if self.is_full:
            raise RoomFull(self.room_id)

        player_number = self._next_player_number()
        if player_number is None:
            raise RoomFull(self.room_id)

        player = PlayerConnection(
            player_id=player_id,
            name=name,
            player_number=player_number,
            websocket=websocket,
            joined_at=now_ms(),
        )
        self._players[player_id] = player
        logger.debug("room=%s admitted %s as seat %s", self.room_id, player_id, player_number)
        return player

    def remove(self, player_id: str) -> PlayerConnection | None:
        return self._players.pop(player_id, None)

    def mark_eliminated(self, player_id: str) -> bool:
        player = self._players.get(player_id)
        if player is None or player.eliminated:
            return False
        player.eliminated = True
        return True

    def snapshot(self) -> list[tuple[str, int]]:
        return sorted(
            ((player.name, player.player_number) for player in self._players.values()),
            key=lambda item: item[1],
        )

    def active_players(self) -> list[PlayerConnection]:
        return [player for player in self._players.values() if not player.eliminated]

    def active_ids(self) -> set[str]:
        return {player.player_id for player in self._players.values() if not player.eliminated}

    def connected_players(self) -> list[PlayerConnection]:
        return [player for player in self._players.values() if player.is_connected]

    def names(self) -> list[str]:
        return [player.name for player in self._players.values()]
