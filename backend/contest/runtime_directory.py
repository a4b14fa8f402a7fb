from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .runtime_types import RoomRuntime

logger = logging.getLogger(__name__)


class RoomDirectory:
    """Process-lifetime map of room key to live room.

    Finished or empty rooms are not swept; they are dropped the next time
    their key is touched.
    """

    def __init__(self) -> None:
        self.rooms: dict[str, RoomRuntime] = {}
        self.lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self.rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self.rooms

    def get(self, room_id: str) -> RoomRuntime | None:
        return self.rooms.get(room_id)

    def values(self) -> list[RoomRuntime]:
        return list(self.rooms.values())

    async def resolve(
        self,
        room_id: str,
        factory: Callable[[str], RoomRuntime],
        on_discard: Callable[[RoomRuntime], None] | None = None,
    ) -> RoomRuntime:
        async with self.lock:
            existing = self.rooms.get(room_id)
            if existing is not None and not existing.is_finished:
                return existing
            if existing is not None:
                logger.info("room=%s finished, replacing with a fresh room", room_id)
                if on_discard is not None:
                    on_discard(existing)
            room = factory(room_id)
            self.rooms[room_id] = room
            return room

    async def discard(self, room_id: str, room: RoomRuntime) -> bool:
        async with self.lock:
            if self.rooms.get(room_id) is not room:
                return False
            self.rooms.pop(room_id, None)
            return True

    async def drain(self) -> list[RoomRuntime]:
        async with self.lock:
            rooms = list(self.rooms.values())
            self.rooms.clear()
        return rooms
