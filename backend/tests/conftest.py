import asyncio
from typing import Any, Callable

import pytest
import pytest_asyncio
from starlette.websockets import WebSocketState

from contest.config import GameRules
from contest.runtime import GameRuntime
from contest.runtime_directory import RoomDirectory
from contest.runtime_registry import PlayerRegistry
from contest.runtime_types import ConnectionContext
from contest.runtime_utils import random_id


class FakeWebSocket:
    """Records outbound frames in place of a real connection."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    def close(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == message_type]

    def types(self) -> list[str]:
        return [str(message.get("type")) for message in self.sent]


FAST_RULES = GameRules(
    capacity=4,
    round_duration_ms=400,
    next_round_delay_ms=20,
    game_start_delay_ms=10,
)


@pytest.fixture()
def rules() -> GameRules:
    return FAST_RULES


@pytest.fixture()
def registry() -> PlayerRegistry:
    return PlayerRegistry("ROOM1", capacity=4)


@pytest_asyncio.fixture()
async def game_runtime(rules):
    instance = GameRuntime(RoomDirectory(), rules)
    yield instance
    await instance.shutdown()


@pytest.fixture()
def connect() -> Callable[[], ConnectionContext]:
    def factory() -> ConnectionContext:
        return ConnectionContext(player_id=random_id(), websocket=FakeWebSocket())  # type: ignore[arg-type]

    return factory


@pytest.fixture()
def wait_for():
    async def waiter(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return waiter


@pytest_asyncio.fixture()
async def full_room(game_runtime, connect, wait_for):
    """Four players joined to ROOM1 with the game started and round 1 open."""
    contexts = [connect() for _ in range(4)]
    for name, ctx in zip("ABCD", contexts):
        assert await game_runtime.join(ctx, "ROOM1", name)
    room = game_runtime.directory.get("ROOM1")
    await wait_for(lambda: room.current_round.phase == "open")
    return room, contexts
