from __future__ import annotations

from .config import GameRules, settings

DEFAULT_RULES: GameRules = settings.game_rules()

NO_WINNER_NAME = "No one"
DEFAULT_PLAYER_NAME = "Player"
MAX_PLAYER_NAME_LENGTH = 24
MAX_ROOM_ID_LENGTH = 64

ROSTER_MESSAGE_TYPES = frozenset({"playerJoined", "playerLeft"})

TIMER_GAME_START = "gameStart"
TIMER_ROUND_DEADLINE = "roundDeadline"
TIMER_NEXT_ROUND = "nextRound"
TIMER_KEYS = (TIMER_GAME_START, TIMER_ROUND_DEADLINE, TIMER_NEXT_ROUND)

ERROR_ROOM_FULL = "ROOM_FULL"
ERROR_ROOM_NOT_WAITING = "ROOM_NOT_WAITING"
ERROR_INVALID_ROOM_ID = "INVALID_ROOM_ID"
ERROR_ALREADY_JOINED = "ALREADY_JOINED"
