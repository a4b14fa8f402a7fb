from __future__ import annotations

import re
import time
import uuid
from typing import Any

from .runtime_constants import (
    DEFAULT_PLAYER_NAME,
    MAX_PLAYER_NAME_LENGTH,
    MAX_ROOM_ID_LENGTH,
)
from .runtime_errors import ProtocolError


def now_ms() -> int:
    return int(time.time() * 1000)


def random_id() -> str:
    return str(uuid.uuid4())


def sanitize_room_id(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()[:MAX_ROOM_ID_LENGTH]


def sanitize_player_name(raw: Any) -> str:
    value = str(raw or "").strip()
    if not value:
        return DEFAULT_PLAYER_NAME
    cleaned = re.sub(r"\s+", " ", value)[:MAX_PLAYER_NAME_LENGTH].strip()
    return cleaned or DEFAULT_PLAYER_NAME


def parse_submitted_number(raw: Any, minimum: int, maximum: int) -> int:
    # bool is an int subclass; true/false are not valid choices.
    if isinstance(raw, bool):
        raise ProtocolError(f"number must be an integer, got {raw!r}")
    if isinstance(raw, float):
        if not raw.is_integer():
            raise ProtocolError(f"number must be an integer, got {raw!r}")
        raw = int(raw)
    if not isinstance(raw, int):
        raise ProtocolError(f"number must be an integer, got {type(raw).__name__}")
    if raw < minimum or raw > maximum:
        raise ProtocolError(f"number {raw} outside [{minimum}, {maximum}]")
    return raw
