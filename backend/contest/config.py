from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_PUBLIC_DIR = Path(__file__).resolve().parents[2] / "public"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class GameRules:
    capacity: int = 4
    round_duration_ms: int = 30_000
    next_round_delay_ms: int = 5_000
    game_start_delay_ms: int = 6_000
    elimination_score: int = 10
    target_factor: float = 0.8
    no_choice_penalty: int = 2
    loss_penalty: int = 1
    min_number: int = 0
    max_number: int = 100
    early_close: bool = True


class Settings:
    def __init__(self) -> None:
        self.ws_port = int(os.getenv("WS_PORT", os.getenv("PORT", "3000")))
        self.log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
        self.public_dir = Path(os.getenv("PUBLIC_DIR", "").strip() or DEFAULT_PUBLIC_DIR)
        self.room_capacity = max(2, int(os.getenv("ROOM_CAPACITY", "4")))
        self.round_duration_ms = max(100, int(os.getenv("ROUND_DURATION_MS", "30000")))
        self.next_round_delay_ms = max(0, int(os.getenv("NEXT_ROUND_DELAY_MS", "5000")))
        self.game_start_delay_ms = max(0, int(os.getenv("GAME_START_DELAY_MS", "6000")))
        self.elimination_score = max(1, int(os.getenv("ELIMINATION_SCORE", "10")))
        self.target_factor = float(os.getenv("TARGET_FACTOR", "0.8"))
        self.round_early_close = _env_bool("ROUND_EARLY_CLOSE", True)

    def game_rules(self) -> GameRules:
        return GameRules(
            capacity=self.room_capacity,
            round_duration_ms=self.round_duration_ms,
            next_round_delay_ms=self.next_round_delay_ms,
            game_start_delay_ms=self.game_start_delay_ms,
            elimination_score=self.elimination_score,
            target_factor=self.target_factor,
            early_close=self.round_early_close,
        )


settings = Settings()
