from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import GameRules
    from .runtime_registry import PlayerRegistry

logger = logging.getLogger(__name__)


@dataclass
class RoundOutcome:
    average: float
    target: float
    winner_id: str | None
    numbers: dict[str, int]
    no_choice_ids: list[str] = field(default_factory=list)
    penalties: dict[str, int] = field(default_factory=dict)
    eliminated_ids: list[str] = field(default_factory=list)


def calculate_target(choices: list[int], factor: float) -> tuple[float, float]:
    """Return ``(average, target)`` for the submitted choices."""
    if not choices:
        return 0.0, 0.0
    average = sum(choices) / len(choices)
    return average, average * factor


def find_winner(numbers: dict[str, int], candidate_ids: list[str], target: float) -> str | None:
    # Strict comparison keeps the first candidate on a tie.
    winner: str | None = None
    closest: float | None = None
    for player_id in candidate_ids:
        if player_id not in numbers:
            continue
        distance = abs(numbers[player_id] - target)
        if closest is None or distance < closest:
            closest = distance
            winner = player_id
    return winner


def score_round(
    players: "PlayerRegistry",
    submissions: dict[str, int],
    rules: "GameRules",
) -> RoundOutcome | None:
    """Apply one scoring pass to the registry.

    Returns ``None`` without touching any score when no active player is
    left. Otherwise non-submitters take ``rules.no_choice_penalty``, every
    submitter except the winner takes ``rules.loss_penalty`` and anyone at
    or above ``rules.elimination_score`` is eliminated.
    """
    active = players.active_players()
    if not active:
        return None

    active_ids = [player.player_id for player in active]
    numbers = {pid: submissions[pid] for pid in active_ids if pid in submissions}
    no_choice_ids = [pid for pid in active_ids if pid not in numbers]

    average, target = calculate_target(list(numbers.values()), rules.target_factor)
    winner_id = find_winner(numbers, active_ids, target) if numbers else None

    penalties: dict[str, int] = {}
    for player in active:
        if player.player_id not in numbers:
            penalty = rules.no_choice_penalty
        elif player.player_id != winner_id:
            penalty = rules.loss_penalty
        else:
            continue
        player.points += penalty
        penalties[player.player_id] = penalty
        logger.debug("room=%s %s +%s -> %s", players.room_id, player.name, penalty, player.points)

    eliminated_ids: list[str] = []
    for player in active:
        if player.points >= rules.elimination_score and players.mark_eliminated(player.player_id):
            eliminated_ids.append(player.player_id)
            logger.info("room=%s %s eliminated with %s points", players.room_id, player.name, player.points)

    return RoundOutcome(
        average=average,
        target=target,
        winner_id=winner_id,
        numbers=numbers,
        no_choice_ids=no_choice_ids,
        penalties=penalties,
        eliminated_ids=eliminated_ids,
    )
