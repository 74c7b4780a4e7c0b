from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from django.conf import settings

from .broadcast import Broadcaster
from .coordinator import TurnCoordinator
from .registry import PlayerRegistry
from .repositories import PlayerRepository, WordRepository
from .scoreboard import ScoreBoard
from .words import WordSource


@dataclass
class Game:
    """The components one server process shares between all connections."""

    registry: PlayerRegistry
    words: WordSource
    players: PlayerRepository
    game_channel: Broadcaster
    draw_channel: Broadcaster
    coordinator: TurnCoordinator
    scoreboard: ScoreBoard


def build_game(
    *,
    players=None,
    word_repository=None,
    channel_layer=None,
    rng: Optional[random.Random] = None,
    retry_attempts: Optional[int] = None,
    retry_delay: Optional[float] = None,
    sleep=asyncio.sleep,
) -> Game:
    rng = rng or random.Random()
    if retry_attempts is None:
        retry_attempts = settings.GAME_DRAWER_RETRY_ATTEMPTS
    if retry_delay is None:
        retry_delay = settings.GAME_DRAWER_RETRY_DELAY_MS / 1000

    registry = PlayerRegistry(rng=rng)
    words = WordSource(word_repository or WordRepository(), rng=rng)
    players = players or PlayerRepository()
    game_channel = Broadcaster("game", channel_layer=channel_layer)
    draw_channel = Broadcaster("draw", channel_layer=channel_layer)
    coordinator = TurnCoordinator(
        registry,
        words,
        players,
        game_channel,
        retry_attempts=retry_attempts,
        retry_delay=retry_delay,
        sleep=sleep,
    )
    return Game(
        registry=registry,
        words=words,
        players=players,
        game_channel=game_channel,
        draw_channel=draw_channel,
        coordinator=coordinator,
        scoreboard=coordinator.scoreboard,
    )


@lru_cache(maxsize=None)
def default_game() -> Game:
    return build_game()
