"""Turn state machine: who draws, which word, and how the turn moves on.

Every transition that reads or writes drawer state runs under one
``asyncio.Lock``. Outbound frames are collected while the lock is held and
delivered after it is released. The delivery lock is taken before the state
lock is let go, so batches reach the channel layer in commit order.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import IntegrityViolation, InvalidGuess, NoDrawer, NotFound
from .messages import GameMessage, MsgType, compare_words
from .reconcile import retry_until
from .registry import ActiveSession, Player
from .scoreboard import ScoreBoard

logger = logging.getLogger(__name__)

POINTS_PER_GUESS = 1


class TurnState(str, enum.Enum):
    NO_DRAWER = "NO_DRAWER"
    DRAWER_ASSIGNED = "DRAWER_ASSIGNED"


@dataclass(frozen=True)
class Outbound:
    message: GameMessage
    to: Optional[str] = None
    exclude: Optional[str] = None


def guess_matches(guess, word) -> bool:
    try:
        return compare_words(guess, word)
    except InvalidGuess as exc:
        if isinstance(guess, str) and guess.strip():
            logger.error("Current word is unusable: %s", exc)
        return False


class TurnCoordinator:
    def __init__(
        self,
        registry,
        words,
        players,
        broadcaster,
        *,
        retry_attempts: int = 3,
        retry_delay: float = 0.1,
        sleep=asyncio.sleep,
    ):
        self.registry = registry
        self.words = words
        self.players = players
        self.broadcaster = broadcaster
        self.scoreboard = ScoreBoard(registry)
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._delivery_lock = asyncio.Lock()

    @property
    def state(self) -> TurnState:
        if self.registry.has_drawer():
            return TurnState.DRAWER_ASSIGNED
        return TurnState.NO_DRAWER

    @asynccontextmanager
    async def _transition(self):
        """Run the body under the state lock, then deliver what it queued."""
        outbound: List[Outbound] = []
        async with self._lock:
            yield outbound
            await self._delivery_lock.acquire()
        try:
            await self._deliver(outbound)
        finally:
            self._delivery_lock.release()

    # transitions

    async def on_join(self, player: Player, connection_id: str) -> bool:
        """Activate a player; returns True when the join started a turn."""
        async with self._transition() as outbound:
            self.registry.add_active(player, connection_id)
            started = not self.registry.has_drawer()
            if started:
                chosen = self.registry.pick_random()
                outbound.extend(await self._assign_turn(chosen.connection_id))
            else:
                outbound.append(self._scoreboard_message())
        return started

    async def start_game(self) -> ActiveSession:
        async with self._transition() as outbound:
            chosen = self.registry.pick_random()
            outbound.extend(await self._assign_turn(chosen.connection_id))
            drawer = self.registry.find_drawer()
        return drawer

    async def on_guess(self, connection_id: str, text) -> bool:
        """Handle a chat line; returns True when it won the turn."""
        async with self._transition() as outbound:
            try:
                sender = self.registry.find_by_connection(connection_id)
            except NotFound as exc:
                raise IntegrityViolation(f"Message from an inactive connection: {exc}") from exc

            won = self._is_winning_guess(sender, text)
            if won:
                outbound.extend(await self._award_turn(sender))
            else:
                outbound.append(self._chat(sender, text))
        return won

    async def clear_canvas(self, connection_id: str) -> bool:
        cleared = False
        async with self._transition() as outbound:
            try:
                drawer = self.registry.find_drawer()
            except NoDrawer:
                drawer = None
            if drawer is not None and drawer.connection_id == connection_id:
                outbound.append(Outbound(GameMessage(MsgType.CLEAN_CANVAS)))
                cleared = True
        if not cleared:
            logger.info("Ignoring canvas clear from non-drawer %s", connection_id)
        return cleared

    async def on_disconnect(self, connection_id: str) -> None:
        if await self._leave(connection_id):
            await self._reassign_after_drawer_left()

    async def on_drawer_disconnect(self, connection_id: str) -> None:
        await self._leave(connection_id, announce=False)
        await self._reassign_after_drawer_left()

    async def on_non_drawer_disconnect(self, connection_id: str) -> None:
        # Falls back to reassignment if the turn moved to this player.
        await self.on_disconnect(connection_id)

    # internals

    def _is_winning_guess(self, sender: ActiveSession, text) -> bool:
        try:
            drawer = self.registry.find_drawer()
        except NoDrawer:
            logger.info("Guess from %s while nobody is drawing", sender.player.username)
            return False
        if not guess_matches(text, drawer.current_word):
            return False
        if drawer.connection_id == sender.connection_id:
            logger.info("Drawer %s typed the word; not scored", sender.player.username)
            return False
        return True

    async def _award_turn(self, winner: ActiveSession) -> List[Outbound]:
        # Nothing is changed until both the next word and the stored score exist.
        word = await self.words.next()
        await self.players.add_points(winner.player.player_id, POINTS_PER_GUESS)
        self.registry.add_points(winner.connection_id, POINTS_PER_GUESS)

        name = winner.player.username
        logger.info("%s guessed the word", name)
        outbound = [
            Outbound(
                GameMessage(MsgType.YOU_GUESSED_IT, f"Well done {name}, you guessed it!"),
                to=winner.connection_id,
            ),
            Outbound(
                GameMessage(MsgType.MESSAGE, f"{name} guessed the word!"),
                exclude=winner.connection_id,
            ),
            Outbound(GameMessage(MsgType.CLEAN_CANVAS)),
        ]
        return outbound + self._hand_over(winner.connection_id, word)

    async def _assign_turn(self, connection_id: str) -> List[Outbound]:
        word = await self.words.next()
        return self._hand_over(connection_id, word)

    def _hand_over(self, connection_id: str, word: str) -> List[Outbound]:
        drawer = self.registry.set_drawer(connection_id, word)
        logger.info("%s is drawing now", drawer.player.username)
        return [
            Outbound(GameMessage(MsgType.CLEAN_WORD_TO_GUESS)),
            Outbound(GameMessage(MsgType.WORD_TO_GUESS, word), to=connection_id),
            self._scoreboard_message(),
        ]

    async def _leave(self, connection_id: str, announce: bool = True) -> bool:
        """Remove the session; returns whether it held the turn."""
        async with self._transition() as outbound:
            try:
                was_drawer = self.registry.find_by_connection(connection_id).is_drawing
            except NotFound:
                was_drawer = False
            self.registry.remove_active(connection_id)
            if announce and not was_drawer:
                outbound.append(self._scoreboard_message())
        return was_drawer

    async def _probe_drawer(self) -> ActiveSession:
        async with self._lock:
            return self.registry.find_drawer()

    async def _reassign_after_drawer_left(self) -> None:
        if not len(self.registry):
            logger.info("Last player left; waiting for players")
            return

        drawer = await retry_until(
            self._probe_drawer,
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            retry_on=NoDrawer,
            sleep=self._sleep,
        )
        async with self._transition() as outbound:
            if not len(self.registry):
                return
            if drawer is None and not self.registry.has_drawer():
                logger.warning(
                    "No drawer after %s attempts; starting a new turn", self.retry_attempts
                )
                chosen = self.registry.pick_random()
                outbound.extend(await self._assign_turn(chosen.connection_id))
            else:
                outbound.append(self._scoreboard_message())

    def _chat(self, sender: ActiveSession, text) -> Outbound:
        return Outbound(GameMessage(MsgType.MESSAGE, f"{sender.player.username}: {text}"))

    def _scoreboard_message(self) -> Outbound:
        return Outbound(GameMessage(MsgType.SCOREBOARD, self.scoreboard.encode()))

    async def _deliver(self, outbound: List[Outbound]) -> None:
        for item in outbound:
            frame = item.message.encode()
            if item.to is not None:
                await self.broadcaster.send(item.to, frame)
            else:
                await self.broadcaster.send_all_except(item.exclude, frame)
