from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from threading import RLock
from typing import Dict, List, Optional

from .exceptions import Conflict, IntegrityViolation, NoDrawer, NotFound
from .messages import is_word_invalid

logger = logging.getLogger(__name__)


@dataclass
class Player:
    player_id: int
    username: str
    points: int = 0


@dataclass
class ActiveSession:
    connection_id: str
    player: Player
    is_drawing: bool = False
    current_word: Optional[str] = None


def _snapshot(session: ActiveSession) -> ActiveSession:
    return replace(session, player=replace(session.player))


def _is_blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


class PlayerRegistry:
    """Sessions of the players currently connected to the game.

    Every method is atomic under the registry mutex and hands out copies,
    so callers can never mutate a live record behind the lock.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._lock = RLock()
        self._sessions: Dict[str, ActiveSession] = {}
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def is_active(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._sessions

    def add_active(self, player: Player, connection_id: str) -> ActiveSession:
        if _is_blank(connection_id):
            raise NotFound("Cannot activate a player without a connection id.")
        with self._lock:
            if connection_id in self._sessions:
                raise Conflict(f"Connection {connection_id} is already bound to a player.")
            for session in self._sessions.values():
                if session.player.player_id == player.player_id:
                    raise Conflict(f"Player {player.username} is already active.")
            session = ActiveSession(connection_id=connection_id, player=replace(player))
            self._sessions[connection_id] = session
            logger.info("Player %s joined on %s", player.username, connection_id)
            return _snapshot(session)

    def remove_active(self, connection_id: str) -> Optional[ActiveSession]:
        with self._lock:
            session = self._sessions.pop(connection_id, None)
        if session is None:
            logger.debug("Session %s already removed", connection_id)
            return None
        logger.info("Player %s left (%s)", session.player.username, connection_id)
        return _snapshot(session)

    def list_active(self) -> List[ActiveSession]:
        with self._lock:
            return [_snapshot(session) for session in self._sessions.values()]

    def find_by_connection(self, connection_id: str) -> ActiveSession:
        if _is_blank(connection_id):
            raise NotFound("Cannot look up a session for a blank connection id.")
        with self._lock:
            session = self._sessions.get(connection_id)
            if session is None:
                raise NotFound(f"No active session for connection {connection_id}.")
            return _snapshot(session)

    def find_drawer(self) -> ActiveSession:
        with self._lock:
            drawers = [session for session in self._sessions.values() if session.is_drawing]
            if not drawers:
                raise NoDrawer("There is no drawing player.")
            if len(drawers) > 1:
                raise IntegrityViolation(
                    f"More than one drawing player: {[d.connection_id for d in drawers]}"
                )
            return _snapshot(drawers[0])

    def has_drawer(self) -> bool:
        try:
            self.find_drawer()
        except NoDrawer:
            return False
        return True

    def set_drawer(self, connection_id: str, word: str) -> ActiveSession:
        if is_word_invalid(word):
            raise IntegrityViolation("Cannot hand out a None, empty or blank word.")
        with self._lock:
            target = self._sessions.get(connection_id) if not _is_blank(connection_id) else None
            if target is None:
                raise IntegrityViolation(
                    f"Cannot make {connection_id!r} the drawer: no such active session."
                )
            for session in self._sessions.values():
                if session.is_drawing:
                    session.is_drawing = False
                    session.current_word = None
            target.is_drawing = True
            target.current_word = word
            return _snapshot(target)

    def add_points(self, connection_id: str, delta: int) -> int:
        if delta <= 0:
            logger.warning("Ignoring non-positive point delta %s for %s", delta, connection_id)
            with self._lock:
                session = self._sessions.get(connection_id)
                return session.player.points if session else 0
        with self._lock:
            session = self._sessions.get(connection_id) if not _is_blank(connection_id) else None
            if session is None:
                raise IntegrityViolation(f"Cannot add points to inactive connection {connection_id}.")
            session.player.points += delta
            return session.player.points

    def pick_random(self) -> ActiveSession:
        with self._lock:
            if not self._sessions:
                raise IntegrityViolation("Cannot pick a player from an empty game.")
            return _snapshot(self._rng.choice(list(self._sessions.values())))
