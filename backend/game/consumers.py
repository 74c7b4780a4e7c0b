import json
import logging
from contextlib import asynccontextmanager

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from authapp.tokens import verify_token

from .exceptions import Conflict, GameError, IntegrityViolation, NotFound
from .messages import MsgType
from .runtime import default_game

logger = logging.getLogger(__name__)

CLOSE_INVALID_TOKEN = 1008
CLOSE_INTEGRITY_VIOLATION = 1011
CLOSE_ALREADY_ACTIVE = 4409
INVALID_TOKEN_REASON = "Invalid token."
INTEGRITY_VIOLATION_REASON = "Game integrity has been violated."
ALREADY_ACTIVE_REASON = "Player is already active."

CHAT_TYPES = {MsgType.MESSAGE.value, "GUESS", "CHAT"}
CLEAR_TYPES = {MsgType.CLEAN_CANVAS.value, "CLEAR_CANVAS"}


def parse_credential(text_data):
    """Split the first frame into ``(token, game message or None)``.

    The frame is either the bare token or a JSON object carrying a
    ``token`` key and, optionally, a regular ``type``/``content`` message.
    """
    if text_data is None:
        return None, None
    stripped = text_data.strip()
    if not stripped.startswith("{"):
        return stripped, None
    try:
        payload = json.loads(stripped)
    except ValueError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    message = payload if payload.get("type") else None
    return payload.get("token"), message


class TokenGatedConsumer(AsyncJsonWebsocketConsumer):
    """Accepts the socket, then expects a bearer token as the first frame."""

    def __init__(self, *args, game=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.game = game or default_game()
        self.player = None
        self.closing = False

    async def connect(self):
        await self.accept()

    async def receive(self, text_data=None, bytes_data=None, **kwargs):
        if self.closing:
            return
        if self.player is None:
            await self.authenticate(text_data)
            return
        await self.receive_frame(text_data, bytes_data)

    async def authenticate(self, text_data):
        token, message = parse_credential(text_data)
        player = None
        user_id = verify_token(token)
        if user_id is not None:
            try:
                player = await self.game.players.get(user_id)
            except NotFound:
                logger.info("Token for unknown player %s", user_id)
        if player is None:
            logger.info("Token invalid. Closing %s", self.channel_name)
            await self.close_with(CLOSE_INVALID_TOKEN, INVALID_TOKEN_REASON)
            return
        self.player = player
        await self.on_authenticated(message)

    async def on_authenticated(self, message):
        raise NotImplementedError

    async def receive_frame(self, text_data, bytes_data):
        raise NotImplementedError

    async def close_with(self, code: int, reason: str):
        self.closing = True
        await self.close(code=code, reason=reason)

    async def broadcast_frame(self, event):
        if self.closing:
            return
        await self.send(text_data=event.get("text"), bytes_data=event.get("bytes"))


class GameConsumer(TokenGatedConsumer):
    """Chat, guesses and turn hand-off for one player connection."""

    joined = False

    @asynccontextmanager
    async def integrity_guard(self):
        try:
            yield
        except IntegrityViolation:
            logger.exception("Game integrity violated while serving %s", self.channel_name)
            await self.close_with(CLOSE_INTEGRITY_VIOLATION, INTEGRITY_VIOLATION_REASON)

    async def on_authenticated(self, message):
        game = self.game
        game.game_channel.add(self.channel_name)
        self.joined = True
        async with self.integrity_guard():
            try:
                started = await game.coordinator.on_join(self.player, self.channel_name)
            except Conflict as exc:
                logger.info("Rejecting %s: %s", self.channel_name, exc)
                game.game_channel.discard(self.channel_name)
                await self.close_with(CLOSE_ALREADY_ACTIVE, ALREADY_ACTIVE_REASON)
                return
            if not started and message is not None:
                await self.handle_message(message)

    async def receive_frame(self, text_data, bytes_data):
        if text_data is None:
            logger.warning("Binary frame on the game channel from %s ignored", self.channel_name)
            return
        try:
            content = await self.decode_json(text_data)
        except ValueError:
            logger.warning("Malformed frame from %s ignored: %.80r", self.channel_name, text_data)
            return
        async with self.integrity_guard():
            await self.handle_message(content)

    async def handle_message(self, content):
        if not isinstance(content, dict):
            logger.warning("Unexpected payload from %s ignored", self.channel_name)
            return
        message_type = content.get("type")
        body = content.get("content")
        coordinator = self.game.coordinator

        if message_type in CHAT_TYPES:
            if not isinstance(body, str):
                logger.warning("Chat frame without text from %s ignored", self.channel_name)
                return
            await coordinator.on_guess(self.channel_name, body)
        elif message_type in CLEAR_TYPES:
            await coordinator.clear_canvas(self.channel_name)
        else:
            logger.warning("Unknown message type %r from %s ignored", message_type, self.channel_name)

    async def disconnect(self, close_code):
        self.game.game_channel.discard(self.channel_name)
        if not self.joined:
            return
        try:
            await self.game.coordinator.on_disconnect(self.channel_name)
        except GameError:
            logger.exception("Failed to settle the game after %s left", self.channel_name)


class DrawConsumer(TokenGatedConsumer):
    """Relays drawing frames verbatim to every other authenticated peer."""

    async def on_authenticated(self, message):
        self.game.draw_channel.add(self.channel_name)

    async def receive_frame(self, text_data, bytes_data):
        frame = text_data if text_data is not None else bytes_data
        if frame is None:
            return
        await self.game.draw_channel.send_all_except(self.channel_name, frame)

    async def disconnect(self, close_code):
        self.game.draw_channel.discard(self.channel_name)
