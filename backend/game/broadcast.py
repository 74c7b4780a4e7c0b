from __future__ import annotations

import logging
from threading import Lock
from typing import List, Optional, Set, Union

from channels.exceptions import ChannelFull
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

FRAME_EVENT = "broadcast.frame"

Frame = Union[str, bytes]


class Broadcaster:
    """Best-effort fan-out of frames to the consumers subscribed to a channel.

    Members are Channels channel names. Sends work on a snapshot of the
    membership, so connections may come and go while a fan-out is running.
    """

    def __init__(self, name: str, channel_layer=None, layer_alias: str = "default"):
        self.name = name
        self._layer = channel_layer
        self._layer_alias = layer_alias
        self._lock = Lock()
        self._members: Set[str] = set()

    @property
    def channel_layer(self):
        return self._layer or get_channel_layer(self._layer_alias)

    def add(self, connection_id: str) -> None:
        with self._lock:
            self._members.add(connection_id)

    def discard(self, connection_id: str) -> None:
        with self._lock:
            self._members.discard(connection_id)

    def members(self) -> List[str]:
        with self._lock:
            return list(self._members)

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._members

    async def send(self, connection_id: str, frame: Frame) -> bool:
        event = {"type": FRAME_EVENT}
        if isinstance(frame, bytes):
            event["bytes"] = frame
        else:
            event["text"] = frame
        layer = self.channel_layer
        if layer is None:
            logger.error("[%s] no channel layer configured; dropping frame", self.name)
            return False
        try:
            await layer.send(connection_id, event)
        except ChannelFull:
            logger.warning("[%s] channel %s is full; frame dropped", self.name, connection_id)
            return False
        except Exception:
            logger.exception("[%s] sending to %s failed", self.name, connection_id)
            return False
        return True

    async def send_all(self, frame: Frame) -> int:
        return await self.send_all_except(None, frame)

    async def send_all_except(self, excluded: Optional[str], frame: Frame) -> int:
        delivered = 0
        for connection_id in self.members():
            if connection_id == excluded:
                continue
            if await self.send(connection_id, frame):
                delivered += 1
        return delivered
