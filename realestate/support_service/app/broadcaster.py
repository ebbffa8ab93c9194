"""Real-time fan-out of support case events.

Room membership lives only in the memory of the process holding the
connection. With redis configured every process publishes to one pub/sub
channel and delivers what it receives to its own registry, so a broadcast
reaches members connected to any process.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from .metrics import (
    SUPPORT_REALTIME_CONNECTIONS,
    SUPPORT_REALTIME_EVENTS_TOTAL,
    SUPPORT_REALTIME_RELAY_RESUBSCRIBES_TOTAL,
)

logger = logging.getLogger(__name__)

NEW_CHAT = "newChat"
CLOSE_CASE = "closeCase"
RECEIVE_MESSAGE = "receiveMessage"
MESSAGE_DELETED = "messageDeleted"
MESSAGE_SEEN = "messageSeen"
TYPING = "typing"
STOP_TYPING = "stopTyping"


class Connection(Protocol):
    async def send_json(self, data: Any, mode: str = "text") -> None: ...


class RoomBroadcaster(Protocol):
    async def broadcast_to_room(self, room: str, event: str, payload: dict[str, Any]) -> None: ...

    async def broadcast_global(self, event: str, payload: dict[str, Any]) -> None: ...


class RoomRegistry:
    """Live connections of this process and the rooms they joined."""

    def __init__(self) -> None:
        self._connections: set[Connection] = set()
        self._rooms: dict[str, set[Connection]] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, connection: Connection) -> None:
        self._connections.add(connection)
        SUPPORT_REALTIME_CONNECTIONS.set(len(self._connections))

    def unregister(self, connection: Connection) -> None:
        self._connections.discard(connection)
        for room in list(self._rooms):
            self._leave(connection, room)
        SUPPORT_REALTIME_CONNECTIONS.set(len(self._connections))

    def join(self, connection: Connection, room: str) -> None:
        if connection not in self._connections:
            self.register(connection)
        self._rooms.setdefault(room, set()).add(connection)

    def leave(self, connection: Connection, room: str) -> None:
        self._leave(connection, room)

    def _leave(self, connection: Connection, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self._rooms[room]

    def members(self, room: str) -> frozenset[Connection]:
        return frozenset(self._rooms.get(room, ()))

    def rooms_of(self, connection: Connection) -> set[str]:
        return {room for room, members in self._rooms.items() if connection in members}

    async def send_room(self, room: str, event: str, payload: dict[str, Any]) -> int:
        delivered = await self._deliver(self.members(room), event, payload)
        SUPPORT_REALTIME_EVENTS_TOTAL.labels(event=event, scope="room").inc(delivered)
        return delivered

    async def send_all(self, event: str, payload: dict[str, Any]) -> int:
        delivered = await self._deliver(frozenset(self._connections), event, payload)
        SUPPORT_REALTIME_EVENTS_TOTAL.labels(event=event, scope="global").inc(delivered)
        return delivered

    async def _deliver(self, targets: frozenset[Connection], event: str, payload: dict[str, Any]) -> int:
        frame = {"event": event, "data": payload}
        delivered = 0
        for connection in targets:
            try:
                await connection.send_json(frame)
            except Exception:  # noqa: BLE001 - a dead socket must not stop the fan-out
                logger.warning("Dropping real-time connection after failed %s delivery", event)
                self.unregister(connection)
                continue
            delivered += 1
        return delivered


class LocalRoomBroadcaster:
    """Delivers events to the connections of this process only."""

    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry

    async def broadcast_to_room(self, room: str, event: str, payload: dict[str, Any]) -> None:
        await self.registry.send_room(room, event, payload)

    async def broadcast_global(self, event: str, payload: dict[str, Any]) -> None:
        await self.registry.send_all(event, payload)


class RedisRoomBroadcaster:
    """Relays events through a redis pub/sub channel shared by every process.

    The listener resubscribes after ``retry_delay`` seconds whenever the
    subscription fails or ends, so a redis restart interrupts delivery to
    local members only until the channel is back.
    """

    def __init__(self, redis: Redis, registry: RoomRegistry, channel: str, *, retry_delay: float = 1.0) -> None:
        self.redis = redis
        self.registry = registry
        self.channel = channel
        self.retry_delay = retry_delay
        self._pubsub: PubSub | None = None
        self._listener: asyncio.Task[None] | None = None

    async def broadcast_to_room(self, room: str, event: str, payload: dict[str, Any]) -> None:
        await self._publish({"scope": "room", "room": room, "event": event, "payload": payload})

    async def broadcast_global(self, event: str, payload: dict[str, Any]) -> None:
        await self._publish({"scope": "global", "event": event, "payload": payload})

    async def _publish(self, envelope: dict[str, Any]) -> None:
        await self.redis.publish(self.channel, json.dumps(envelope, default=str))

    async def start(self) -> None:
        if self._listener is not None:
            return
        self._pubsub = await self._subscribe()
        self._listener = asyncio.create_task(self._listen(), name="support-realtime-relay")
        self._listener.add_done_callback(self._on_listener_done)
        logger.info("Subscribed to real-time channel %s", self.channel)

    async def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listener
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is not None:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def _subscribe(self) -> PubSub:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        return pubsub

    async def _listen(self) -> None:
        while True:
            try:
                if self._pubsub is None:
                    self._pubsub = await self._subscribe()
                    logger.info("Resubscribed to real-time channel %s", self.channel)
                async for message in self._pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self.deliver(message.get("data"))
                logger.warning("Subscription to real-time channel %s ended", self.channel)
            except (RedisError, OSError) as exc:
                logger.warning(
                    "Real-time relay lost channel %s (%s); retrying in %.1fs",
                    self.channel,
                    exc,
                    self.retry_delay,
                )
            SUPPORT_REALTIME_RELAY_RESUBSCRIBES_TOTAL.inc()
            await self._discard_pubsub()
            await asyncio.sleep(self.retry_delay)

    async def _discard_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except (RedisError, OSError):
            logger.debug("Closing a broken real-time subscription failed", exc_info=True)

    def _on_listener_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Real-time relay for %s stopped", self.channel, exc_info=exc)

    async def deliver(self, raw: Any) -> None:
        """Hand one published envelope to the local registry."""

        try:
            envelope = json.loads(raw)
            event = envelope["event"]
            payload = envelope.get("payload") or {}
        except (TypeError, ValueError, KeyError):
            logger.warning("Ignoring malformed real-time envelope: %r", raw)
            return
        if envelope.get("scope") == "room":
            await self.registry.send_room(str(envelope.get("room")), event, payload)
        else:
            await self.registry.send_all(event, payload)
