import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Iterable

import redis.asyncio as redis

from lostfound_chat.utils.websocket_manager import ConnectionManager, manager


logger = logging.getLogger(__name__)


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        class _Sub:
            async def run(self):
                await asyncio.Future()

            async def cancel(self):
                return
        return _Sub()


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                        if msg and msg.get("type") == "message":
                            data = msg.get("data")
                            if isinstance(data, bytes):
                                data = data.decode("utf-8")
                            await on_message(data)
                    except Exception as exc:
                        logger.warning("Subscription on %s hiccup: %s", channel, exc)
                        await asyncio.sleep(0.5)

            async def cancel(self_inner):
                self_inner._running = False
                await pubsub.unsubscribe(channel)

        return _Sub()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = os.getenv("REDIS_URL")
    _bus = RedisBus(url) if url else NoopBus()
    return _bus


class EventPublisher:
    """Pushes change events to every listener of the given users.

    Goes through Redis when a bus is configured so that all API workers see
    the event, otherwise straight to this process's WebSocket connections.
    """

    def __init__(self, bus=None, connections: ConnectionManager | None = None) -> None:
        self._bus = bus or NoopBus()
        self._connections = connections or manager

    async def publish(self, user_ids: Iterable[str], event: str, data: Dict[str, Any]) -> None:
        payload = json.dumps({"type": event, "data": data}, default=str)
        for user_id in dict.fromkeys(user_ids):
            try:
                if getattr(self._bus, "enabled", False):
                    await self._bus.publish(user_channel(user_id), payload)
                elif self._connections.is_online(user_id):
                    await self._connections.deliver(user_id, payload)
            except Exception as exc:
                logger.warning("Failed to publish %s to %s: %s", event, user_id, exc)
