"""Permission cache bus — change notifications for permission-gated consumers.

Local subscribers are plain callables invoked on every publish. A Redis relay
can be attached to fan the same notification out to other processes.
"""

import asyncio
import json
import logging
import uuid
from typing import Callable, List, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from erp_access.core.config import settings

logger = logging.getLogger("erp_access.cache")

Callback = Callable[[], None]
Forwarder = Callable[[Optional[str]], None]


class PermissionCacheBus:
    """Observer list: "permission data changed", no payload."""

    def __init__(self):
        self._callbacks: List[Callback] = []
        self._forwarders: List[Forwarder] = []

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    on_permission_cache_change = subscribe

    def publish(self, role: Optional[str] = None) -> None:
        """Notify local subscribers and forward to attached relays."""
        self.notify_local()
        for forward in list(self._forwarders):
            forward(role)

    def clear_permission_cache(self, role: Optional[str] = None) -> None:
        """Tell consumers to drop what they derived from permissions."""
        logger.debug("Permission cache cleared (role=%s)", role or "*")
        self.publish(role)

    def notify_local(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Permission cache subscriber failed")

    def add_forwarder(self, forward: Forwarder) -> Callable[[], None]:
        self._forwarders.append(forward)

        def remove() -> None:
            if forward in self._forwarders:
                self._forwarders.remove(forward)

        return remove

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)


class RedisPermissionRelay:
    """Bridges a PermissionCacheBus across processes through a Redis channel."""

    def __init__(
        self,
        bus: PermissionCacheBus,
        redis_url: Optional[str] = None,
        channel: Optional[str] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.bus = bus
        self.channel = channel or settings.PERMISSION_CHANNEL
        self.origin = uuid.uuid4().hex
        self._redis_url = redis_url or settings.REDIS_URL
        self._client = client
        self._detach: Optional[Callable[[], None]] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def attach(self) -> None:
        if self._detach is None:
            self._detach = self.bus.add_forwarder(self._forward)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None

    def _forward(self, role: Optional[str]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, permission change not relayed")
            return
        task = loop.create_task(self.send(role))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, role: Optional[str] = None) -> None:
        message = json.dumps({"origin": self.origin, "role": role})
        try:
            await self.client.publish(self.channel, message)
        except RedisError as exc:
            logger.warning("Permission change not relayed to Redis: %s", exc)

    def handle_message(self, raw) -> bool:
        """Apply one channel message. Returns True if local subscribers were notified."""
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed permission message: %r", raw)
            return False
        if not isinstance(payload, dict):
            logger.warning("Ignoring malformed permission message: %r", raw)
            return False
        if payload.get("origin") == self.origin:
            return False
        self.bus.notify_local()
        return True

    async def listen(self) -> None:
        """Re-publish remote changes locally until the task is cancelled."""
        pubsub = self.client.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    self.handle_message(message.get("data"))
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False


permission_cache = PermissionCacheBus()


def build_permission_relay(bus: Optional[PermissionCacheBus] = None) -> Optional[RedisPermissionRelay]:
    """Attach a Redis relay to the bus when PERMISSION_RELAY_ENABLED is set.

    The caller owns the returned relay and runs listen() as a background task.
    """
    if not settings.PERMISSION_RELAY_ENABLED:
        return None
    relay = RedisPermissionRelay(bus or permission_cache)
    relay.attach()
    logger.info("Permission changes relayed on %s", relay.channel)
    return relay
