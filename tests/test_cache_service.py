import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from erp_access.core.config import settings
from erp_access.services.cache_service import (
    PermissionCacheBus,
    RedisPermissionRelay,
    build_permission_relay,
)


def test_subscribe_and_unsubscribe():
    bus = PermissionCacheBus()
    calls = []
    unsubscribe = bus.subscribe(lambda: calls.append("a"))
    bus.on_permission_cache_change(lambda: calls.append("b"))

    bus.publish()
    assert calls == ["a", "b"]

    unsubscribe()
    unsubscribe()
    bus.clear_permission_cache("qa_reviewer")
    assert calls == ["a", "b", "b"]
    assert bus.subscriber_count == 1


def test_failing_subscriber_does_not_stop_the_others():
    bus = PermissionCacheBus()
    calls = []

    def broken():
        raise RuntimeError("stale view")

    bus.subscribe(broken)
    bus.subscribe(lambda: calls.append(1))
    bus.publish()
    bus.publish()
    assert calls == [1, 1]


def test_publish_without_event_loop_skips_relay():
    bus = PermissionCacheBus()
    client = AsyncMock()
    relay = RedisPermissionRelay(bus, client=client)
    relay.attach()

    bus.publish("personnel")
    client.publish.assert_not_called()


@pytest.mark.asyncio
async def test_relay_forwards_local_publishes():
    bus = PermissionCacheBus()
    client = AsyncMock()
    relay = RedisPermissionRelay(bus, channel="perm-test", client=client)
    relay.attach()
    relay.attach()

    bus.clear_permission_cache("qa_reviewer")
    await asyncio.gather(*relay._pending)

    client.publish.assert_awaited_once()
    channel, message = client.publish.await_args.args
    assert channel == "perm-test"
    assert json.loads(message) == {"origin": relay.origin, "role": "qa_reviewer"}

    relay.detach()
    bus.publish()
    await asyncio.gather(*relay._pending)
    assert client.publish.await_count == 1


@pytest.mark.asyncio
async def test_relay_survives_redis_outage():
    bus = PermissionCacheBus()
    client = AsyncMock()
    client.publish.side_effect = RedisConnectionError("connection refused")
    client.ping.side_effect = RedisConnectionError("connection refused")
    relay = RedisPermissionRelay(bus, client=client)

    await relay.send("personnel")
    assert await relay.health_check() is False


def test_relay_applies_remote_messages_only():
    bus = PermissionCacheBus()
    calls = []
    bus.subscribe(lambda: calls.append(1))
    relay = RedisPermissionRelay(bus, client=MagicMock())

    assert relay.handle_message(json.dumps({"origin": relay.origin, "role": None})) is False
    assert relay.handle_message(json.dumps({"origin": "other-process", "role": "tasks"})) is True
    assert relay.handle_message("not json") is False
    assert relay.handle_message(json.dumps(["origin"])) is False
    assert calls == [1]


@pytest.mark.asyncio
async def test_listen_republishes_channel_messages():
    bus = PermissionCacheBus()
    calls = []
    bus.subscribe(lambda: calls.append(1))

    messages = [
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": json.dumps({"origin": "other-process", "role": None})},
    ]

    async def listen():
        for message in messages:
            yield message

    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    pubsub.listen = listen
    client = MagicMock()
    client.pubsub.return_value = pubsub

    relay = RedisPermissionRelay(bus, channel="perm-test", client=client)
    await relay.listen()

    pubsub.subscribe.assert_awaited_once_with("perm-test")
    pubsub.aclose.assert_awaited_once()
    assert calls == [1]


def test_relay_is_opt_in(monkeypatch):
    bus = PermissionCacheBus()
    monkeypatch.setattr(settings, "PERMISSION_RELAY_ENABLED", False)
    assert build_permission_relay(bus) is None

    monkeypatch.setattr(settings, "PERMISSION_RELAY_ENABLED", True)
    relay = build_permission_relay(bus)
    assert relay.channel == settings.PERMISSION_CHANNEL
    assert bus._forwarders == [relay._forward]
    relay.detach()
    assert bus._forwarders == []
