"""
Realtime hint channel.

Events are published on the Redis pub/sub channel ``stock:hints:<org>``;
``GET /v1/stock/events`` relays that channel to operators as Server-Sent
Events.  Payloads are ``{kind, refs, ts, hint}`` envelopes.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

from stockroom.core.redis_client import get_async_redis, get_redis
from stockroom.models.base import utcnow

logger = logging.getLogger(__name__)

KEEPALIVE_S = 15.0


def channel_for(organization_id: int) -> str:
    return f"stock:hints:{organization_id}"


def publish_hint(organization_id: int, envelope: dict) -> bool:
    r = get_redis()
    if r is None:
        return False
    try:
        r.publish(channel_for(organization_id), json.dumps(envelope, ensure_ascii=False, default=str))
        return True
    except Exception as e:  # noqa: BLE001
        logger.warning(f"[realtime] publish failed for org={organization_id}: {e}")
        return False


def broadcast_event(event) -> None:
    publish_hint(event.organization_id, event.envelope())


def publish_low_stock(organization_id: int, items: list[dict]) -> bool:
    envelope = {
        "kind": "low-stock",
        "refs": {"count": len(items)},
        "ts": utcnow().isoformat(),
        "hint": "low-stock",
        "items": items,
    }
    return publish_hint(organization_id, envelope)


async def sse_events(organization_id: int) -> AsyncIterator[str]:
    """Async generator of SSE frames for one tenant."""
    client = get_async_redis()
    pubsub = client.pubsub()
    await pubsub.subscribe(channel_for(organization_id))
    try:
        yield ": connected\n\n"
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=KEEPALIVE_S)
            if message is None:
                yield ": keepalive\n\n"
                continue
            yield f"data: {message['data']}\n\n"
    finally:
        try:
            await pubsub.unsubscribe(channel_for(organization_id))
            await pubsub.aclose()
            await client.aclose()
        except Exception as e:  # noqa: BLE001
            logger.debug(f"[realtime] close failed: {e}")
