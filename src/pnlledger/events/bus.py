from __future__ import annotations

import json
import os
import logging
from typing import Iterator, Optional, Tuple

import redis

from .schema import EventEnvelope
from .metrics import get_events_total, get_events_dlq_total


STREAM_EVENTS = os.getenv("EVENTS_STREAM", "pnlledger.events")
STREAM_DLQ = os.getenv("EVENTS_DLQ", "pnlledger.dlq")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

log = logging.getLogger("pnlledger.events")

_client: Optional[redis.Redis] = None


def _get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.Redis.from_url(os.getenv("REDIS_URL", REDIS_URL), decode_responses=True)
    return _client


def encode(env: EventEnvelope) -> str:
    return json.dumps({
        "schema_version": env.schema_version,
        "correlation_id": env.correlation_id,
        "sequence": env.sequence,
        "event": env.event.model_dump(),
    }, separators=(",", ":"))


def publish(env: EventEnvelope, stream: Optional[str] = None) -> None:
    """Publish an event to Redis Streams and log a single-line JSON.

    A Redis outage must not stall position updates: the event goes to the DLQ
    stream when possible and is always logged.
    """
    event_type = env.event.event_type
    get_events_total().labels(event_type).inc()

    line = encode(env)
    try:
        _get_redis().xadd(stream or STREAM_EVENTS, {"json": line})
    except redis.RedisError as e:
        log.warning("event publish failed (%s); routing to %s", e, STREAM_DLQ)
        get_events_dlq_total().labels(event_type).inc()
        try:
            _get_redis().xadd(STREAM_DLQ, {"json": line})
        except redis.RedisError as e2:
            log.error("DLQ publish failed: %s", e2)
    log.info(line)


def ensure_group(group: str, stream: Optional[str] = None) -> None:
    try:
        _get_redis().xgroup_create(name=stream or STREAM_EVENTS, groupname=group, id="$", mkstream=True)
    except redis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise


def consume(group: str, consumer: str, block_ms: int = 15000,
            stream: Optional[str] = None) -> Iterator[Optional[Tuple[str, str]]]:
    """Generator yielding (id, json_str) from a Redis Stream consumer group.

    Yields None when the block timeout elapses. Caller is responsible for XACK.
    """
    name = stream or STREAM_EVENTS
    r = _get_redis()
    ensure_group(group, name)
    while True:
        resp = r.xreadgroup(group, consumer, {name: ">"}, count=100, block=block_ms)
        if not resp:
            yield None
            continue
        # resp is list[(stream, [(id, {field:value}), ...])]
        for _stream, entries in resp:
            for msg_id, fields in entries:
                yield (msg_id, fields.get("json", ""))
