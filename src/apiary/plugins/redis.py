"""
Redis plugin.

A request is a DSN plus one command line. The command is split shell-style
(so quoted arguments survive) and the reply is stored as JSON text.
"""

import json
import logging
import shlex
from typing import Any, ClassVar

import redis

from apiary.plugins.base import Plugin, PluginContext, require_payload
from apiary.schema import EntryData, Kind

logger = logging.getLogger(__name__)


class RedisRequest(EntryData):
    KIND: ClassVar[str] = Kind.REDIS.value

    dsn: str = "localhost:6379"
    query: str = "KEYS *"


class RedisResponse(EntryData):
    KIND: ClassVar[str] = Kind.REDIS.value

    response: str = ""


def normalize_dsn(dsn: str) -> str:
    """Accept bare host:port DSNs by adding the redis:// scheme."""
    if "://" not in dsn:
        return f"redis://{dsn}"
    return dsn


def _plain(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (list, tuple, set)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(_plain(k)): _plain(v) for k, v in value.items()}
    return value


def send_redis(context: PluginContext, payload: EntryData) -> EntryData:
    """
    Run one Redis command.

    Raises:
        ValueError: If the query is empty
        redis.RedisError: On connection or command failures
    """
    payload = require_payload(payload, RedisRequest)
    args = shlex.split(payload.query)
    if not args:
        msg = "empty redis query"
        raise ValueError(msg)

    client = redis.Redis.from_url(
        normalize_dsn(payload.dsn),
        decode_responses=True,
        socket_timeout=context.timeout_seconds,
        socket_connect_timeout=context.timeout_seconds,
    )
    try:
        logger.debug("redis %s", args[0])
        result = client.execute_command(*args)
    finally:
        client.close()

    return RedisResponse(response=json.dumps(_plain(result), default=str))


plugin_redis = Plugin(
    kind=Kind.REDIS.value,
    title="REDIS",
    request_type=RedisRequest,
    response_type=RedisResponse,
    perform=send_redis,
)
