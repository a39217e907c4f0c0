"""Redis Pub/Sub based RealtimeBrokerPort implementation.

Publishes each envelope to a per-room channel `{prefix}:room:{room}` and
pattern-subscribes `{prefix}:room:*`, so every gateway replica delivers the
broadcast to its own local subscribers.

The listener survives Redis restarts: a dropped pubsub connection is closed
and re-subscribed with exponential backoff until `aclose()`. Broadcasts
published while the listener is down are lost (Pub/Sub has no replay).
"""
from __future__ import annotations

import asyncio
import json
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError
from tenacity import AsyncRetrying, retry_if_exception_type, wait_exponential

from application.ports.realtime import Envelope, RealtimeBrokerPort, Handler
from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class RedisRealtimeBroker(RealtimeBrokerPort):
    def __init__(
        self,
        url: Optional[str] = None,
        *,
        channel_prefix: Optional[str] = None,
        client: Optional[aioredis.Redis] = None,
        reconnect_initial_s: Optional[float] = None,
        reconnect_max_s: Optional[float] = None,
    ) -> None:
        self._url = url or settings.redis.url
        self._prefix = channel_prefix or settings.redis.channel_prefix
        self._client: Optional[aioredis.Redis] = client
        self._owns_client = client is None
        self._reconnect_initial_s = (
            settings.redis.reconnect_initial_s if reconnect_initial_s is None else reconnect_initial_s
        )
        self._reconnect_max_s = settings.redis.reconnect_max_s if reconnect_max_s is None else reconnect_max_s
        self._task: Optional[asyncio.Task] = None
        self._handler: Optional[Handler] = None

    def _room_channel(self, room: str) -> str:
        return f"{self._prefix}:room:{room}"

    @property
    def _pattern(self) -> str:
        return f"{self._prefix}:room:*"

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            if not self._url:
                raise RuntimeError("Redis URL is not configured (REDIS__URL)")
            self._client = aioredis.from_url(self._url, encoding="utf-8", decode_responses=True)
        return self._client

    async def publish(self, room: str, envelope: Envelope) -> None:  # type: ignore[override]
        channel = self._room_channel(room)
        try:
            await self._get_client().publish(channel, envelope.model_dump_json())
        except RedisError as exc:
            # 后端已提交该变更，广播失败不回传给调用方
            logger.error("redis_publish_failed", channel=channel, type=envelope.type, error=str(exc))

    async def _subscribe_with_backoff(self):
        async for attempt in AsyncRetrying(
            wait=wait_exponential(multiplier=self._reconnect_initial_s, max=self._reconnect_max_s),
            retry=retry_if_exception_type(RedisError),
            before_sleep=lambda rs: logger.warning(
                "redis_pubsub_reconnect",
                attempt=rs.attempt_number,
                error=str(rs.outcome.exception()) if rs.outcome else None,
            ),
        ):
            with attempt:
                pubsub = self._get_client().pubsub()
                try:
                    await pubsub.psubscribe(self._pattern)
                except RedisError:
                    await self._close_pubsub(pubsub)
                    raise
                logger.info("redis_pubsub_subscribed", pattern=self._pattern)
                return pubsub
        raise RuntimeError("subscribe loop ended")  # pragma: no cover

    async def _consume(self, pubsub) -> None:
        async for message in pubsub.listen():
            if message.get("type") != "pmessage":
                continue
            try:
                env = Envelope.model_validate(json.loads(message["data"]))
            except (ValueError, TypeError) as exc:
                logger.warning("redis_pubsub_parse_failed", channel=message.get("channel"), error=str(exc))
                continue
            try:
                await self._handler(env)
            except Exception as exc:
                logger.error("broker_handler_failed", room=env.room, error=str(exc), exc_info=True)
        raise RedisConnectionError("pubsub stream ended")

    @staticmethod
    async def _close_pubsub(pubsub) -> None:
        try:
            await pubsub.aclose()
        except RedisError as exc:
            logger.debug("redis_pubsub_close_failed", error=str(exc))

    async def _listen(self) -> None:
        # 每次成功订阅后退避重新计数
        while True:
            pubsub = await self._subscribe_with_backoff()
            try:
                await self._consume(pubsub)
            except RedisError as exc:
                logger.error("redis_pubsub_listen_failed", error=str(exc))
            finally:
                await self._close_pubsub(pubsub)

    async def subscribe(self, handler: Handler) -> None:  # type: ignore[override]
        self._handler = handler
        self._task = asyncio.create_task(self._listen(), name="redis-realtime-listener")

    async def aclose(self) -> None:  # type: ignore[override]
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
