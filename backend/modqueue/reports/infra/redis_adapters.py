"""Redis-backed snoozer, presence oracle, event bus and alert channel."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

from redis.asyncio import Redis

from modqueue.infra.redis import RedisProxy
from modqueue.reports.domain.models import User


@dataclass
class RedisSnoozer:
    """One sorted set per moderator: member = report id, score = expiry epoch."""

    client: Redis | RedisProxy
    prefix: str = "mod:snooze"

    def _key(self, mod_id: str) -> str:
        return f"{self.prefix}:{mod_id}"

    async def snooze(self, mod_id: str, report_id: str, duration: timedelta) -> None:
        key = self._key(mod_id)
        until = time.time() + duration.total_seconds()
        await self.client.zadd(key, {report_id: until})
        # the whole set can go once its latest entry has expired
        latest = await self.client.zrange(key, -1, -1, withscores=True)
        if latest:
            ttl = max(1, int(latest[0][1] - time.time()) + 1)
            await self.client.expire(key, ttl)

    async def snoozed_report_ids(self, mod_id: str) -> list[str]:
        key = self._key(mod_id)
        now = time.time()
        await self.client.zremrangebyscore(key, "-inf", now)
        members = await self.client.zrangebyscore(key, now, "+inf")
        return [member.decode("utf-8") if isinstance(member, bytes) else str(member) for member in members]


@dataclass
class RedisPresenceOracle:
    """Users are online while their ``presence:{id}`` key exists."""

    client: Redis | RedisProxy
    prefix: str = "presence"

    async def is_online(self, user_id: str) -> bool:
        return bool(await self.client.exists(f"{self.prefix}:{user_id}"))


@dataclass
class RedisStreamEventBus:
    """Publishes events to one Redis stream per topic."""

    client: RedisProxy
    prefix: str = "mod:bus"
    maxlen: int | None = 10000

    async def publish(self, topic: str, event: Mapping[str, Any]) -> None:
        fields = {key: value if isinstance(value, str) else json.dumps(value) for key, value in event.items()}
        await self.client.xadd_capped(f"{self.prefix}:{topic}", fields, maxlen=self.maxlen)


@dataclass
class RedisStreamAlertChannel:
    """Queues burst alerts on a stream consumed by the chat relay."""

    client: RedisProxy
    stream: str = "mod:reports:alerts"
    maxlen: int | None = 10000

    async def send_burst_alert(self, suspect: User) -> None:
        await self.client.xadd_capped(
            self.stream,
            {"kind": "comm_burst", "user_id": suspect.id, "username": suspect.username},
            maxlen=self.maxlen,
        )
