"""Contracts for the services the report engine consumes, with in-memory doubles."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Protocol

from modqueue.reports.domain.models import User


class UserDirectory(Protocol):
    async def by_id(self, user_id: str) -> Optional[User]:
        ...

    async def count_engines(self, user_ids: Iterable[str]) -> int:
        ...


class LoginsDirectory(Protocol):
    async def users_with_same_ip_and_print(self, user_id: str) -> set[str]:
        ...

    async def share_ip_or_print(self, user_a: str, user_b: str) -> bool:
        ...


class PlaybanLedger(Protocol):
    async def bans(self, user_ids: Iterable[str]) -> Mapping[str, int]:
        ...


class PresenceOracle(Protocol):
    async def is_online(self, user_id: str) -> bool:
        ...


class AlertChannel(Protocol):
    async def send_burst_alert(self, suspect: User) -> None:
        ...


class EventBus(Protocol):
    async def publish(self, topic: str, event: Mapping[str, Any]) -> None:
        ...


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Iterable[User] = ()) -> None:
        self.users: dict[str, User] = {user.id: user for user in users}

    def add(self, user: User) -> User:
        self.users[user.id] = user
        return user

    async def by_id(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def count_engines(self, user_ids: Iterable[str]) -> int:
        return sum(1 for user_id in set(user_ids) if (user := self.users.get(user_id)) and user.engine)


class InMemoryLoginsDirectory(LoginsDirectory):
    """Groups of user ids sharing an IP and device print."""

    def __init__(self, clusters: Iterable[Iterable[str]] = ()) -> None:
        self.clusters: list[set[str]] = [set(cluster) for cluster in clusters]

    async def users_with_same_ip_and_print(self, user_id: str) -> set[str]:
        linked: set[str] = set()
        for cluster in self.clusters:
            if user_id in cluster:
                linked |= cluster
        linked.discard(user_id)
        return linked

    async def share_ip_or_print(self, user_a: str, user_b: str) -> bool:
        return any(user_a in cluster and user_b in cluster for cluster in self.clusters)


class InMemoryPlaybanLedger(PlaybanLedger):
    def __init__(self, counts: Mapping[str, int] | None = None) -> None:
        self.counts: dict[str, int] = dict(counts or {})

    async def bans(self, user_ids: Iterable[str]) -> Mapping[str, int]:
        return {user_id: self.counts[user_id] for user_id in user_ids if user_id in self.counts}


class InMemoryPresenceOracle(PresenceOracle):
    def __init__(self, online: Iterable[str] = ()) -> None:
        self.online: set[str] = set(online)

    async def is_online(self, user_id: str) -> bool:
        return user_id in self.online


class NoopAlertChannel(AlertChannel):
    async def send_burst_alert(self, suspect: User) -> None:
        return None


class NoopEventBus(EventBus):
    async def publish(self, topic: str, event: Mapping[str, Any]) -> None:
        return None
