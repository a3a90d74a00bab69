"""Service container wiring the report engine components together."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import asyncpg
from redis.asyncio import Redis

from modqueue.infra import postgres
from modqueue.infra.redis import RedisProxy, redis_client
from modqueue.reports.domain.caching import AccuracyCache, RoomScoreCache
from modqueue.reports.domain.collaborators import (
    AlertChannel,
    EventBus,
    InMemoryLoginsDirectory,
    InMemoryPlaybanLedger,
    InMemoryPresenceOracle,
    InMemoryUserDirectory,
    LoginsDirectory,
    NoopAlertChannel,
    NoopEventBus,
    PlaybanLedger,
    PresenceOracle,
    UserDirectory,
)
from modqueue.reports.domain.detectors import AutoReporter
from modqueue.reports.domain.inquiries import InquiryManager
from modqueue.reports.domain.intake import ReportIntake
from modqueue.reports.domain.queries import ReportQueries
from modqueue.reports.domain.repository import InMemoryReportRepository, ReportRepository
from modqueue.reports.domain.scoring import MergePolicy, Scorer, default_scorer
from modqueue.reports.domain.sequencer import AsyncSequencer
from modqueue.reports.domain.service import ReportService
from modqueue.reports.domain.snoozer import InMemorySnoozer, Snoozer
from modqueue.reports.infra.postgres_repo import PostgresReportRepository
from modqueue.reports.infra.redis_adapters import (
    RedisPresenceOracle,
    RedisSnoozer,
    RedisStreamAlertChannel,
    RedisStreamEventBus,
)
from modqueue.settings import Settings, settings


def build_service(
    *,
    repository: ReportRepository,
    users: UserDirectory,
    logins: LoginsDirectory,
    playbans: PlaybanLedger,
    presence: PresenceOracle,
    snoozer: Snoozer,
    alerts: AlertChannel,
    bus: EventBus,
    scorer: Scorer = default_scorer,
    config: Settings = settings,
) -> ReportService:
    """Assemble one engine instance; its caches and sequencer belong to it alone."""

    room_scores = RoomScoreCache(repository, ttl=config.report_room_score_ttl_seconds)
    accuracy = AccuracyCache(
        repository,
        users,
        ttl=config.report_accuracy_ttl_seconds,
        max_size=config.report_accuracy_cache_size,
    )
    intake = ReportIntake(
        repository=repository,
        users=users,
        room_scores=room_scores,
        accuracy=accuracy,
        alerts=alerts,
        bus=bus,
        scorer=scorer,
        merge_policy=MergePolicy.from_key(config.report_score_merge_policy),
        discord_threshold=config.report_discord_threshold,
        system_user_id=config.report_system_user_id,
        text_max_length=config.report_text_max_length,
    )
    queries = ReportQueries(
        repository=repository,
        users=users,
        presence=presence,
        snoozer=snoozer,
        room_scores=room_scores,
        system_user_id=config.report_system_user_id,
    )
    inquiries = InquiryManager(
        repository=repository,
        queries=queries,
        sequencer=AsyncSequencer(
            max_size=config.report_inquiry_queue_size,
            timeout=config.report_inquiry_timeout_seconds,
            name="report.inquiries",
        ),
        room_scores=room_scores,
        expire_after=timedelta(minutes=config.report_inquiry_expire_minutes),
    )
    detectors = AutoReporter(
        intake=intake,
        logins=logins,
        playbans=playbans,
        playban_min_bans=config.report_playban_min_bans,
        playban_top_k=config.report_playban_top_k,
        playban_escalation_sum=config.report_playban_escalation_sum,
    )
    return ReportService(intake=intake, queries=queries, inquiries=inquiries, detectors=detectors, snoozer=snoozer)


_service: Optional[ReportService] = None


def configure(
    *,
    repository: Optional[ReportRepository] = None,
    users: Optional[UserDirectory] = None,
    logins: Optional[LoginsDirectory] = None,
    playbans: Optional[PlaybanLedger] = None,
    presence: Optional[PresenceOracle] = None,
    snoozer: Optional[Snoozer] = None,
    alerts: Optional[AlertChannel] = None,
    bus: Optional[EventBus] = None,
    scorer: Scorer = default_scorer,
) -> ReportService:
    global _service
    _service = build_service(
        repository=repository or InMemoryReportRepository(),
        users=users or InMemoryUserDirectory(),
        logins=logins or InMemoryLoginsDirectory(),
        playbans=playbans or InMemoryPlaybanLedger(),
        presence=presence or InMemoryPresenceOracle(),
        snoozer=snoozer or InMemorySnoozer(),
        alerts=alerts or NoopAlertChannel(),
        bus=bus or NoopEventBus(),
        scorer=scorer,
    )
    return _service


def configure_postgres(
    pool: asyncpg.Pool,
    redis_conn: Redis | RedisProxy,
    *,
    users: UserDirectory,
    logins: LoginsDirectory,
    playbans: PlaybanLedger,
    scorer: Scorer = default_scorer,
) -> ReportService:
    proxy = redis_conn if isinstance(redis_conn, RedisProxy) else RedisProxy(redis_conn)
    return configure(
        repository=PostgresReportRepository(pool),
        users=users,
        logins=logins,
        playbans=playbans,
        presence=RedisPresenceOracle(proxy),
        snoozer=RedisSnoozer(proxy),
        alerts=RedisStreamAlertChannel(proxy, stream=settings.report_alert_stream, maxlen=settings.report_stream_maxlen),
        bus=RedisStreamEventBus(proxy, prefix=settings.report_bus_prefix, maxlen=settings.report_stream_maxlen),
        scorer=scorer,
    )


async def configure_from_settings(
    *,
    users: UserDirectory,
    logins: LoginsDirectory,
    playbans: PlaybanLedger,
    scorer: Scorer = default_scorer,
) -> ReportService:
    """Open the shared pool, make sure the report table exists and wire the service."""

    pool = await postgres.get_pool()
    await PostgresReportRepository(pool).ensure_schema()
    return configure_postgres(pool, redis_client, users=users, logins=logins, playbans=playbans, scorer=scorer)


def get_report_service() -> ReportService:
    if _service is None:
        return configure(presence=RedisPresenceOracle(redis_client), snoozer=RedisSnoozer(redis_client))
    return _service
