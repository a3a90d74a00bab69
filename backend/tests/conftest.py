import sys
from pathlib import Path
from typing import Any, Mapping

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from modqueue.infra import postgres
from modqueue.reports.domain.collaborators import (
	InMemoryLoginsDirectory,
	InMemoryPlaybanLedger,
	InMemoryPresenceOracle,
	InMemoryUserDirectory,
)
from modqueue.reports.domain.container import build_service
from modqueue.reports.domain.models import Candidate, Mod, Reason, User, mod_of, reporter_of, suspect_of
from modqueue.reports.domain.repository import InMemoryReportRepository
from modqueue.reports.domain.selectors import ReportSelector
from modqueue.reports.domain.snoozer import InMemorySnoozer
from modqueue.settings import settings

SYSTEM = User(id="system", username="lichess", roles=frozenset({"mod"}))
MOD_ROLE = frozenset({"mod"})


class RecordingAlertChannel:
	def __init__(self, fail: bool = False) -> None:
		self.sent: list[User] = []
		self.fail = fail

	async def send_burst_alert(self, suspect: User) -> None:
		if self.fail:
			raise RuntimeError("chat relay down")
		self.sent.append(suspect)


class RecordingEventBus:
	def __init__(self) -> None:
		self.events: list[tuple[str, Mapping[str, Any]]] = []

	async def publish(self, topic: str, event: Mapping[str, Any]) -> None:
		self.events.append((topic, dict(event)))


@pytest.fixture(autouse=True)
def fake_redis():
	from modqueue.infra.redis import redis_client, set_redis_client

	original = redis_client.client
	client = FakeRedis(server=FakeServer(), decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture
def users() -> InMemoryUserDirectory:
	return InMemoryUserDirectory(
		[
			SYSTEM,
			User(id="mod1", username="mod1", roles=MOD_ROLE),
			User(id="mod2", username="mod2", roles=MOD_ROLE),
			User(id="alice", username="alice"),
			User(id="bob", username="bob"),
			User(id="carol", username="carol"),
			User(id="dave", username="dave"),
			User(id="erin", username="erin"),
		]
	)


@pytest.fixture
def alerts() -> RecordingAlertChannel:
	return RecordingAlertChannel()


@pytest.fixture
def bus() -> RecordingEventBus:
	return RecordingEventBus()


@pytest.fixture
def presence() -> InMemoryPresenceOracle:
	return InMemoryPresenceOracle()


@pytest.fixture
def logins() -> InMemoryLoginsDirectory:
	return InMemoryLoginsDirectory()


@pytest.fixture
def playbans() -> InMemoryPlaybanLedger:
	return InMemoryPlaybanLedger()


@pytest.fixture
def engine(users, alerts, bus, presence, logins, playbans):
	return build_service(
		repository=InMemoryReportRepository(),
		users=users,
		logins=logins,
		playbans=playbans,
		presence=presence,
		snoozer=InMemorySnoozer(),
		alerts=alerts,
		bus=bus,
		config=settings,
	)


@pytest.fixture
def repo(engine) -> InMemoryReportRepository:
	return engine.intake.repository


@pytest.fixture
def file_report(engine, users):
	"""Submit a human report through intake and return the stored report."""

	async def _file(reporter_id: str, suspect_id: str, reason: Reason = Reason.CHEAT, text: str = "evidence", transform=None):
		reporter = reporter_of(await users.by_id(reporter_id))
		suspect = suspect_of(await users.by_id(suspect_id))
		created = await engine.intake.create(
			Candidate(reporter=reporter, suspect=suspect, reason=reason, text=text), transform
		)
		assert created
		return await engine.intake.repository.find_one(ReportSelector(user=suspect_id, reason=reason, open=True))

	return _file


@pytest.fixture
def mod1(users) -> Mod:
	return mod_of(users.users["mod1"])


@pytest.fixture
def mod2(users) -> Mod:
	return mod_of(users.users["mod2"])
