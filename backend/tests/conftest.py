import json
import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("JWT_SECRET", "test-secret-for-the-realtime-suite-0123456789")

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from edupath.domain.forum.repo import ForumRepository, _InMemoryForumStore
from edupath.infra import postgres
from edupath.infra.jwt import JwtService
from edupath.realtime.registry import ConnectionRegistry
from edupath.realtime.router import MessageRouter
from edupath.settings import settings

ADMIN_TOKEN = "test-admin-token"


class FakeTransport:
	"""Records decoded frames instead of writing to a socket."""

	def __init__(self, *, fail: bool = False) -> None:
		self.sent: list[dict] = []
		self.open = True
		self.fail = fail
		self.closed_with: tuple[int, str] | None = None

	@property
	def is_open(self) -> bool:
		return self.open

	async def send_text(self, data: str) -> None:
		if self.fail:
			raise RuntimeError("socket write failed")
		self.sent.append(json.loads(data))

	async def close(self, code: int = 1000, reason: str = "") -> None:
		self.open = False
		self.closed_with = (code, reason)

	def types(self) -> list[str]:
		return [frame["type"] for frame in self.sent]

	def of_type(self, message_type: str) -> list[dict]:
		return [frame for frame in self.sent if frame["type"] == message_type]


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment."""
	original_env = settings.environment
	original_admin = settings.obs_admin_token
	original_public = settings.obs_metrics_public
	settings.environment = "dev"
	settings.obs_admin_token = ADMIN_TOKEN
	settings.obs_metrics_public = False
	try:
		yield
	finally:
		settings.environment = original_env
		settings.obs_admin_token = original_admin
		settings.obs_metrics_public = original_public


@pytest.fixture
def make_transport():
	def _factory(*, fail: bool = False) -> FakeTransport:
		return FakeTransport(fail=fail)

	return _factory


@pytest.fixture
def jwt_service() -> JwtService:
	return JwtService()


@pytest.fixture
def registry() -> ConnectionRegistry:
	return ConnectionRegistry()


@pytest.fixture
def router(registry) -> MessageRouter:
	return MessageRouter(registry)


@pytest.fixture
def forum_repo() -> ForumRepository:
	return ForumRepository(memory_store=_InMemoryForumStore())
