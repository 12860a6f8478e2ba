import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package and test helpers are importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
TESTS_ROOT = Path(__file__).resolve().parent
for path in (BACKEND_ROOT, TESTS_ROOT):
	if str(path) not in sys.path:
		sys.path.insert(0, str(path))

from fakes import InMemoryChangeFeed, RecordingGateway  # noqa: E402
from scanattend.infra import redis as redis_module  # noqa: E402
from scanattend.obs import logging as obs_logging  # noqa: E402
from scanattend.settings import settings  # noqa: E402


@pytest_asyncio.fixture
async def fake_redis():
	original = redis_module.redis_client.client
	client = FakeRedis(decode_responses=True)
	redis_module.set_redis_client(client)
	try:
		yield client
	finally:
		redis_module.set_redis_client(original)
		await client.flushall()


@pytest.fixture
def gateway() -> RecordingGateway:
	return RecordingGateway()


@pytest.fixture
def feed() -> InMemoryChangeFeed:
	return InMemoryChangeFeed()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Deterministic settings for every test; restored afterwards."""
	original = {
		"environment": settings.environment,
		"serialize_scans": settings.serialize_scans,
		"page_size_default": settings.page_size_default,
		"page_size_max": settings.page_size_max,
		"audit_enabled": settings.audit_enabled,
	}
	settings.environment = "dev"
	settings.serialize_scans = False
	settings.page_size_default = 50
	settings.page_size_max = 500
	settings.audit_enabled = False
	try:
		yield
	finally:
		for key, value in original.items():
			setattr(settings, key, value)
		obs_logging.clear_context()
