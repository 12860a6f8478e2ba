"""Redis connection management.

``redis_client`` is a stable proxy so modules can import it once while the
underlying client is swapped at runtime (fakeredis in tests).
"""

from __future__ import annotations

import redis.asyncio as redis

from scanattend.settings import settings


class RedisProxy:
	"""Forwards attribute access to the current underlying client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	async def xadd_capped(self, name: str, fields: dict, maxlen: int) -> str:
		"""XADD with exact trimming so a stream never exceeds ``maxlen`` entries."""
		return await self._client.xadd(name, fields, maxlen=maxlen, approximate=False)

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
