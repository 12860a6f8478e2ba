"""Row-level change feed over Postgres LISTEN/NOTIFY.

Each partition's verification tables carry an ``AFTER INSERT`` trigger, and its
``events`` table an ``AFTER INSERT OR UPDATE`` one. Both publish
``{eventType, schema, table, new}`` as JSON on the configured channel.
:class:`PostgresChangeFeed` holds one dedicated connection listening on that
channel and routes each payload to the sinks registered for its
``(schema, table)``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

import asyncpg

from scanattend.domain.common.exceptions import TransientStorageError
from scanattend.settings import settings

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Change:
	event_type: str
	schema: str
	table: str
	new: Dict[str, Any] = field(default_factory=dict)

	@classmethod
	def from_payload(cls, payload: str | bytes | Dict[str, Any]) -> "Change":
		data = json.loads(payload) if isinstance(payload, (str, bytes)) else payload
		if not isinstance(data, dict):
			raise ValueError("change payload must be an object")
		new = data.get("new") or {}
		if not isinstance(new, dict):
			raise ValueError("change payload 'new' must be an object")
		return cls(
			event_type=str(data.get("eventType", "")).upper(),
			schema=str(data["schema"]),
			table=str(data["table"]),
			new=new,
		)


class ChangeSink(Protocol):
	"""Receiver side of a registration; both methods must return quickly."""

	def deliver(self, change: Change) -> None: ...

	def fail(self, error: BaseException) -> None: ...


class ChangeFeed(Protocol):
	async def register(self, partition: str, table: str, sink: ChangeSink) -> int: ...

	async def unregister(self, token: int) -> None: ...


Connect = Callable[..., Awaitable[asyncpg.Connection]]


class PostgresChangeFeed:
	def __init__(
		self,
		dsn: Optional[str] = None,
		*,
		channel: Optional[str] = None,
		connect: Connect = asyncpg.connect,
	) -> None:
		self._dsn = dsn or settings.postgres_url
		self._channel = channel or settings.change_feed_channel
		self._connect = connect
		self._connection: Optional[asyncpg.Connection] = None
		self._lock = asyncio.Lock()
		self._tokens = itertools.count(1)
		self._sinks: Dict[int, Tuple[str, str, ChangeSink]] = {}

	@property
	def connected(self) -> bool:
		return self._connection is not None and not self._connection.is_closed()

	async def _ensure_connection(self) -> None:
		async with self._lock:
			if self.connected:
				return
			try:
				conn = await self._connect(self._dsn)
				await conn.add_listener(self._channel, self._on_notify)
			except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
				_LOG.warning("change_feed.connect_failed", extra={"channel": self._channel, "error": str(exc)})
				raise TransientStorageError(f"Change feed unavailable: {exc}") from exc
			conn.add_termination_listener(self._on_terminated)
			self._connection = conn
			_LOG.info("change_feed.listening", extra={"channel": self._channel})

	async def register(self, partition: str, table: str, sink: ChangeSink) -> int:
		await self._ensure_connection()
		token = next(self._tokens)
		self._sinks[token] = (partition, table, sink)
		return token

	async def unregister(self, token: int) -> None:
		self._sinks.pop(token, None)
		if not self._sinks:
			await self.close()

	async def close(self) -> None:
		async with self._lock:
			conn, self._connection = self._connection, None
			if conn is None or conn.is_closed():
				return
			try:
				await conn.remove_listener(self._channel, self._on_notify)
				await conn.close()
			except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
				_LOG.warning("change_feed.close_failed", extra={"error": str(exc)})

	def _on_notify(self, connection: asyncpg.Connection, pid: int, channel: str, payload: str) -> None:
		try:
			change = Change.from_payload(payload)
		except (ValueError, KeyError, TypeError) as exc:
			_LOG.warning("change_feed.malformed_payload", extra={"channel": channel, "error": str(exc)})
			return
		self.dispatch(change)

	def dispatch(self, change: Change) -> int:
		delivered = 0
		for partition, table, sink in list(self._sinks.values()):
			if partition == change.schema and table == change.table:
				sink.deliver(change)
				delivered += 1
		return delivered

	def _on_terminated(self, connection: asyncpg.Connection) -> None:
		if connection is not self._connection:
			return
		self._connection = None
		sinks, self._sinks = list(self._sinks.values()), {}
		_LOG.error("change_feed.connection_lost", extra={"channel": self._channel, "subscriptions": len(sinks)})
		error = TransientStorageError("Change feed connection lost")
		for _, _, sink in sinks:
			sink.fail(error)


__all__ = ["Change", "ChangeFeed", "ChangeSink", "PostgresChangeFeed"]
