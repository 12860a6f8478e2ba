"""Single execution entry point for statements against the tenant database.

``ExecutionGateway.execute`` never raises for storage failures: it returns a
``QueryResult`` whose ``error_kind`` tells callers whether the failure came
from the database rejecting the statement (``storage``) or from the channel
itself (``transient``). Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import asyncpg

from scanattend.domain.common.exceptions import ConflictError, StorageError, TransientStorageError
from scanattend.domain.common.results import Page
from scanattend.infra.postgres import get_pool
from scanattend.obs import metrics as obs_metrics
from scanattend.settings import clamp_limit

_LOG = logging.getLogger(__name__)

STORAGE = "storage"
TRANSIENT = "transient"

_PARAM_INDEX = re.compile(r"(\d+)$")
# connection exception, insufficient resources, operator intervention,
# serialization failure / deadlock
_TRANSIENT_SQLSTATE_PREFIXES = ("08", "53", "57P", "40001", "40P01")
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

Row = Dict[str, Any]


@dataclass
class QueryResult:
	success: bool
	data: List[Row] = field(default_factory=list)
	error: Optional[str] = None
	error_kind: Optional[str] = None
	sqlstate: Optional[str] = None

	@property
	def first(self) -> Optional[Row]:
		return self.data[0] if self.data else None

	def raise_for_error(self) -> "QueryResult":
		if self.success:
			return self
		if self.error_kind == TRANSIENT:
			raise TransientStorageError(self.error)
		if self.sqlstate == UNIQUE_VIOLATION:
			raise ConflictError("Resource already exists")
		if self.sqlstate == FOREIGN_KEY_VIOLATION:
			raise ConflictError("Referenced record is missing or still referenced")
		raise StorageError(self.error)


def ordered_values(params: Optional[Mapping[str, Any]]) -> List[Any]:
	"""Order ``{"param1": .., "param2": ..}`` by numeric suffix for positional binding."""
	if not params:
		return []

	def _key(name: str) -> int:
		match = _PARAM_INDEX.search(name)
		if match is None:
			raise ValueError(f"parameter name without positional index: {name!r}")
		return int(match.group(1))

	return [params[name] for name in sorted(params, key=_key)]


def classify(exc: BaseException) -> str:
	if isinstance(exc, asyncpg.PostgresError):
		sqlstate = getattr(exc, "sqlstate", None) or ""
		if sqlstate.startswith(_TRANSIENT_SQLSTATE_PREFIXES):
			return TRANSIENT
		return STORAGE
	return TRANSIENT


class ExecutionGateway:
	"""Runs parameterized statements through a pool (or one bound connection)."""

	def __init__(
		self,
		pool: Optional[asyncpg.pool.Pool] = None,
		*,
		connection: Optional[asyncpg.Connection] = None,
	) -> None:
		self._pool = pool
		self._connection = connection

	async def _pool_or_default(self) -> asyncpg.pool.Pool:
		if self._pool is None:
			self._pool = await get_pool()
		return self._pool

	async def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> QueryResult:
		values = ordered_values(params)
		try:
			if self._connection is not None:
				records = await self._connection.fetch(sql, *values)
			else:
				pool = await self._pool_or_default()
				async with pool.acquire() as conn:
					records = await conn.fetch(sql, *values)
		except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
			kind = classify(exc)
			obs_metrics.inc_gateway_failure(kind)
			_LOG.warning(
				"gateway.execute_failed",
				extra={"kind": kind, "error": str(exc), "statement": sql.split("(", 1)[0][:120]},
			)
			return QueryResult(
				success=False,
				error=str(exc) or exc.__class__.__name__,
				error_kind=kind,
				sqlstate=getattr(exc, "sqlstate", None),
			)
		return QueryResult(success=True, data=[dict(record) for record in records])

	@asynccontextmanager
	async def transaction(self) -> AsyncIterator["ExecutionGateway"]:
		"""Yield a gateway bound to one connection inside a transaction."""
		if self._connection is not None:
			async with self._connection.transaction():
				yield self
			return
		try:
			pool = await self._pool_or_default()
			async with pool.acquire() as conn:
				async with conn.transaction():
					yield ExecutionGateway(connection=conn)
		except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
			# Only acquire/commit can get here; statements inside report via QueryResult.
			kind = classify(exc)
			obs_metrics.inc_gateway_failure(kind)
			_LOG.warning("gateway.transaction_failed", extra={"kind": kind, "error": str(exc)})
			if kind == TRANSIENT:
				raise TransientStorageError(str(exc)) from exc
			raise StorageError(str(exc)) from exc


async def fetch_page(
	gateway: ExecutionGateway,
	query: str,
	count_query: str,
	*,
	page: int = 1,
	limit: Optional[int] = None,
	params: Optional[Mapping[str, Any]] = None,
) -> Page[Row]:
	"""Run a data query and its count query concurrently and build a page.

	Both queries must succeed; the first failure is raised as a storage error.
	"""
	page = max(1, int(page or 1))
	limit = clamp_limit(limit)
	offset = (page - 1) * limit
	base = dict(params or {})
	next_index = len(base) + 1
	paged_params = dict(base)
	paged_params[f"param{next_index}"] = limit
	paged_params[f"param{next_index + 1}"] = offset
	paged_query = f"{query} LIMIT ${next_index} OFFSET ${next_index + 1}"

	data_result, count_result = await asyncio.gather(
		gateway.execute(paged_query, paged_params),
		gateway.execute(count_query, base),
	)
	data_result.raise_for_error()
	count_result.raise_for_error()

	rows = data_result.data
	total = int(count_result.first["count"]) if count_result.first else 0
	return Page(
		data=rows,
		total=total,
		page=page,
		limit=limit,
		has_more=offset + len(rows) < total,
	)


__all__ = ["ExecutionGateway", "QueryResult", "classify", "fetch_page", "ordered_values"]
