"""Shared plumbing for partition-scoped repositories."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Mapping, Optional

from scanattend.infra.gateway import ExecutionGateway, Row
from scanattend.infra.sql import Statement

if TYPE_CHECKING:
	from scanattend.domain.audit.repo import AuditLog


class Repository:
	"""Runs statements through the gateway and raises on failure.

	Public repository methods catch :class:`AttendanceError` and return a
	``Result``; these helpers are what raise it.
	"""

	def __init__(self, gateway: ExecutionGateway, partition_id: Optional[str] = None) -> None:
		self.gateway = gateway
		self.partition_id = partition_id
		self.audit: Optional[AuditLog] = None

	async def _rows(self, statement: Statement) -> List[Row]:
		result = await self.gateway.execute(statement.sql, statement.params)
		return result.raise_for_error().data

	async def _one(self, statement: Statement) -> Optional[Row]:
		rows = await self._rows(statement)
		return rows[0] if rows else None

	async def _raw(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Row]:
		result = await self.gateway.execute(sql, params)
		return result.raise_for_error().data

	async def _count(self, statement: Statement) -> int:
		row = await self._one(statement)
		return int(row["count"]) if row else 0

	async def _audit(self, action: str, **fields: Any) -> None:
		if self.audit is not None:
			await self.audit.record(action, **fields)


__all__ = ["Repository"]
