"""Persistent audit trail for one organization partition.

Writes are best-effort: a failed insert is logged and counted, and never
fails the operation being audited.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from scanattend.domain.audit.models import AuditAction, AuditEntry, AuditStats
from scanattend.domain.common.exceptions import AttendanceError, ValidationError
from scanattend.domain.common.naming import qualified
from scanattend.domain.common.repository import Repository
from scanattend.domain.common.results import Page, Result
from scanattend.domain.common.rows import utcnow
from scanattend.domain.tenancy.provisioner import AUDIT_TABLE
from scanattend.infra.gateway import ExecutionGateway, fetch_page
from scanattend.infra.sql import build_insert
from scanattend.obs import metrics as obs_metrics
from scanattend.settings import settings

_LOG = logging.getLogger(__name__)


class AuditLog(Repository):
	def __init__(self, gateway: ExecutionGateway, partition_id: str, *, actor_id: Optional[str] = None) -> None:
		super().__init__(gateway, partition_id)
		self.actor_id = actor_id

	async def record(
		self,
		action: AuditAction | str,
		*,
		resource_id: Any = None,
		success: bool = True,
		details: Optional[Mapping[str, Any]] = None,
		error_message: Optional[str] = None,
		actor_id: Optional[str] = None,
	) -> bool:
		action = AuditAction(action)
		statement = build_insert(
			AUDIT_TABLE,
			{
				"id": str(uuid4()),
				"action": action.value,
				"resource": action.resource,
				"resource_id": None if resource_id is None else str(resource_id),
				"actor_id": actor_id or self.actor_id,
				"success": success,
				"details": json.dumps(dict(details or {}), default=str),
				"error_message": error_message,
				"created_at": utcnow(),
			},
			self.partition_id,
		)
		result = await self.gateway.execute(statement.sql, statement.params)
		if not result.success:
			obs_metrics.inc_audit_write("failed")
			_LOG.warning(
				"audit.write_failed",
				extra={"partition": self.partition_id, "action": action.value, "error": result.error},
			)
			return False
		obs_metrics.inc_audit_write("ok")
		return True

	@staticmethod
	def _filters(
		action: Optional[str],
		resource: Optional[str],
		since: Optional[datetime],
		until: Optional[datetime],
	) -> tuple[str, Dict[str, Any]]:
		clauses: List[str] = []
		params: Dict[str, Any] = {}
		for clause, value in (
			("action = ${}", action),
			("resource = ${}", resource),
			("created_at >= ${}", since),
			("created_at <= ${}", until),
		):
			if value is None:
				continue
			index = len(params) + 1
			clauses.append(clause.format(index))
			params[f"param{index}"] = value
		return (f" WHERE {' AND '.join(clauses)}" if clauses else ""), params

	async def list(
		self,
		page: int = 1,
		limit: Optional[int] = None,
		*,
		action: Optional[AuditAction | str] = None,
		resource: Optional[str] = None,
		since: Optional[datetime] = None,
		until: Optional[datetime] = None,
	) -> Result[Page[AuditEntry]]:
		"""Newest entries first, optionally filtered by action, resource and time window."""
		try:
			if action is not None:
				try:
					action = AuditAction(action).value
				except ValueError:
					raise ValidationError([f"action: unknown audit action {action!r}"]) from None
			table = qualified(AUDIT_TABLE, self.partition_id)
			where, params = self._filters(action, resource, since, until)
			rows = await fetch_page(
				self.gateway,
				f"SELECT * FROM {table}{where} ORDER BY created_at DESC",
				f"SELECT COUNT(*) AS count FROM {table}{where}",
				page=page,
				limit=limit,
				params=params,
			)
			return Result.ok(rows.map(AuditEntry.from_row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list audit entries")

	async def stats(self, *, since: Optional[datetime] = None, until: Optional[datetime] = None) -> Result[AuditStats]:
		table = qualified(AUDIT_TABLE, self.partition_id)
		where, params = self._filters(None, None, since, until)
		try:
			rows = await self._raw(
				f"SELECT action, resource, success, COUNT(*) AS count FROM {table}{where} GROUP BY action, resource, success",
				params,
			)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to get audit statistics")

		stats = AuditStats()
		for row in rows:
			n = int(row["count"])
			stats.total += n
			if row["success"]:
				stats.successful += n
			else:
				stats.failed += n
			stats.by_action[row["action"]] = stats.by_action.get(row["action"], 0) + n
			stats.by_resource[row["resource"]] = stats.by_resource.get(row["resource"], 0) + n
		return Result.ok(stats)


def default_audit(gateway: ExecutionGateway, partition_id: Optional[str]) -> Optional[AuditLog]:
	"""The audit log repositories write to when none is passed in."""
	if not settings.audit_enabled or not partition_id:
		return None
	return AuditLog(gateway, partition_id)


__all__ = ["AuditLog", "default_audit"]
