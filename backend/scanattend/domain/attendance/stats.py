"""Attendance statistics computed from the attendance list and verification log."""

from __future__ import annotations

import asyncio
import logging
import math

from scanattend.domain.attendance.models import AttendanceStats, EventStats, OrganizationStats, VerificationRecord, VerificationStatus
from scanattend.domain.common.exceptions import AttendanceError
from scanattend.domain.common.naming import qualified
from scanattend.domain.common.results import Result
from scanattend.domain.tenancy.provisioner import EVENTS_TABLE, MEMBERS_TABLE
from scanattend.infra.gateway import ExecutionGateway
from scanattend.infra.sql import build_count, build_select
from scanattend.settings import settings

_LOG = logging.getLogger(__name__)


def verification_rate(verified: int, total: int) -> float:
	"""Percentage of ``total`` with two decimals, halves rounded up; 0 for an empty list."""
	if total <= 0:
		return 0.0
	return math.floor(verified / total * 100 * 100 + 0.5) / 100


class StatisticsAggregator:
	def __init__(self, gateway: ExecutionGateway) -> None:
		self._gateway = gateway

	async def _count(self, table: str, partition: str, conditions=None) -> int:
		statement = build_count(table, conditions, partition)
		result = (await self._gateway.execute(statement.sql, statement.params)).raise_for_error()
		return int(result.first["count"]) if result.first else 0

	async def _status_counts(self, partition: str, verification_table: str) -> dict[str, int]:
		statement = build_count(verification_table, partition=partition, group_by="status")
		result = (await self._gateway.execute(statement.sql, statement.params)).raise_for_error()
		return {row["status"]: int(row["count"]) for row in result.data}

	async def get_attendance_stats(
		self,
		partition: str,
		attendance_table: str,
		verification_table: str,
	) -> Result[AttendanceStats]:
		recent = build_select(
			verification_table,
			partition=partition,
			order_by="verified_at",
			descending=True,
			limit=settings.recent_verifications_limit,
		)
		try:
			total, by_status, recent_result = await asyncio.gather(
				self._count(attendance_table, partition),
				self._status_counts(partition, verification_table),
				self._gateway.execute(recent.sql, recent.params),
			)
			recent_rows = recent_result.raise_for_error().data
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to get attendance statistics")

		verified = by_status.get(VerificationStatus.VERIFIED.value, 0)
		return Result.ok(
			AttendanceStats(
				total_attendees=total,
				verified_count=verified,
				duplicate_count=by_status.get(VerificationStatus.DUPLICATE.value, 0),
				verification_rate=verification_rate(verified, total),
				recent_verifications=[VerificationRecord.from_row(row) for row in recent_rows],
			)
		)

	async def get_event_stats(
		self,
		partition: str,
		attendance_table: str,
		verification_table: str,
	) -> Result[EventStats]:
		try:
			total, verified = await asyncio.gather(
				self._count(attendance_table, partition),
				self._count(verification_table, partition, {"status": VerificationStatus.VERIFIED.value}),
			)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to get event statistics")
		return Result.ok(
			EventStats(
				total_attendees=total,
				verified_attendees=verified,
				verification_rate=verification_rate(verified, total),
			)
		)

	async def get_organization_stats(self, partition: str) -> Result[OrganizationStats]:
		sql = (
			f"SELECT (SELECT COUNT(*) FROM {qualified(EVENTS_TABLE, partition)}) AS total_events, "
			f"(SELECT COUNT(*) FROM {qualified(EVENTS_TABLE, partition)} WHERE is_active) AS active_events, "
			f"(SELECT COUNT(*) FROM {qualified(MEMBERS_TABLE, partition)}) AS total_members"
		)
		try:
			row = (await self._gateway.execute(sql)).raise_for_error().first or {}
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to get organization statistics")
		return Result.ok(
			OrganizationStats(
				total_events=int(row.get("total_events") or 0),
				active_events=int(row.get("active_events") or 0),
				total_members=int(row.get("total_members") or 0),
			)
		)


__all__ = ["StatisticsAggregator", "verification_rate"]
