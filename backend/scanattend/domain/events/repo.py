"""Events of one organization and the lifecycle of their tables."""

from __future__ import annotations

import logging
from typing import Any, List, Optional
from uuid import UUID, uuid4

from scanattend.domain.attendance.models import EventStats
from scanattend.domain.attendance.repo import AttendanceRepository
from scanattend.domain.attendance.stats import StatisticsAggregator
from scanattend.domain.audit.models import AuditAction
from scanattend.domain.audit.repo import AuditLog, default_audit
from scanattend.domain.common import naming
from scanattend.domain.common.exceptions import (
	AttendanceError,
	ConflictError,
	NotFoundError,
	ProvisioningError,
	StorageError,
	ValidationError,
)
from scanattend.domain.common.naming import qualified
from scanattend.domain.common.repository import Repository
from scanattend.domain.common.results import Page, Result
from scanattend.domain.common.rows import utcnow
from scanattend.domain.common.validation import validate
from scanattend.domain.events.models import Event
from scanattend.domain.events.schemas import EventCreate, EventUpdate
from scanattend.domain.tenancy.provisioner import EVENTS_TABLE, SchemaProvisioner
from scanattend.infra.gateway import ExecutionGateway, fetch_page
from scanattend.infra.sql import build_delete, build_insert, build_select, build_update

_LOG = logging.getLogger(__name__)


class EventRepository(Repository):
	"""Event metadata rows plus their per-event attendance/verification tables.

	Table names are derived from the event name once, stored on the row and
	used from then on; renaming an event never moves its tables.
	"""

	def __init__(
		self,
		gateway: ExecutionGateway,
		partition_id: str,
		provisioner: Optional[SchemaProvisioner] = None,
		stats: Optional[StatisticsAggregator] = None,
		audit: Optional[AuditLog] = None,
	) -> None:
		super().__init__(gateway, partition_id)
		self.audit = audit if audit is not None else default_audit(gateway, partition_id)
		self.provisioner = provisioner or SchemaProvisioner(gateway)
		self.stats = stats or StatisticsAggregator(gateway)

	@property
	def _table(self) -> str:
		return qualified(EVENTS_TABLE, self.partition_id)

	async def _get(self, event_id: UUID | str) -> Optional[Event]:
		row = await self._one(build_select(EVENTS_TABLE, {"id": str(event_id)}, self.partition_id))
		return Event.from_row(row) if row else None

	async def _get_by_name(self, name: str) -> Optional[Event]:
		row = await self._one(build_select(EVENTS_TABLE, {"name": name}, self.partition_id))
		return Event.from_row(row) if row else None

	async def _require(self, event_id: UUID | str) -> Event:
		event = await self._get(event_id)
		if event is None:
			raise NotFoundError("Event not found")
		return event

	async def _delete_row(self, event_id: UUID | str) -> bool:
		return bool(await self._rows(build_delete(EVENTS_TABLE, {"id": str(event_id)}, self.partition_id)))

	async def create(self, data: Any) -> Result[Event]:
		try:
			payload = validate(EventCreate, data)
			if await self._get_by_name(payload.name) is not None:
				raise ConflictError("Event with this name already exists")
			tables = naming.event_tables(payload.name)
			clash = await self._one(
				build_select(
					EVENTS_TABLE,
					{"attendance_table_name": tables.attendance},
					self.partition_id,
					columns=("id", "name"),
				)
			)
			if clash is not None:
				raise ConflictError(f"Event name is too similar to existing event '{clash['name']}'")

			event_id = uuid4()
			row = await self._one(
				build_insert(
					EVENTS_TABLE,
					{
						"id": str(event_id),
						"name": payload.name,
						"creator_id": str(payload.creator_id),
						"created_at": utcnow(),
						"is_active": True,
						"attendance_table_name": tables.attendance,
						"verification_table_name": tables.verification,
					},
					self.partition_id,
				)
			)
			if row is None:
				raise StorageError("insert returned no row")

			provisioned = await self.provisioner.create_event_tables(self.partition_id, payload.name)
			if not provisioned.success:
				_LOG.error(
					"events.tables_failed",
					extra={"event_id": str(event_id), "attendance_table": tables.attendance, "error": provisioned.error},
				)
				await self._compensate(event_id)
				raise ProvisioningError(provisioned.error)

			_LOG.info("events.created", extra={"event_id": str(event_id), "attendance_table": tables.attendance})
			await self._audit(
				AuditAction.EVENT_CREATE, resource_id=event_id, details={"name": payload.name, "attendance_table": tables.attendance}
			)
			return Result.ok(Event.from_row(row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to create event")

	async def _compensate(self, event_id: UUID) -> None:
		try:
			await self._delete_row(event_id)
		except AttendanceError:
			_LOG.exception("events.compensating_delete_failed", extra={"event_id": str(event_id)})

	async def find_by_id(self, event_id: UUID | str) -> Result[Optional[Event]]:
		try:
			return Result.ok(await self._get(event_id))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to find event")

	async def find_by_name(self, name: str) -> Result[Optional[Event]]:
		try:
			return Result.ok(await self._get_by_name(name))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to find event")

	async def update(self, event_id: UUID | str, data: Any) -> Result[Event]:
		"""Rename an event; its table names stay as created."""
		try:
			payload = validate(EventUpdate, data)
			changes = payload.model_dump(exclude_none=True)
			if not changes:
				raise ValidationError(["input: at least one field is required"])
			row = await self._one(build_update(EVENTS_TABLE, changes, {"id": str(event_id)}, self.partition_id))
			if row is None:
				raise NotFoundError("Event not found")
			await self._audit(AuditAction.EVENT_UPDATE, resource_id=event_id, details=changes)
			return Result.ok(Event.from_row(row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to update event")

	async def _set_active(self, event_id: UUID | str, active: bool) -> Event:
		ended_at = "NULL" if active else "NOW()"
		rows = await self._raw(
			f"UPDATE {self._table} SET is_active = $1, ended_at = {ended_at} WHERE id = $2 RETURNING *",
			{"param1": active, "param2": str(event_id)},
		)
		if not rows:
			raise NotFoundError("Event not found")
		return Event.from_row(rows[0])

	async def end_event(self, event_id: UUID | str) -> Result[Event]:
		try:
			event = await self._set_active(event_id, False)
			_LOG.info("events.ended", extra={"event_id": str(event.id)})
			await self._audit(AuditAction.EVENT_ARCHIVE, resource_id=event.id)
			return Result.ok(event)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to end event")

	async def reactivate_event(self, event_id: UUID | str) -> Result[Event]:
		try:
			event = await self._set_active(event_id, True)
			_LOG.info("events.reactivated", extra={"event_id": str(event.id)})
			await self._audit(AuditAction.EVENT_REACTIVATE, resource_id=event.id)
			return Result.ok(event)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to reactivate event")

	async def delete(self, event_id: UUID | str) -> Result[bool]:
		"""Drop the event's tables, then its row.

		A failed drop is logged and does not block deleting the row.
		"""
		try:
			event = await self._require(event_id)
			dropped = await self.provisioner.drop_tables(
				self.partition_id,
				event.attendance_table_name,
				event.verification_table_name,
			)
			if not dropped.success:
				_LOG.error(
					"events.drop_tables_failed",
					extra={"event_id": str(event.id), "attendance_table": event.attendance_table_name, "error": dropped.error},
				)
			await self._delete_row(event.id)
			_LOG.info("events.deleted", extra={"event_id": str(event.id)})
			await self._audit(
				AuditAction.EVENT_DELETE,
				resource_id=event.id,
				details={"name": event.name, "tables_dropped": dropped.success},
			)
			return Result.ok(True)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to delete event")

	async def list(self, page: int = 1, limit: Optional[int] = None) -> Result[Page[Event]]:
		try:
			rows = await fetch_page(
				self.gateway,
				f"SELECT * FROM {self._table} ORDER BY created_at DESC",
				f"SELECT COUNT(*) AS count FROM {self._table}",
				page=page,
				limit=limit,
			)
			return Result.ok(rows.map(Event.from_row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list events")

	async def list_active(self) -> Result[List[Event]]:
		try:
			rows = await self._raw(f"SELECT * FROM {self._table} WHERE is_active ORDER BY created_at DESC")
			return Result.ok([Event.from_row(row) for row in rows])
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list active events")

	async def list_archived(self) -> Result[List[Event]]:
		try:
			rows = await self._raw(f"SELECT * FROM {self._table} WHERE NOT is_active ORDER BY ended_at DESC NULLS LAST")
			return Result.ok([Event.from_row(row) for row in rows])
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list archived events")

	def attendance(self, event: Event) -> AttendanceRepository:
		return AttendanceRepository(
			self.gateway,
			self.partition_id,
			event.attendance_table_name,
			event.verification_table_name,
			audit=self.audit,
			event_id=event.id,
		)

	async def get_event_stats(self, event_id: UUID | str) -> Result[EventStats]:
		try:
			event = await self._require(event_id)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to get event statistics")
		return await self.stats.get_event_stats(
			self.partition_id,
			event.attendance_table_name,
			event.verification_table_name,
		)


__all__ = ["EventRepository"]
