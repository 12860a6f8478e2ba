"""Attendance list and verification log of one event.

An instance is bound to ``(partition, attendance table, verification table)``.
The verification table is append-only: rows are inserted, never updated.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional
from uuid import uuid4

from scanattend.domain.attendance.models import AttendanceRecord, ImportReport, VerificationRecord, VerificationStatus
from scanattend.domain.attendance.schemas import AttendeeCreate, AttendeeUpdate, VerificationCreate
from scanattend.domain.audit.models import AuditAction
from scanattend.domain.audit.repo import AuditLog, default_audit
from scanattend.domain.common.exceptions import AttendanceError, ConflictError, NotFoundError, StorageError, ValidationError
from scanattend.domain.common.naming import qualified
from scanattend.domain.common.repository import Repository
from scanattend.domain.common.results import Page, Result
from scanattend.domain.common.rows import utcnow
from scanattend.domain.common.validation import validate
from scanattend.infra.gateway import ExecutionGateway, fetch_page
from scanattend.infra.sql import build_count, build_delete, build_insert, build_select, build_update
from scanattend.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


class AttendanceRepository(Repository):
	def __init__(
		self,
		gateway: ExecutionGateway,
		partition_id: str,
		attendance_table: str,
		verification_table: str,
		*,
		audit: Optional[AuditLog] = None,
		event_id: Any = None,
	) -> None:
		super().__init__(gateway, partition_id)
		self.attendance_table = attendance_table
		self.verification_table = verification_table
		self.audit = audit if audit is not None else default_audit(gateway, partition_id)
		self.event_id = None if event_id is None else str(event_id)

	def bind(self, gateway: ExecutionGateway) -> "AttendanceRepository":
		"""Same tables, different gateway (e.g. one bound to a transaction)."""
		return AttendanceRepository(
			gateway,
			self.partition_id,
			self.attendance_table,
			self.verification_table,
			audit=self.audit,
			event_id=self.event_id,
		)

	@property
	def lock_key(self) -> str:
		return f"{self.partition_id}.{self.verification_table}"

	# --- Raising primitives used by the verification engine ----------------

	async def get_attendee(self, participant_id: str) -> Optional[AttendanceRecord]:
		row = await self._one(
			build_select(self.attendance_table, {"participant_id": participant_id}, self.partition_id)
		)
		return AttendanceRecord.from_row(row) if row else None

	async def get_latest_verification(self, participant_id: str) -> Optional[VerificationRecord]:
		row = await self._one(
			build_select(
				self.verification_table,
				{"participant_id": participant_id},
				self.partition_id,
				order_by="verified_at",
				descending=True,
				limit=1,
			)
		)
		return VerificationRecord.from_row(row) if row else None

	async def count_verifications(self, participant_id: str) -> int:
		return await self._count(
			build_count(self.verification_table, {"participant_id": participant_id}, self.partition_id)
		)

	async def append_verification(self, payload: VerificationCreate) -> VerificationRecord:
		row = await self._one(
			build_insert(
				self.verification_table,
				{
					"id": str(uuid4()),
					"name": payload.name,
					"participant_id": payload.participant_id,
					"status": payload.status.value,
					"verified_at": utcnow(),
				},
				self.partition_id,
			)
		)
		if row is None:
			raise StorageError("insert returned no row")
		return VerificationRecord.from_row(row)

	async def _audit_attendee(self, action: AuditAction, participant_id: str, **details: Any) -> None:
		await self._audit(action, resource_id=participant_id, details={"event_id": self.event_id, **details})

	async def lock_participant(self, participant_id: str) -> None:
		"""Take a transaction-scoped advisory lock for one participant of this event."""
		await self._raw(
			"SELECT pg_advisory_xact_lock(hashtextextended($1, 0))",
			{"param1": f"{self.lock_key}:{participant_id}"},
		)

	async def _insert_attendee(self, payload: AttendeeCreate) -> AttendanceRecord:
		if await self.get_attendee(payload.participant_id) is not None:
			raise ConflictError("Participant ID already exists")
		try:
			row = await self._one(
				build_insert(
					self.attendance_table,
					{
						"id": str(uuid4()),
						"name": payload.name,
						"participant_id": payload.participant_id,
						"created_at": utcnow(),
					},
					self.partition_id,
				)
			)
		except ConflictError as exc:
			# Lost a race against a concurrent insert of the same id.
			raise ConflictError("Participant ID already exists") from exc
		if row is None:
			raise StorageError("insert returned no row")
		return AttendanceRecord.from_row(row)

	# --- Attendees -------------------------------------------------------------

	async def add_attendee(self, data: Any) -> Result[AttendanceRecord]:
		try:
			record = await self._insert_attendee(validate(AttendeeCreate, data))
			await self._audit_attendee(AuditAction.ATTENDEE_ADD, record.participant_id, name=record.name)
			return Result.ok(record)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to add attendee")

	async def bulk_import(self, rows: Iterable[Any]) -> Result[ImportReport]:
		"""Import rows one by one; bad rows land in the report instead of aborting.

		``duplicates`` holds ids already present or repeated within the batch,
		``errors`` holds malformed rows (``Row N: ...``, 1-based).
		"""
		batch = list(rows or ())
		if not batch:
			return Result.fail(ValidationError(["rows: at least one attendee is required"]))

		report = ImportReport()
		seen: set[str] = set()
		for index, raw in enumerate(batch, start=1):
			try:
				payload = validate(AttendeeCreate, raw)
			except ValidationError as exc:
				report.errors.append(f"Row {index}: {'; '.join(exc.fields) or exc.detail}")
				continue

			label = f"{payload.name} ({payload.participant_id})"
			if payload.participant_id in seen:
				report.duplicates.append(label)
				continue
			seen.add(payload.participant_id)

			try:
				report.imported.append(await self._insert_attendee(payload))
			except ConflictError:
				report.duplicates.append(label)
			except AttendanceError as exc:
				if not exc.public:
					_LOG.warning("attendance.import_row_failed", extra={"row": index, "error": str(exc)})
				report.errors.append(f"Row {index}: {exc.detail if exc.public else 'failed to store row'}")

		obs_metrics.inc_import_rows("imported", len(report.imported))
		obs_metrics.inc_import_rows("duplicate", len(report.duplicates))
		obs_metrics.inc_import_rows("error", len(report.errors))
		_LOG.info(
			"attendance.bulk_import",
			extra={
				"table": self.attendance_table,
				"imported": len(report.imported),
				"duplicates": len(report.duplicates),
				"errors": len(report.errors),
			},
		)
		await self._audit(
			AuditAction.ATTENDEE_IMPORT,
			success=bool(report.imported) or not report.errors,
			details={
				"event_id": self.event_id,
				"imported": len(report.imported),
				"duplicates": len(report.duplicates),
				"errors": len(report.errors),
			},
		)
		return Result.ok(report)

	async def find_by_participant_id(self, participant_id: str) -> Result[Optional[AttendanceRecord]]:
		try:
			return Result.ok(await self.get_attendee(participant_id))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to find attendee")

	async def list_attendees(self, page: int = 1, limit: Optional[int] = None) -> Result[Page[AttendanceRecord]]:
		table = qualified(self.attendance_table, self.partition_id)
		try:
			rows = await fetch_page(
				self.gateway,
				f"SELECT * FROM {table} ORDER BY created_at DESC",
				f"SELECT COUNT(*) AS count FROM {table}",
				page=page,
				limit=limit,
			)
			return Result.ok(rows.map(AttendanceRecord.from_row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list attendees")

	async def update_attendee(self, participant_id: str, data: Any) -> Result[AttendanceRecord]:
		"""Administrative edit; only the display name can change."""
		try:
			payload = validate(AttendeeUpdate, data)
			row = await self._one(
				build_update(
					self.attendance_table,
					{"name": payload.name},
					{"participant_id": participant_id},
					self.partition_id,
				)
			)
			if row is None:
				raise NotFoundError("Participant not found")
			await self._audit_attendee(AuditAction.ATTENDEE_UPDATE, participant_id, name=payload.name)
			return Result.ok(AttendanceRecord.from_row(row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to update attendee")

	async def delete_attendee(self, participant_id: str) -> Result[bool]:
		try:
			if await self.count_verifications(participant_id) > 0:
				raise ConflictError("Participant has verification history and cannot be deleted")
			rows = await self._rows(
				build_delete(self.attendance_table, {"participant_id": participant_id}, self.partition_id)
			)
			if not rows:
				raise NotFoundError("Participant not found")
			_LOG.info("attendance.attendee_deleted", extra={"table": self.attendance_table})
			await self._audit_attendee(AuditAction.ATTENDEE_DELETE, participant_id)
			return Result.ok(True)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to delete attendee")

	# --- Verification log ------------------------------------------------------

	async def find_latest_verification(self, participant_id: str) -> Result[Optional[VerificationRecord]]:
		try:
			return Result.ok(await self.get_latest_verification(participant_id))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to find verification")

	async def verification_count(self, participant_id: str) -> Result[int]:
		try:
			return Result.ok(await self.count_verifications(participant_id))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to count verifications")

	async def list_verifications(
		self,
		page: int = 1,
		limit: Optional[int] = None,
		status: Optional[VerificationStatus | str] = None,
	) -> Result[Page[VerificationRecord]]:
		table = qualified(self.verification_table, self.partition_id)
		where, params = "", {}
		if status is not None:
			try:
				status = VerificationStatus(status)
			except ValueError:
				return Result.fail(ValidationError([f"status: unknown status {status!r}"]))
			where, params = " WHERE status = $1", {"param1": status.value}
		try:
			rows = await fetch_page(
				self.gateway,
				f"SELECT * FROM {table}{where} ORDER BY verified_at DESC",
				f"SELECT COUNT(*) AS count FROM {table}{where}",
				page=page,
				limit=limit,
				params=params,
			)
			return Result.ok(rows.map(VerificationRecord.from_row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list verifications")

	async def insert_verification(self, data: Any) -> Result[VerificationRecord]:
		try:
			return Result.ok(await self.append_verification(validate(VerificationCreate, data)))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to record verification")


__all__ = ["AttendanceRepository"]
