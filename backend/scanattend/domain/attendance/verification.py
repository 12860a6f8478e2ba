"""Scan verification against an event's attendance list.

Per (event, participant) the state is derived from the log, never stored:

* ``unknown``: no attendance row; a scan is rejected and nothing is written
* ``pending``: attendance row, no verification rows yet
* ``confirmed``: at least one verification row

A scan of a known participant always appends a row: ``verified`` for the
first one, ``duplicate`` for every later one.

Without ``serialize`` the lookup and the insert are separate statements, so
two simultaneous scans of the same participant may both be recorded as
``verified``. With ``serialize`` both run in one transaction holding an
advisory lock on the participant, and the later scan sees the earlier row.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel

from scanattend.domain.attendance.models import (
	AttendanceRecord,
	ParticipantState,
	ScanOutcome,
	VerificationRecord,
	VerificationStatus,
)
from scanattend.domain.attendance.repo import AttendanceRepository
from scanattend.domain.attendance.schemas import ParticipantId, VerificationCreate
from scanattend.domain.audit.models import AuditAction
from scanattend.domain.common.exceptions import AttendanceError, NotFoundError
from scanattend.domain.common.results import Result
from scanattend.domain.common.validation import validate
from scanattend.obs import logging as obs_logging
from scanattend.obs import metrics as obs_metrics
from scanattend.settings import settings

_LOG = logging.getLogger(__name__)


class _ScanInput(BaseModel):
	participant_id: ParticipantId


class VerificationEngine:
	def __init__(self, repo: AttendanceRepository, *, serialize: Optional[bool] = None) -> None:
		self._repo = repo
		self._serialize = settings.serialize_scans if serialize is None else serialize

	def _log_context(self):
		return obs_logging.log_context(partition=self._repo.partition_id, event_id=self._repo.event_id)

	async def _audit(
		self, action: AuditAction, participant_id: str, *, error: Optional[str] = None, **details: Any
	) -> None:
		if self._repo.audit is None:
			return
		await self._repo.audit.record(
			action,
			resource_id=participant_id or None,
			success=error is None,
			details={"event_id": self._repo.event_id, **details},
			error_message=error,
		)

	async def _require_attendee(self, repo: AttendanceRepository, participant_id: str) -> AttendanceRecord:
		attendee = await repo.get_attendee(participant_id)
		if attendee is None:
			raise NotFoundError("Participant not found in attendance list")
		return attendee

	@staticmethod
	async def _record(repo: AttendanceRepository, attendee: AttendanceRecord) -> ScanOutcome:
		latest = await repo.get_latest_verification(attendee.participant_id)
		status = VerificationStatus.VERIFIED if latest is None else VerificationStatus.DUPLICATE
		verification = await repo.append_verification(
			VerificationCreate(name=attendee.name, participant_id=attendee.participant_id, status=status)
		)
		return ScanOutcome(verification=verification, attendee=attendee, status=status)

	async def scan(self, participant_id: str) -> Result[ScanOutcome]:
		raw_id = (participant_id or "").strip()
		with self._log_context():
			try:
				participant_id = validate(_ScanInput, {"participant_id": raw_id}).participant_id
				attendee = await self._require_attendee(self._repo, participant_id)
				if self._serialize:
					async with self._repo.gateway.transaction() as tx:
						repo = self._repo.bind(tx)
						await repo.lock_participant(participant_id)
						outcome = await self._record(repo, attendee)
				else:
					outcome = await self._record(self._repo, attendee)
			except AttendanceError as exc:
				obs_metrics.inc_scan(exc.reason)
				if isinstance(exc, NotFoundError):
					_LOG.info("verification.unknown_participant", extra={"table": self._repo.attendance_table})
				await self._audit(AuditAction.SCAN_FAILED, raw_id[:255], reason=exc.reason, error=exc.detail)
				return Result.fail(exc, "Failed to verify attendance")

			obs_metrics.inc_scan(outcome.status.value)
			_LOG.info(
				"verification.scanned",
				extra={"table": self._repo.verification_table, "status": outcome.status.value},
			)
			await self._audit(AuditAction.SCAN_VERIFY, participant_id, status=outcome.status.value)
			return Result.ok(outcome)

	async def mark_invalid(self, participant_id: str) -> Result[VerificationRecord]:
		"""Administratively append an ``invalid`` entry for a known participant."""
		with self._log_context():
			try:
				attendee = await self._require_attendee(self._repo, participant_id)
				record = await self._repo.append_verification(
					VerificationCreate(
						name=attendee.name,
						participant_id=attendee.participant_id,
						status=VerificationStatus.INVALID,
					)
				)
			except AttendanceError as exc:
				return Result.fail(exc, "Failed to mark verification invalid")
			obs_metrics.inc_scan(VerificationStatus.INVALID.value)
			_LOG.info("verification.marked_invalid", extra={"table": self._repo.verification_table})
			await self._audit(AuditAction.SCAN_INVALIDATE, participant_id)
			return Result.ok(record)

	async def participant_state(self, participant_id: str) -> Result[ParticipantState]:
		try:
			if await self._repo.get_attendee(participant_id) is None:
				return Result.ok(ParticipantState.UNKNOWN)
			if await self._repo.count_verifications(participant_id) == 0:
				return Result.ok(ParticipantState.PENDING)
			return Result.ok(ParticipantState.CONFIRMED)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to get participant state")


__all__ = ["VerificationEngine"]
