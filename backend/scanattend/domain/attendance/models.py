"""Domain models for attendance lists and the verification log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping
from uuid import UUID

from scanattend.domain.common.rows import as_datetime, as_uuid


class VerificationStatus(str, Enum):
	VERIFIED = "verified"
	DUPLICATE = "duplicate"
	# Only ever written by administrative marking, never by a scan.
	INVALID = "invalid"


class ParticipantState(str, Enum):
	UNKNOWN = "unknown"
	PENDING = "pending"
	CONFIRMED = "confirmed"


@dataclass
class AttendanceRecord:
	id: UUID
	name: str
	participant_id: str
	created_at: datetime

	@classmethod
	def from_row(cls, row: Mapping[str, Any]) -> "AttendanceRecord":
		return cls(
			id=as_uuid(row["id"]),
			name=row["name"],
			participant_id=str(row["participant_id"]),
			created_at=as_datetime(row["created_at"]),
		)


@dataclass
class VerificationRecord:
	"""One entry of the append-only scan log."""

	id: UUID
	name: str
	participant_id: str
	status: VerificationStatus
	verified_at: datetime

	@classmethod
	def from_row(cls, row: Mapping[str, Any]) -> "VerificationRecord":
		# Change feed rows may carry extra columns; only the known ones are read.
		return cls(
			id=as_uuid(row["id"]),
			name=row["name"],
			participant_id=str(row["participant_id"]),
			status=VerificationStatus(row["status"]),
			verified_at=as_datetime(row["verified_at"]),
		)

	def to_wire(self) -> dict[str, str]:
		return {
			"id": str(self.id),
			"name": self.name,
			"participantId": self.participant_id,
			"status": self.status.value,
			"verifiedAt": self.verified_at.isoformat(),
		}


@dataclass
class ScanOutcome:
	verification: VerificationRecord
	attendee: AttendanceRecord
	status: VerificationStatus


@dataclass
class ImportReport:
	imported: List[AttendanceRecord] = field(default_factory=list)
	# "<name> (<participant id>)" for ids already present or repeated in the batch
	duplicates: List[str] = field(default_factory=list)
	# "Row N: <reason>" for malformed rows
	errors: List[str] = field(default_factory=list)


@dataclass
class AttendanceStats:
	total_attendees: int
	verified_count: int
	duplicate_count: int
	verification_rate: float
	recent_verifications: List[VerificationRecord] = field(default_factory=list)

	def to_wire(self) -> dict[str, Any]:
		return {
			"totalAttendees": self.total_attendees,
			"verifiedCount": self.verified_count,
			"duplicateCount": self.duplicate_count,
			"verificationRate": self.verification_rate,
			"recentVerifications": [record.to_wire() for record in self.recent_verifications],
		}


@dataclass
class EventStats:
	total_attendees: int
	verified_attendees: int
	verification_rate: float

	def to_wire(self) -> dict[str, float]:
		return {
			"totalAttendees": self.total_attendees,
			"verifiedAttendees": self.verified_attendees,
			"verificationRate": self.verification_rate,
		}


@dataclass
class OrganizationStats:
	total_events: int
	active_events: int
	total_members: int
