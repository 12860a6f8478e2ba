"""Audit trail entries kept in each organization's partition."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from uuid import UUID

from scanattend.domain.common.rows import as_datetime, as_uuid

_RESOURCES = {
	"auth": "authentication",
	"org": "organization",
	"member": "member",
	"event": "event",
	"attendee": "attendee",
	"scan": "scan",
}


class AuditAction(str, Enum):
	AUTH_LOGIN = "auth.login"
	AUTH_FAILED_LOGIN = "auth.failed_login"
	ORG_CREATE = "org.create"
	ORG_UPDATE = "org.update"
	MEMBER_CREATE = "member.create"
	MEMBER_UPDATE = "member.update"
	MEMBER_DELETE = "member.delete"
	EVENT_CREATE = "event.create"
	EVENT_UPDATE = "event.update"
	EVENT_ARCHIVE = "event.archive"
	EVENT_REACTIVATE = "event.reactivate"
	EVENT_DELETE = "event.delete"
	ATTENDEE_ADD = "attendee.add"
	ATTENDEE_IMPORT = "attendee.import"
	ATTENDEE_UPDATE = "attendee.update"
	ATTENDEE_DELETE = "attendee.delete"
	SCAN_VERIFY = "scan.verify"
	SCAN_FAILED = "scan.failed"
	SCAN_INVALIDATE = "scan.invalidate"

	@property
	def resource(self) -> str:
		return _RESOURCES[self.value.split(".", 1)[0]]


@dataclass
class AuditEntry:
	id: UUID
	action: str
	resource: str
	success: bool
	created_at: datetime
	resource_id: Optional[str] = None
	actor_id: Optional[str] = None
	error_message: Optional[str] = None
	details: Dict[str, Any] = field(default_factory=dict)

	@classmethod
	def from_row(cls, row: Mapping[str, Any]) -> "AuditEntry":
		details = row.get("details") or {}
		# asyncpg hands jsonb back as text unless a codec is installed.
		if isinstance(details, (str, bytes)):
			details = json.loads(details)
		return cls(
			id=as_uuid(row["id"]),
			action=row["action"],
			resource=row["resource"],
			success=bool(row["success"]),
			created_at=as_datetime(row["created_at"]),
			resource_id=row.get("resource_id"),
			actor_id=row.get("actor_id"),
			error_message=row.get("error_message"),
			details=dict(details),
		)


@dataclass
class AuditStats:
	total: int = 0
	successful: int = 0
	failed: int = 0
	by_action: Dict[str, int] = field(default_factory=dict)
	by_resource: Dict[str, int] = field(default_factory=dict)
