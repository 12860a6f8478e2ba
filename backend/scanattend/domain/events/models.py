"""Domain models for events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import UUID

from scanattend.domain.common.rows import as_datetime, as_optional_datetime, as_uuid


@dataclass
class Event:
	id: UUID
	name: str
	creator_id: UUID
	created_at: datetime
	is_active: bool
	# Derived from the name at creation time and never recomputed.
	attendance_table_name: str
	verification_table_name: str
	ended_at: Optional[datetime] = None

	@classmethod
	def from_row(cls, row: Mapping[str, Any]) -> "Event":
		return cls(
			id=as_uuid(row["id"]),
			name=row["name"],
			creator_id=as_uuid(row["creator_id"]),
			created_at=as_datetime(row["created_at"]),
			is_active=bool(row["is_active"]),
			attendance_table_name=row["attendance_table_name"],
			verification_table_name=row["verification_table_name"],
			ended_at=as_optional_datetime(row.get("ended_at")),
		)
