"""Domain models for organizations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from scanattend.domain.common.rows import as_datetime, as_uuid


@dataclass
class Organization:
	id: UUID
	name: str
	email: str
	# Fixed at signup; a rename never re-derives it.
	partition_id: str
	created_at: datetime
	updated_at: datetime
	password_hash: str = field(default="", repr=False)

	@classmethod
	def from_row(cls, row: Mapping[str, Any]) -> "Organization":
		return cls(
			id=as_uuid(row["id"]),
			name=row["name"],
			email=row["email"],
			partition_id=row["partition_id"],
			created_at=as_datetime(row["created_at"]),
			updated_at=as_datetime(row["updated_at"]),
			password_hash=row.get("password_hash") or "",
		)
