"""Domain models for organization members."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from scanattend.domain.common.rows import as_datetime, as_uuid


class MemberRole(str, Enum):
	ADMIN = "admin"
	MANAGER = "manager"
	VIEWER = "viewer"


@dataclass
class Member:
	id: UUID
	org_id: UUID
	name: str
	email: str
	role: MemberRole
	created_at: datetime

	@property
	def can_manage_events(self) -> bool:
		return self.role in (MemberRole.ADMIN, MemberRole.MANAGER)

	@classmethod
	def from_row(cls, row: Mapping[str, Any]) -> "Member":
		return cls(
			id=as_uuid(row["id"]),
			org_id=as_uuid(row["org_id"]),
			name=row["name"],
			email=row["email"],
			role=MemberRole(row["role"]),
			created_at=as_datetime(row["created_at"]),
		)
