"""Members of one organization, stored in its partition."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from scanattend.domain.audit.models import AuditAction
from scanattend.domain.audit.repo import AuditLog, default_audit
from scanattend.domain.common.exceptions import AttendanceError, ConflictError, NotFoundError, StorageError, ValidationError
from scanattend.domain.common.naming import qualified
from scanattend.domain.common.repository import Repository
from scanattend.domain.common.results import Page, Result
from scanattend.domain.common.rows import utcnow
from scanattend.domain.common.validation import validate
from scanattend.domain.members.models import Member, MemberRole
from scanattend.domain.members.schemas import MemberCreate, MemberUpdate
from scanattend.domain.tenancy.provisioner import MEMBERS_TABLE
from scanattend.infra.gateway import ExecutionGateway, fetch_page
from scanattend.infra.sql import build_count, build_delete, build_insert, build_select, build_update

_LOG = logging.getLogger(__name__)


class MemberRepository(Repository):
	def __init__(self, gateway: ExecutionGateway, partition_id: str, *, audit: Optional[AuditLog] = None) -> None:
		super().__init__(gateway, partition_id)
		self.audit = audit if audit is not None else default_audit(gateway, partition_id)

	async def _get_by_email(self, email: str) -> Optional[Member]:
		row = await self._one(build_select(MEMBERS_TABLE, {"email": email.strip().lower()}, self.partition_id))
		return Member.from_row(row) if row else None

	async def create(self, data: Any) -> Result[Member]:
		try:
			payload = validate(MemberCreate, data)
			email = payload.email.lower()
			if await self._get_by_email(email) is not None:
				raise ConflictError("Member with this email already exists")
			row = await self._one(
				build_insert(
					MEMBERS_TABLE,
					{
						"id": str(uuid4()),
						"org_id": str(payload.org_id),
						"name": payload.name,
						"email": email,
						"role": payload.role.value,
						"created_at": utcnow(),
					},
					self.partition_id,
				)
			)
			if row is None:
				raise StorageError("insert returned no row")
			member = Member.from_row(row)
			_LOG.info("members.created", extra={"member_id": str(member.id), "role": member.role.value})
			await self._audit(
				AuditAction.MEMBER_CREATE, resource_id=member.id, details={"email": member.email, "role": member.role.value}
			)
			return Result.ok(member)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to create member")

	async def find_by_id(self, member_id: UUID | str) -> Result[Optional[Member]]:
		try:
			row = await self._one(build_select(MEMBERS_TABLE, {"id": str(member_id)}, self.partition_id))
			return Result.ok(Member.from_row(row) if row else None)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to find member")

	async def find_by_email(self, email: str) -> Result[Optional[Member]]:
		try:
			return Result.ok(await self._get_by_email(email))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to find member")

	async def update(self, member_id: UUID | str, data: Any) -> Result[Member]:
		try:
			payload = validate(MemberUpdate, data)
			changes: Dict[str, Any] = payload.model_dump(exclude_none=True)
			if not changes:
				raise ValidationError(["input: at least one field is required"])
			if "email" in changes:
				changes["email"] = changes["email"].lower()
				existing = await self._get_by_email(changes["email"])
				if existing is not None and str(existing.id) != str(member_id):
					raise ConflictError("Member with this email already exists")
			if "role" in changes:
				changes["role"] = MemberRole(changes["role"]).value
			row = await self._one(build_update(MEMBERS_TABLE, changes, {"id": str(member_id)}, self.partition_id))
			if row is None:
				raise NotFoundError("Member not found")
			await self._audit(AuditAction.MEMBER_UPDATE, resource_id=member_id, details={"fields": sorted(changes)})
			return Result.ok(Member.from_row(row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to update member")

	async def delete(self, member_id: UUID | str) -> Result[bool]:
		try:
			rows = await self._rows(build_delete(MEMBERS_TABLE, {"id": str(member_id)}, self.partition_id))
			if not rows:
				raise NotFoundError("Member not found")
			await self._audit(AuditAction.MEMBER_DELETE, resource_id=member_id)
			return Result.ok(True)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to delete member")

	async def list(self, page: int = 1, limit: Optional[int] = None) -> Result[Page[Member]]:
		table = qualified(MEMBERS_TABLE, self.partition_id)
		try:
			rows = await fetch_page(
				self.gateway,
				f"SELECT * FROM {table} ORDER BY created_at DESC",
				f"SELECT COUNT(*) AS count FROM {table}",
				page=page,
				limit=limit,
			)
			return Result.ok(rows.map(Member.from_row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list members")

	async def list_by_role(self, role: MemberRole | str) -> Result[List[Member]]:
		try:
			role = MemberRole(role)
		except ValueError:
			return Result.fail(ValidationError([f"role: must be one of {', '.join(r.value for r in MemberRole)}"]))
		try:
			rows = await self._rows(
				build_select(MEMBERS_TABLE, {"role": role.value}, self.partition_id, order_by="name")
			)
			return Result.ok([Member.from_row(row) for row in rows])
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list members")

	async def count_by_role(self) -> Result[Dict[str, int]]:
		"""Member count per role; every role is present, zero when unused."""
		try:
			rows = await self._rows(build_count(MEMBERS_TABLE, partition=self.partition_id, group_by="role"))
			counts = {role.value: 0 for role in MemberRole}
			for row in rows:
				if row["role"] in counts:
					counts[row["role"]] = int(row["count"])
			return Result.ok(counts)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to count members")


__all__ = ["MemberRepository"]
