"""Organization registry: signup, credentials and partition lifecycle."""

from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

from scanattend.domain.audit.models import AuditAction
from scanattend.domain.audit.repo import AuditLog
from scanattend.domain.common import naming
from scanattend.domain.common.exceptions import (
	AttendanceError,
	AuthenticationError,
	ConflictError,
	NotFoundError,
	ProvisioningError,
	StorageError,
	ValidationError,
)
from scanattend.domain.common.repository import Repository
from scanattend.domain.common.results import Page, Result
from scanattend.domain.common.rows import utcnow
from scanattend.domain.common.validation import validate
from scanattend.domain.organizations.models import Organization
from scanattend.domain.organizations.schemas import Credentials, OrganizationCreate, OrganizationUpdate
from scanattend.domain.tenancy.provisioner import REGISTRY_TABLE, SchemaProvisioner
from scanattend.infra.gateway import ExecutionGateway, fetch_page
from scanattend.infra.password import check_needs_rehash, hash_password, verify_password
from scanattend.infra.sql import build_delete, build_insert, build_select, build_update
from scanattend.settings import settings

_LOG = logging.getLogger(__name__)

_INVALID_CREDENTIALS = "Invalid email or password"


class OrganizationRepository(Repository):
	"""Rows of the shared ``organizations`` registry.

	Creating an organization also provisions its partition; deleting one tears
	the partition down first.
	"""

	def __init__(
		self,
		gateway: ExecutionGateway,
		provisioner: Optional[SchemaProvisioner] = None,
		*,
		audit: Optional[bool] = None,
	) -> None:
		super().__init__(gateway)
		self.provisioner = provisioner or SchemaProvisioner(gateway)
		self.audit_partitions = settings.audit_enabled if audit is None else audit

	async def _audit_in(self, organization: Organization, action: AuditAction, **fields: Any) -> None:
		"""Record into the organization's own partition audit log."""
		if self.audit_partitions:
			log = AuditLog(self.gateway, organization.partition_id, actor_id=str(organization.id))
			await log.record(action, resource_id=organization.id, **fields)

	async def _get(self, org_id: UUID | str) -> Optional[Organization]:
		row = await self._one(build_select(REGISTRY_TABLE, {"id": str(org_id)}))
		return Organization.from_row(row) if row else None

	async def _get_by_email(self, email: str) -> Optional[Organization]:
		row = await self._one(build_select(REGISTRY_TABLE, {"email": email.strip().lower()}))
		return Organization.from_row(row) if row else None

	async def _delete_row(self, org_id: UUID | str) -> bool:
		rows = await self._rows(build_delete(REGISTRY_TABLE, {"id": str(org_id)}))
		return bool(rows)

	async def create(self, data: Any) -> Result[Organization]:
		try:
			payload = validate(OrganizationCreate, data)
			email = payload.email.lower()
			if await self._get_by_email(email) is not None:
				raise ConflictError("Organization with this email already exists")
			partition = naming.partition_id(payload.name)
			if await self._one(build_select(REGISTRY_TABLE, {"partition_id": partition}, columns=("id",))):
				raise ConflictError("An organization with a conflicting name already exists")

			now = utcnow()
			org_id = uuid4()
			row = await self._one(
				build_insert(
					REGISTRY_TABLE,
					{
						"id": str(org_id),
						"name": payload.name,
						"email": email,
						"password_hash": hash_password(payload.password),
						"partition_id": partition,
						"created_at": now,
						"updated_at": now,
					},
				)
			)
			if row is None:
				raise StorageError("insert returned no row")

			provisioned = await self.provisioner.create_organization_partition(payload.name)
			if not provisioned.success:
				_LOG.error(
					"organizations.provisioning_failed",
					extra={"org_id": str(org_id), "partition": partition, "error": provisioned.error},
				)
				try:
					await self._delete_row(org_id)
				except AttendanceError:
					_LOG.exception("organizations.compensating_delete_failed", extra={"org_id": str(org_id)})
				raise ProvisioningError(provisioned.error)

			organization = Organization.from_row(row)
			_LOG.info("organizations.created", extra={"org_id": str(org_id), "partition": partition})
			await self._audit_in(organization, AuditAction.ORG_CREATE, details={"name": organization.name})
			return Result.ok(organization)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to create organization")

	async def find_by_id(self, org_id: UUID | str) -> Result[Optional[Organization]]:
		try:
			return Result.ok(await self._get(org_id))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to find organization")

	async def find_by_email(self, email: str) -> Result[Optional[Organization]]:
		try:
			return Result.ok(await self._get_by_email(email))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to find organization")

	async def update(self, org_id: UUID | str, data: Any) -> Result[Organization]:
		"""Update name, email or password; ``partition_id`` is never touched."""
		try:
			payload = validate(OrganizationUpdate, data)
			changes = payload.model_dump(exclude_none=True)
			if not changes:
				raise ValidationError(["input: at least one field is required"])
			fields = sorted(changes)
			if "email" in changes:
				changes["email"] = changes["email"].lower()
				existing = await self._get_by_email(changes["email"])
				if existing is not None and str(existing.id) != str(org_id):
					raise ConflictError("Organization with this email already exists")
			if "password" in changes:
				changes["password_hash"] = hash_password(changes.pop("password"))
			changes["updated_at"] = utcnow()

			row = await self._one(build_update(REGISTRY_TABLE, changes, {"id": str(org_id)}))
			if row is None:
				raise NotFoundError("Organization not found")
			organization = Organization.from_row(row)
			await self._audit_in(organization, AuditAction.ORG_UPDATE, details={"fields": fields})
			return Result.ok(organization)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to update organization")

	async def delete(self, org_id: UUID | str) -> Result[bool]:
		try:
			organization = await self._get(org_id)
			if organization is None:
				raise NotFoundError("Organization not found")
			dropped = await self.provisioner.drop_organization_partition(organization.partition_id)
			if not dropped.success:
				raise ProvisioningError(dropped.error)
			await self._delete_row(organization.id)
			_LOG.info("organizations.deleted", extra={"org_id": str(organization.id), "partition": organization.partition_id})
			return Result.ok(True)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to delete organization")

	async def list(self, page: int = 1, limit: Optional[int] = None) -> Result[Page[Organization]]:
		try:
			rows = await fetch_page(
				self.gateway,
				f"SELECT * FROM {naming.quote(REGISTRY_TABLE)} ORDER BY created_at DESC",
				f"SELECT COUNT(*) AS count FROM {naming.quote(REGISTRY_TABLE)}",
				page=page,
				limit=limit,
			)
			return Result.ok(rows.map(Organization.from_row))
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to list organizations")

	async def verify_credential(self, email: str, secret: str) -> Result[Organization]:
		try:
			creds = validate(Credentials, {"email": email, "password": secret})
			organization = await self._get_by_email(creds.email)
			# Same message for unknown email and wrong password.
			if organization is None:
				raise AuthenticationError(_INVALID_CREDENTIALS)
			if not verify_password(organization.password_hash, creds.password):
				await self._audit_in(
					organization, AuditAction.AUTH_FAILED_LOGIN, success=False, error_message="wrong password"
				)
				raise AuthenticationError(_INVALID_CREDENTIALS)
			if check_needs_rehash(organization.password_hash):
				await self._rehash(organization, creds.password)
			await self._audit_in(organization, AuditAction.AUTH_LOGIN)
			return Result.ok(organization)
		except AttendanceError as exc:
			return Result.fail(exc, "Failed to verify credentials")

	async def _rehash(self, organization: Organization, password: str) -> None:
		new_hash = hash_password(password)
		result = await self.gateway.execute(
			f"UPDATE {naming.quote(REGISTRY_TABLE)} SET password_hash = $1 WHERE id = $2",
			{"param1": new_hash, "param2": str(organization.id)},
		)
		if result.success:
			organization.password_hash = new_hash
		else:
			_LOG.warning("organizations.rehash_failed", extra={"org_id": str(organization.id), "error": result.error})


__all__ = ["OrganizationRepository"]
