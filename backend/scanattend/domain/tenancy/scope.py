"""Per-request (or per-worker) wiring of partition-scoped repositories."""

from __future__ import annotations

from functools import cached_property
from typing import Optional

from scanattend.domain.attendance.models import OrganizationStats
from scanattend.domain.attendance.repo import AttendanceRepository
from scanattend.domain.attendance.stats import StatisticsAggregator
from scanattend.domain.attendance.verification import VerificationEngine
from scanattend.domain.audit.repo import AuditLog, default_audit
from scanattend.domain.common.results import Result
from scanattend.domain.events.models import Event
from scanattend.domain.events.repo import EventRepository
from scanattend.domain.members.repo import MemberRepository
from scanattend.domain.tenancy.provisioner import SchemaProvisioner
from scanattend.infra.gateway import ExecutionGateway
from scanattend.infra.jwt import decode_access


class PartitionScope:
	"""Everything one organization's caller needs, bound to its partition.

	Build one per request or worker; nothing here is shared process-wide.
	"""

	def __init__(
		self,
		gateway: ExecutionGateway,
		partition_id: str,
		*,
		provisioner: Optional[SchemaProvisioner] = None,
		actor_id: Optional[str] = None,
	) -> None:
		self.gateway = gateway
		self.partition_id = partition_id
		self.provisioner = provisioner or SchemaProvisioner(gateway)
		self.actor_id = actor_id

	@classmethod
	def from_token(cls, gateway: ExecutionGateway, token: str) -> "PartitionScope":
		"""Scope from an access token; raises ``AuthenticationError`` if it is invalid."""
		claims = decode_access(token)
		return cls(gateway, str(claims["partition"]), actor_id=str(claims["sub"]))

	@cached_property
	def audit(self) -> Optional[AuditLog]:
		"""Audit log of this partition, attributed to the caller; ``None`` when auditing is off."""
		log = default_audit(self.gateway, self.partition_id)
		if log is not None:
			log.actor_id = self.actor_id
		return log

	@cached_property
	def stats(self) -> StatisticsAggregator:
		return StatisticsAggregator(self.gateway)

	@cached_property
	def members(self) -> MemberRepository:
		return MemberRepository(self.gateway, self.partition_id, audit=self.audit)

	@cached_property
	def events(self) -> EventRepository:
		return EventRepository(self.gateway, self.partition_id, self.provisioner, self.stats, audit=self.audit)

	def attendance(self, event: Event) -> AttendanceRepository:
		return self.events.attendance(event)

	def verification(self, event: Event, *, serialize: Optional[bool] = None) -> VerificationEngine:
		return VerificationEngine(self.attendance(event), serialize=serialize)

	async def organization_stats(self) -> Result[OrganizationStats]:
		return await self.stats.get_organization_stats(self.partition_id)


__all__ = ["PartitionScope"]
