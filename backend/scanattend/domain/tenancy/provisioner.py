"""Provisioning and teardown of tenant partitions and per-event tables.

Each operation is a short sequence of independent statements; none of them is
wrapped in a transaction. Partial state left by a failure in the middle is
repaired by :meth:`SchemaProvisioner.reconcile_partition`, which only relies on
idempotent ``IF NOT EXISTS`` statements and the existence checks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from scanattend.domain.common import naming
from scanattend.domain.common.naming import EventTableNames, index_name, qualified, quote
from scanattend.infra.gateway import ExecutionGateway, QueryResult
from scanattend.obs import metrics as obs_metrics
from scanattend.settings import settings

_LOG = logging.getLogger(__name__)

REGISTRY_TABLE = "organizations"
EVENTS_TABLE = "events"
MEMBERS_TABLE = "members"
AUDIT_TABLE = "audit_log"
NOTIFY_FUNCTION = "notify_attendance_change"


@dataclass
class PartitionResult:
	success: bool
	partition_id: str
	error: Optional[str] = None
	# Audit index or events trigger steps that failed after the core tables were created.
	warnings: List[str] = field(default_factory=list)


@dataclass
class EventTablesResult:
	success: bool
	attendance_table: str
	verification_table: str
	error: Optional[str] = None
	# Index/trigger steps that failed after the tables were created.
	warnings: List[str] = field(default_factory=list)


@dataclass
class TeardownResult:
	success: bool
	operation: str
	error: Optional[str] = None


@dataclass
class ReconcileReport:
	partition_id: str
	created_partition: bool = False
	core_ok: bool = False
	repaired_events: List[str] = field(default_factory=list)
	failed_events: List[str] = field(default_factory=list)
	errors: List[str] = field(default_factory=list)
	warnings: List[str] = field(default_factory=list)

	@property
	def clean(self) -> bool:
		return self.core_ok and not self.failed_events and not self.errors


def _registry_ddl() -> str:
	return f"""
		CREATE TABLE IF NOT EXISTS {quote(REGISTRY_TABLE)} (
			id UUID PRIMARY KEY,
			name VARCHAR(255) NOT NULL,
			email VARCHAR(255) NOT NULL UNIQUE,
			password_hash TEXT NOT NULL,
			partition_id VARCHAR(255) NOT NULL UNIQUE,
			created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
			updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
		)
	"""


def _events_ddl(partition: str) -> str:
	return f"""
		CREATE TABLE IF NOT EXISTS {qualified(EVENTS_TABLE, partition)} (
			id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
			name VARCHAR(255) NOT NULL,
			creator_id UUID NOT NULL,
			created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
			ended_at TIMESTAMPTZ,
			is_active BOOLEAN NOT NULL DEFAULT TRUE,
			attendance_table_name VARCHAR(255) NOT NULL,
			verification_table_name VARCHAR(255) NOT NULL
		)
	"""


def _members_ddl(partition: str) -> str:
	return f"""
		CREATE TABLE IF NOT EXISTS {qualified(MEMBERS_TABLE, partition)} (
			id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
			org_id UUID NOT NULL,
			name VARCHAR(255) NOT NULL,
			email VARCHAR(255) NOT NULL UNIQUE,
			role VARCHAR(50) NOT NULL DEFAULT 'viewer' CHECK (role IN ('admin', 'manager', 'viewer')),
			created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
		)
	"""


def _audit_ddl(partition: str) -> str:
	return f"""
		CREATE TABLE IF NOT EXISTS {qualified(AUDIT_TABLE, partition)} (
			id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
			action VARCHAR(64) NOT NULL,
			resource VARCHAR(64) NOT NULL,
			resource_id VARCHAR(255),
			actor_id VARCHAR(255),
			success BOOLEAN NOT NULL DEFAULT TRUE,
			details JSONB NOT NULL DEFAULT '{{}}'::jsonb,
			error_message TEXT,
			created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
		)
	"""


def _notify_function_ddl(partition: str) -> str:
	# The channel name is validated as [A-Za-z0-9_] in settings.
	return f"""
		CREATE OR REPLACE FUNCTION {qualified(NOTIFY_FUNCTION, partition)}() RETURNS trigger AS $fn$
		BEGIN
			PERFORM pg_notify('{settings.change_feed_channel}', json_build_object(
				'eventType', TG_OP,
				'schema', TG_TABLE_SCHEMA,
				'table', TG_TABLE_NAME,
				'new', row_to_json(NEW)
			)::text);
			RETURN NEW;
		END;
		$fn$ LANGUAGE plpgsql
	"""


def _attendance_ddl(partition: str, attendance: str) -> str:
	return f"""
		CREATE TABLE IF NOT EXISTS {qualified(attendance, partition)} (
			id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
			name VARCHAR(255) NOT NULL,
			participant_id VARCHAR(255) NOT NULL UNIQUE,
			created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
		)
	"""


def _verification_ddl(partition: str, attendance: str, verification: str) -> str:
	return f"""
		CREATE TABLE IF NOT EXISTS {qualified(verification, partition)} (
			id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
			name VARCHAR(255) NOT NULL,
			participant_id VARCHAR(255) NOT NULL
				REFERENCES {qualified(attendance, partition)} (participant_id),
			status VARCHAR(50) NOT NULL DEFAULT 'verified'
				CHECK (status IN ('verified', 'duplicate', 'invalid')),
			verified_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
		)
	"""


def _index_ddl(partition: str, table: str, column: str) -> str:
	return f"CREATE INDEX IF NOT EXISTS {quote(index_name(table, column))} ON {qualified(table, partition)} ({quote(column)})"


def _trigger_name(table: str) -> str:
	return f"{naming.safe_identifier(table)}_notify"


def _notify_trigger_steps(partition: str, table: str, events: str = "INSERT") -> tuple:
	trigger = quote(_trigger_name(table))
	return (
		("drop_notify_trigger", f"DROP TRIGGER IF EXISTS {trigger} ON {qualified(table, partition)}"),
		(
			"create_notify_trigger",
			f"CREATE TRIGGER {trigger} AFTER {events} ON {qualified(table, partition)} "
			f"FOR EACH ROW EXECUTE FUNCTION {qualified(NOTIFY_FUNCTION, partition)}()",
		),
	)


class SchemaProvisioner:
	"""Creates and drops tenant partitions (schemas) and per-event tables."""

	def __init__(self, gateway: ExecutionGateway) -> None:
		self._gateway = gateway

	async def _step(self, operation: str, sql: str, params: Optional[dict] = None) -> QueryResult:
		result = await self._gateway.execute(sql, params)
		if not result.success:
			obs_metrics.inc_provisioning_failure(operation)
			_LOG.warning("provisioner.step_failed", extra={"operation": operation, "error": result.error})
		return result

	# --- Registry ----------------------------------------------------------

	async def ensure_registry(self) -> bool:
		result = await self._step("create_registry", _registry_ddl())
		return result.success

	# --- Organization partitions ------------------------------------------

	async def _create_core_tables(self, partition: str) -> tuple[Optional[str], List[str]]:
		"""Return the first required step that failed, and the optional ones that did."""
		for operation, ddl in (
			("create_events_table", _events_ddl(partition)),
			("create_members_table", _members_ddl(partition)),
			("create_notify_function", _notify_function_ddl(partition)),
			("create_audit_table", _audit_ddl(partition)),
		):
			result = await self._step(operation, ddl)
			if not result.success:
				return f"{operation}: {result.error}", []

		warnings: List[str] = []
		result = await self._step("create_index", _index_ddl(partition, AUDIT_TABLE, "created_at"))
		if not result.success:
			warnings.append(f"index {index_name(AUDIT_TABLE, 'created_at')}: {result.error}")
		# Organization subscriptions listen to inserts and updates of event rows.
		for operation, sql in _notify_trigger_steps(partition, EVENTS_TABLE, "INSERT OR UPDATE"):
			result = await self._step(operation, sql)
			if not result.success:
				warnings.append(f"{operation}: {result.error}")
				break
		return None, warnings

	async def create_organization_partition(self, name: str) -> PartitionResult:
		partition = naming.partition_id(name)
		created = await self._step("create_partition", f"CREATE SCHEMA IF NOT EXISTS {quote(partition)}")
		if not created.success:
			return PartitionResult(success=False, partition_id=partition, error=f"Failed to create partition: {created.error}")

		# Core table failures leave the schema in place; reconcile_partition repairs it.
		error, warnings = await self._create_core_tables(partition)
		if error is not None:
			_LOG.error("provisioner.core_tables_failed", extra={"partition": partition, "error": error})
			return PartitionResult(success=False, partition_id=partition, error=error)

		if warnings:
			_LOG.warning("provisioner.partition_degraded", extra={"partition": partition, "warnings": warnings})
		_LOG.info("provisioner.partition_created", extra={"partition": partition})
		return PartitionResult(success=True, partition_id=partition, warnings=warnings)

	async def _list_event_tables(self, partition: str) -> tuple[list[dict], Optional[str]]:
		result = await self._gateway.execute(
			f"SELECT id, name, attendance_table_name, verification_table_name FROM {qualified(EVENTS_TABLE, partition)}"
		)
		if not result.success:
			return [], result.error
		return result.data, None

	async def drop_organization_partition(self, partition_id: str) -> TeardownResult:
		"""Drop every event's tables, then the partition itself (best-effort)."""
		events, error = await self._list_event_tables(partition_id)
		if error is not None:
			_LOG.warning("provisioner.list_events_failed", extra={"partition": partition_id, "error": error})
		for row in events:
			dropped = await self.drop_tables(partition_id, row["attendance_table_name"], row["verification_table_name"])
			if not dropped.success:
				_LOG.warning(
					"provisioner.event_drop_failed",
					extra={"partition": partition_id, "event_name": row.get("name"), "error": dropped.error},
				)

		result = await self._step("drop_partition", f"DROP SCHEMA IF EXISTS {quote(partition_id)} CASCADE")
		if not result.success:
			return TeardownResult(success=False, operation="drop_partition", error=result.error)
		_LOG.info("provisioner.partition_dropped", extra={"partition": partition_id, "events": len(events)})
		return TeardownResult(success=True, operation="drop_partition")

	# --- Event tables ------------------------------------------------------

	async def _create_event_tables(self, partition: str, tables: EventTableNames) -> EventTablesResult:
		attendance, verification = tables.attendance, tables.verification

		created = await self._step("create_attendance_table", _attendance_ddl(partition, attendance))
		if not created.success:
			return EventTablesResult(False, attendance, verification, error=f"Failed to create attendance table: {created.error}")

		created = await self._step("create_verification_table", _verification_ddl(partition, attendance, verification))
		if not created.success:
			return EventTablesResult(False, attendance, verification, error=f"Failed to create verification table: {created.error}")

		warnings: List[str] = []
		for table, column in (
			(attendance, "participant_id"),
			(verification, "participant_id"),
			(verification, "verified_at"),
			(verification, "status"),
		):
			result = await self._step("create_index", _index_ddl(partition, table, column))
			if not result.success:
				warnings.append(f"index {index_name(table, column)}: {result.error}")

		for operation, sql in (
			("create_notify_function", _notify_function_ddl(partition)),
			*_notify_trigger_steps(partition, verification),
		):
			result = await self._step(operation, sql)
			if not result.success:
				warnings.append(f"{operation}: {result.error}")
				break

		if warnings:
			# Degraded (missing index or live updates) but usable.
			_LOG.warning(
				"provisioner.event_tables_degraded",
				extra={"partition": partition, "attendance_table": attendance, "warnings": warnings},
			)
		return EventTablesResult(True, attendance, verification, warnings=warnings)

	async def create_event_tables(self, partition_id: str, event_name: str) -> EventTablesResult:
		return await self._create_event_tables(partition_id, naming.event_tables(event_name))

	async def drop_tables(self, partition_id: str, attendance: str, verification: str) -> TeardownResult:
		# The verification table references the attendance table; drop it first.
		for operation, table in (("drop_verification_table", verification), ("drop_attendance_table", attendance)):
			result = await self._step(operation, f"DROP TABLE IF EXISTS {qualified(table, partition_id)} CASCADE")
			if not result.success:
				return TeardownResult(success=False, operation="drop_event_tables", error=f"{operation}: {result.error}")
		return TeardownResult(success=True, operation="drop_event_tables")

	async def drop_event_tables(self, partition_id: str, event_name: str) -> TeardownResult:
		tables = naming.event_tables(event_name)
		return await self.drop_tables(partition_id, tables.attendance, tables.verification)

	# --- Existence checks --------------------------------------------------

	async def partition_exists(self, partition_id: str) -> bool:
		result = await self._gateway.execute(
			"SELECT EXISTS (SELECT 1 FROM information_schema.schemata WHERE schema_name = $1) AS found",
			{"param1": partition_id},
		)
		if not result.success:
			_LOG.warning("provisioner.exists_check_failed", extra={"check": "partition", "error": result.error})
			return False
		return bool(result.first and result.first["found"])

	async def tables_exist(self, partition_id: str, *tables: str) -> bool:
		result = await self._gateway.execute(
			"SELECT COUNT(*) AS count FROM information_schema.tables WHERE table_schema = $1 AND table_name = ANY($2::text[])",
			{"param1": partition_id, "param2": list(tables)},
		)
		if not result.success:
			_LOG.warning("provisioner.exists_check_failed", extra={"check": "tables", "error": result.error})
			return False
		return bool(result.first) and int(result.first["count"]) == len(set(tables))

	async def event_tables_exist(self, partition_id: str, event_name: str) -> bool:
		tables = naming.event_tables(event_name)
		return await self.tables_exist(partition_id, tables.attendance, tables.verification)

	# --- Repair ------------------------------------------------------------

	async def reconcile_partition(self, partition_id: str) -> ReconcileReport:
		"""Idempotently bring a partition and its event tables back to a complete state."""
		report = ReconcileReport(partition_id=partition_id)
		existed = await self.partition_exists(partition_id)
		created = await self._step("create_partition", f"CREATE SCHEMA IF NOT EXISTS {quote(partition_id)}")
		if not created.success:
			report.errors.append(f"create_partition: {created.error}")
			return report
		report.created_partition = not existed

		error, report.warnings = await self._create_core_tables(partition_id)
		if error is not None:
			report.errors.append(error)
			return report
		report.core_ok = True

		events, error = await self._list_event_tables(partition_id)
		if error is not None:
			report.errors.append(f"list_events: {error}")
			return report

		for row in events:
			tables = EventTableNames(row["attendance_table_name"], row["verification_table_name"])
			if await self.tables_exist(partition_id, tables.attendance, tables.verification):
				continue
			result = await self._create_event_tables(partition_id, tables)
			if result.success:
				report.repaired_events.append(row["name"])
			else:
				report.failed_events.append(row["name"])
				report.errors.append(result.error or "create_event_tables failed")

		_LOG.info(
			"provisioner.reconciled",
			extra={
				"partition": partition_id,
				"created_partition": report.created_partition,
				"repaired": len(report.repaired_events),
				"failed": len(report.failed_events),
			},
		)
		return report


__all__ = [
	"EventTablesResult",
	"PartitionResult",
	"ReconcileReport",
	"SchemaProvisioner",
	"TeardownResult",
]
