import pytest

from fakes import count, fail
from scanattend.domain.tenancy.provisioner import SchemaProvisioner

PARTITION = "org_test_company"


def _event_row(name="Annual Meeting", tables="annual_meeting"):
	return {
		"id": "e-1",
		"name": name,
		"attendance_table_name": f"{tables}_attendance",
		"verification_table_name": f"{tables}_verification",
	}


@pytest.mark.asyncio
async def test_create_partition_creates_schema_then_core_tables(gateway):
	result = await SchemaProvisioner(gateway).create_organization_partition("Test Company")

	assert result.success
	assert result.partition_id == PARTITION
	statements = gateway.statements
	assert statements[0] == f'CREATE SCHEMA IF NOT EXISTS "{PARTITION}"'
	assert f'"{PARTITION}"."events"' in statements[1]
	assert f'"{PARTITION}"."members"' in statements[2]
	assert "notify_attendance_change" in statements[3]
	assert f'"{PARTITION}"."audit_log"' in statements[4]
	assert "details JSONB NOT NULL" in statements[4]
	assert result.warnings == []

	trigger = statements[gateway.index_of('CREATE TRIGGER "events_notify"')]
	assert f'AFTER INSERT OR UPDATE ON "{PARTITION}"."events"' in trigger
	assert f'EXECUTE FUNCTION "{PARTITION}"."notify_attendance_change"()' in trigger
	assert gateway.index_of('DROP TRIGGER IF EXISTS "events_notify"') < gateway.index_of('CREATE TRIGGER "events_notify"')


@pytest.mark.asyncio
async def test_events_trigger_failure_is_a_warning(gateway):
	gateway.on('CREATE TRIGGER "events_notify"', fail("permission denied"))

	result = await SchemaProvisioner(gateway).create_organization_partition("Test Company")

	assert result.success
	assert result.warnings == ["create_notify_trigger: permission denied"]


@pytest.mark.asyncio
async def test_audit_table_failure_fails_the_partition(gateway):
	gateway.on(f'"{PARTITION}"."audit_log"', fail("disk full"))

	result = await SchemaProvisioner(gateway).create_organization_partition("Test Company")

	assert not result.success
	assert result.error.startswith("create_audit_table")
	assert not gateway.matching("events_notify")


@pytest.mark.asyncio
async def test_failed_schema_creation_attempts_no_tables(gateway):
	gateway.on("CREATE SCHEMA", fail("permission denied"))

	result = await SchemaProvisioner(gateway).create_organization_partition("Test Company")

	assert not result.success
	assert "permission denied" in result.error
	assert len(gateway.calls) == 1


@pytest.mark.asyncio
async def test_core_table_failure_is_reported_and_schema_kept(gateway):
	gateway.on(f'"{PARTITION}"."members"', fail("disk full"))

	result = await SchemaProvisioner(gateway).create_organization_partition("Test Company")

	assert not result.success
	assert result.error.startswith("create_members_table")
	assert not gateway.matching("DROP SCHEMA")


@pytest.mark.asyncio
async def test_create_event_tables(gateway):
	result = await SchemaProvisioner(gateway).create_event_tables(PARTITION, "Annual Meeting")

	assert result.success
	assert result.attendance_table == "annual_meeting_attendance"
	assert result.verification_table == "annual_meeting_verification"
	assert result.warnings == []

	attendance_ddl, verification_ddl = gateway.statements[0], gateway.statements[1]
	assert f'"{PARTITION}"."annual_meeting_attendance"' in attendance_ddl
	assert "participant_id VARCHAR(255) NOT NULL UNIQUE" in attendance_ddl
	assert f'REFERENCES "{PARTITION}"."annual_meeting_attendance" (participant_id)' in verification_ddl
	assert "CHECK (status IN ('verified', 'duplicate', 'invalid'))" in verification_ddl
	assert gateway.matching('"idx_annual_meeting_attendance_participant_id"')
	assert gateway.matching('"idx_annual_meeting_verification_participant_id"')
	assert gateway.matching("CREATE TRIGGER")


@pytest.mark.asyncio
async def test_attendance_table_failure_stops_before_verification_table(gateway):
	gateway.on("CREATE TABLE IF NOT EXISTS \"org_test_company\".\"annual_meeting_attendance\"", fail("boom"))

	result = await SchemaProvisioner(gateway).create_event_tables(PARTITION, "Annual Meeting")

	assert not result.success
	assert "attendance table" in result.error
	assert not gateway.matching("annual_meeting_verification")


@pytest.mark.asyncio
async def test_index_failure_is_a_warning(gateway):
	gateway.on("CREATE INDEX", fail("out of memory"))

	result = await SchemaProvisioner(gateway).create_event_tables(PARTITION, "Annual Meeting")

	assert result.success
	assert len(result.warnings) == 4
	assert all("out of memory" in warning for warning in result.warnings)


@pytest.mark.asyncio
async def test_drop_event_tables_drops_verification_first(gateway):
	result = await SchemaProvisioner(gateway).drop_event_tables(PARTITION, "Annual Meeting")

	assert result.success
	assert gateway.index_of('DROP TABLE IF EXISTS "org_test_company"."annual_meeting_verification"') < gateway.index_of(
		'DROP TABLE IF EXISTS "org_test_company"."annual_meeting_attendance"'
	)


@pytest.mark.asyncio
async def test_drop_event_tables_stops_when_verification_drop_fails(gateway):
	gateway.on("annual_meeting_verification", fail("locked"))

	result = await SchemaProvisioner(gateway).drop_event_tables(PARTITION, "Annual Meeting")

	assert not result.success
	assert not gateway.matching("annual_meeting_attendance")


@pytest.mark.asyncio
async def test_drop_partition_drops_event_tables_before_schema(gateway):
	gateway.on(f'FROM "{PARTITION}"."events"', [_event_row(), _event_row("Gala", "gala")])

	result = await SchemaProvisioner(gateway).drop_organization_partition(PARTITION)

	assert result.success
	drop_schema = gateway.index_of(f'DROP SCHEMA IF EXISTS "{PARTITION}" CASCADE')
	assert drop_schema == len(gateway.calls) - 1
	assert gateway.index_of("gala_verification") < gateway.index_of("gala_attendance")


@pytest.mark.asyncio
async def test_drop_partition_still_drops_schema_when_events_unreadable(gateway):
	gateway.on(f'FROM "{PARTITION}"."events"', fail("relation does not exist"))

	result = await SchemaProvisioner(gateway).drop_organization_partition(PARTITION)

	assert result.success
	assert gateway.matching("DROP SCHEMA")


@pytest.mark.asyncio
async def test_existence_checks(gateway):
	gateway.on("information_schema.schemata", [{"found": True}])
	gateway.on("information_schema.tables", count(2), count(1))
	provisioner = SchemaProvisioner(gateway)

	assert await provisioner.partition_exists(PARTITION)
	assert await provisioner.event_tables_exist(PARTITION, "Annual Meeting")
	assert not await provisioner.event_tables_exist(PARTITION, "Annual Meeting")

	_, params = gateway.calls[-1]
	assert params == {"param1": PARTITION, "param2": ["annual_meeting_attendance", "annual_meeting_verification"]}


@pytest.mark.asyncio
async def test_failed_existence_check_reads_as_absent(gateway):
	gateway.on("information_schema", fail("timeout"))
	assert not await SchemaProvisioner(gateway).partition_exists(PARTITION)


@pytest.mark.asyncio
async def test_reconcile_recreates_missing_event_tables(gateway):
	gateway.on("information_schema.schemata", [{"found": True}])
	gateway.on(f'FROM "{PARTITION}"."events"', [_event_row(), _event_row("Gala", "gala")])
	# Annual Meeting is complete, Gala lost its verification table.
	gateway.on("information_schema.tables", count(2), count(1))

	report = await SchemaProvisioner(gateway).reconcile_partition(PARTITION)

	assert report.clean
	assert report.created_partition is False
	assert report.repaired_events == ["Gala"]
	assert gateway.matching('CREATE TABLE IF NOT EXISTS "org_test_company"."gala_verification"')
	assert not gateway.matching('CREATE TABLE IF NOT EXISTS "org_test_company"."annual_meeting_verification"')


@pytest.mark.asyncio
async def test_reconcile_reports_failures(gateway):
	gateway.on("information_schema.schemata", [{"found": False}])
	gateway.on(f'"{PARTITION}"."members"', fail("disk full"))

	report = await SchemaProvisioner(gateway).reconcile_partition(PARTITION)

	assert report.created_partition is True
	assert not report.core_ok
	assert not report.clean
	assert report.errors


@pytest.mark.asyncio
async def test_ensure_registry(gateway):
	assert await SchemaProvisioner(gateway).ensure_registry()
	assert 'CREATE TABLE IF NOT EXISTS "organizations"' in gateway.statements[0]
	assert "partition_id VARCHAR(255) NOT NULL UNIQUE" in gateway.statements[0]
