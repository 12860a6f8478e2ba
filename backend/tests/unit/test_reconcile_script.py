import pytest

from fakes import fail, ok
from scripts.reconcile_partitions import reconcile


@pytest.mark.asyncio
async def test_reconcile_walks_registered_partitions(gateway):
	gateway.on('SELECT partition_id FROM "organizations"', ok({"partition_id": "org_a"}, {"partition_id": "org_b"}))
	gateway.on("information_schema.schemata", ok({"found": True}))

	reports = await reconcile([], gateway)

	assert [report.partition_id for report in reports] == ["org_a", "org_b"]
	assert all(report.clean for report in reports)
	assert 'CREATE TABLE IF NOT EXISTS "organizations"' in gateway.statements[0]


@pytest.mark.asyncio
async def test_reconcile_only_named_partitions(gateway):
	gateway.on("information_schema.schemata", ok({"found": False}))
	gateway.on('"org_b"."members"', fail("permission denied"))

	reports = await reconcile(["org_b"], gateway)

	assert not gateway.matching('SELECT partition_id FROM "organizations"')
	assert len(reports) == 1
	assert reports[0].created_partition
	assert not reports[0].clean


@pytest.mark.asyncio
async def test_reconcile_stops_without_registry(gateway):
	gateway.on('CREATE TABLE IF NOT EXISTS "organizations"', fail("permission denied"))

	with pytest.raises(SystemExit):
		await reconcile(["org_a"], gateway)
