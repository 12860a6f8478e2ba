from uuid import uuid4

import pytest

from fakes import count, fail, inserted_row
from scanattend.domain.common.rows import utcnow
from scanattend.domain.organizations.repo import OrganizationRepository
from scanattend.infra.password import hash_password, verify_password

BY_EMAIL = 'FROM "organizations" WHERE "email"'
BY_PARTITION = 'FROM "organizations" WHERE "partition_id"'


def _org_row(name="Test Company", email="owner@test.example", password="correct horse"):
	now = utcnow()
	return {
		"id": str(uuid4()),
		"name": name,
		"email": email,
		"password_hash": hash_password(password),
		"partition_id": "org_test_company",
		"created_at": now,
		"updated_at": now,
	}


@pytest.mark.asyncio
async def test_create_hashes_password_and_provisions_partition(gateway):
	result = await OrganizationRepository(gateway).create(
		{"name": "Test Company", "email": "Owner@Test.example", "password": "s3cret-pass"}
	)

	assert result.success, result.error
	organization = result.data
	assert organization.partition_id == "org_test_company"
	assert organization.email == "owner@test.example"
	assert organization.password_hash != "s3cret-pass"
	assert verify_password(organization.password_hash, "s3cret-pass")
	assert gateway.index_of('INSERT INTO "organizations"') < gateway.index_of('CREATE SCHEMA IF NOT EXISTS "org_test_company"')


@pytest.mark.asyncio
async def test_create_rejects_invalid_input_before_storage(gateway):
	result = await OrganizationRepository(gateway).create({"name": "", "email": "not-an-email", "password": "short"})

	assert not result.success
	assert result.code == "validation_error"
	fields = result.exception.fields
	assert any(field.startswith("name") for field in fields)
	assert any(field.startswith("email") for field in fields)
	assert any(field.startswith("password") for field in fields)
	assert gateway.calls == []


@pytest.mark.asyncio
async def test_create_rejects_taken_email(gateway):
	gateway.on(BY_EMAIL, [_org_row()])

	result = await OrganizationRepository(gateway).create(
		{"name": "Other", "email": "owner@test.example", "password": "s3cret-pass"}
	)

	assert not result.success
	assert result.code == "conflict"
	assert result.error == "Organization with this email already exists"
	assert not gateway.matching("INSERT")


@pytest.mark.asyncio
async def test_create_rejects_name_that_maps_to_existing_partition(gateway):
	gateway.on(BY_PARTITION, [{"id": str(uuid4())}])

	result = await OrganizationRepository(gateway).create(
		{"name": "test-company", "email": "new@test.example", "password": "s3cret-pass"}
	)

	assert result.code == "conflict"
	assert not gateway.matching("INSERT")


@pytest.mark.asyncio
async def test_create_deletes_row_when_provisioning_fails(gateway):
	gateway.on("CREATE SCHEMA", fail("permission denied for database"))

	result = await OrganizationRepository(gateway).create(
		{"name": "Test Company", "email": "owner@test.example", "password": "s3cret-pass"}
	)

	assert not result.success
	assert result.code == "provisioning_failed"
	# Storage details stay in the logs.
	assert result.error == "Failed to create organization"
	assert gateway.index_of("CREATE SCHEMA") < gateway.index_of('DELETE FROM "organizations"')


@pytest.mark.asyncio
async def test_update_rename_keeps_partition(gateway):
	row = _org_row()

	def _updated(sql, params):
		return [{**row, "name": params["param1"]}]

	gateway.on('UPDATE "organizations"', _updated)

	result = await OrganizationRepository(gateway).update(row["id"], {"name": "Renamed Company"})

	assert result.success
	assert result.data.name == "Renamed Company"
	assert result.data.partition_id == "org_test_company"
	update_sql = gateway.matching("UPDATE")[0]
	assert "partition_id" not in update_sql
	assert not gateway.matching("SCHEMA")


@pytest.mark.asyncio
async def test_update_missing_organization(gateway):
	gateway.on('UPDATE "organizations"', [])
	result = await OrganizationRepository(gateway).update(uuid4(), {"name": "Whatever"})
	assert result.code == "not_found"


@pytest.mark.asyncio
async def test_update_requires_a_field(gateway):
	result = await OrganizationRepository(gateway).update(uuid4(), {})
	assert result.code == "validation_error"
	assert gateway.calls == []


@pytest.mark.asyncio
async def test_verify_credential(gateway):
	gateway.on(BY_EMAIL, [_org_row(password="correct horse")])
	repo = OrganizationRepository(gateway)

	good = await repo.verify_credential("OWNER@test.example", "correct horse")
	bad = await repo.verify_credential("owner@test.example", "wrong horse")

	assert good.success
	assert good.data.partition_id == "org_test_company"
	assert not bad.success
	assert bad.code == "unauthenticated"


@pytest.mark.asyncio
async def test_verify_credential_unknown_email_has_same_message(gateway):
	gateway.on(BY_EMAIL, [])
	result = await OrganizationRepository(gateway).verify_credential("nobody@test.example", "whatever")
	assert result.code == "unauthenticated"
	assert result.error == "Invalid email or password"


@pytest.mark.asyncio
async def test_delete_drops_partition_then_row(gateway):
	row = _org_row()
	gateway.on('FROM "organizations" WHERE "id"', [row])

	result = await OrganizationRepository(gateway).delete(row["id"])

	assert result.success
	assert gateway.index_of('DROP SCHEMA IF EXISTS "org_test_company" CASCADE') < gateway.index_of(
		'DELETE FROM "organizations"'
	)


@pytest.mark.asyncio
async def test_delete_keeps_row_when_partition_drop_fails(gateway):
	row = _org_row()
	gateway.on('FROM "organizations" WHERE "id"', [row])
	gateway.on("DROP SCHEMA", fail("cannot drop schema"))

	result = await OrganizationRepository(gateway).delete(row["id"])

	assert result.code == "provisioning_failed"
	assert not gateway.matching("DELETE FROM")


@pytest.mark.asyncio
async def test_list_is_paginated(gateway):
	gateway.on("LIMIT", [_org_row()])
	gateway.on("COUNT(*)", count(1))

	result = await OrganizationRepository(gateway).list(page=1, limit=10)

	assert result.success
	assert result.data.total == 1
	assert result.data.has_more is False
	assert result.data.data[0].name == "Test Company"


@pytest.mark.asyncio
async def test_storage_failure_is_generic(gateway):
	gateway.on("SELECT", fail("syntax error at or near"))
	result = await OrganizationRepository(gateway).find_by_email("owner@test.example")
	assert result.error == "Failed to find organization"
	assert result.code == "storage_error"


def test_inserted_row_helper_reads_columns():
	row = inserted_row('INSERT INTO "t" ("a", "b") VALUES ($1, $2) RETURNING *', {"param1": 1, "param2": 2})
	assert row == {"a": 1, "b": 2}
