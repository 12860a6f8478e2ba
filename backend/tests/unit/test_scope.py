from uuid import uuid4

import pytest

from fakes import ok
from scanattend.domain.common.exceptions import AuthenticationError
from scanattend.domain.common.rows import utcnow
from scanattend.domain.events.models import Event
from scanattend.domain.tenancy.scope import PartitionScope
from scanattend.infra.jwt import encode_access


def _event():
	return Event(
		id=uuid4(),
		name="Spring Gala",
		creator_id=uuid4(),
		created_at=utcnow(),
		is_active=True,
		attendance_table_name="spring_gala_attendance",
		verification_table_name="spring_gala_verification",
	)


def test_scope_from_token(gateway):
	token = encode_access(uuid4(), "org_acme", "owner@acme.example")

	scope = PartitionScope.from_token(gateway, token)

	assert scope.partition_id == "org_acme"
	assert scope.members.partition_id == "org_acme"
	assert scope.events.partition_id == "org_acme"
	assert scope.events is scope.events


def test_scope_rejects_bad_token(gateway):
	with pytest.raises(AuthenticationError):
		PartitionScope.from_token(gateway, "not.a.token")


def test_attendance_uses_stored_table_names(gateway):
	scope = PartitionScope(gateway, "org_acme")

	repo = scope.attendance(_event())

	assert repo.partition_id == "org_acme"
	assert repo.attendance_table == "spring_gala_attendance"
	assert repo.verification_table == "spring_gala_verification"


@pytest.mark.asyncio
async def test_organization_stats(gateway):
	gateway.on("AS total_events", ok({"total_events": 3, "active_events": 2, "total_members": 7}))

	result = await PartitionScope(gateway, "org_acme").organization_stats()

	assert result.success
	assert (result.data.total_events, result.data.active_events, result.data.total_members) == (3, 2, 7)
	assert '"org_acme"."events"' in gateway.statements[0]
