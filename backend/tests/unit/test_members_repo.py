from uuid import uuid4

import pytest

from fakes import count, ok
from scanattend.domain.common.rows import utcnow
from scanattend.domain.members.models import MemberRole
from scanattend.domain.members.repo import MemberRepository

PARTITION = "org_acme"
BY_EMAIL = f'FROM "{PARTITION}"."members" WHERE "email"'


def _member_row(email="grace@acme.example", role="viewer", member_id=None):
	return {
		"id": member_id or str(uuid4()),
		"org_id": str(uuid4()),
		"name": "Grace Hopper",
		"email": email,
		"role": role,
		"created_at": utcnow(),
	}


@pytest.mark.asyncio
async def test_create_defaults_to_viewer_and_lowercases_email(gateway):
	result = await MemberRepository(gateway, PARTITION).create(
		{"org_id": str(uuid4()), "name": "Grace Hopper", "email": "Grace@Acme.example"}
	)

	assert result.success, result.error
	assert result.data.role is MemberRole.VIEWER
	assert result.data.email == "grace@acme.example"
	assert not result.data.can_manage_events
	assert gateway.matching(f'INSERT INTO "{PARTITION}"."members"')


@pytest.mark.asyncio
async def test_create_rejects_duplicate_email(gateway):
	gateway.on(BY_EMAIL, [_member_row()])

	result = await MemberRepository(gateway, PARTITION).create(
		{"org_id": str(uuid4()), "name": "Grace", "email": "grace@acme.example", "role": "admin"}
	)

	assert result.code == "conflict"
	assert not gateway.matching("INSERT")


@pytest.mark.asyncio
async def test_create_rejects_unknown_role(gateway):
	result = await MemberRepository(gateway, PARTITION).create(
		{"org_id": str(uuid4()), "name": "Grace", "email": "grace@acme.example", "role": "owner"}
	)
	assert result.code == "validation_error"
	assert gateway.calls == []


@pytest.mark.asyncio
async def test_update_email_rechecks_uniqueness(gateway):
	member_id = str(uuid4())
	gateway.on(BY_EMAIL, [_member_row(email="taken@acme.example")])

	result = await MemberRepository(gateway, PARTITION).update(member_id, {"email": "Taken@acme.example"})

	assert result.code == "conflict"
	assert not gateway.matching("UPDATE")


@pytest.mark.asyncio
async def test_update_own_email_is_allowed(gateway):
	member_id = str(uuid4())
	row = _member_row(email="grace@acme.example", member_id=member_id)
	gateway.on(BY_EMAIL, [row])
	gateway.on("UPDATE", [{**row, "role": "manager"}])

	result = await MemberRepository(gateway, PARTITION).update(member_id, {"email": "grace@acme.example", "role": "manager"})

	assert result.success
	assert result.data.role is MemberRole.MANAGER
	assert result.data.can_manage_events


@pytest.mark.asyncio
async def test_delete_missing_member(gateway):
	gateway.on("DELETE", [])
	result = await MemberRepository(gateway, PARTITION).delete(uuid4())
	assert result.code == "not_found"


@pytest.mark.asyncio
async def test_list_by_role(gateway):
	gateway.on(f'FROM "{PARTITION}"."members" WHERE "role"', [_member_row(role="admin")])

	result = await MemberRepository(gateway, PARTITION).list_by_role("admin")

	assert [member.role for member in result.data] == [MemberRole.ADMIN]
	_, params = gateway.calls[0]
	assert params == {"param1": "admin"}


@pytest.mark.asyncio
async def test_list_by_role_rejects_unknown_role(gateway):
	result = await MemberRepository(gateway, PARTITION).list_by_role("owner")
	assert result.code == "validation_error"


@pytest.mark.asyncio
async def test_count_by_role_includes_every_role(gateway):
	gateway.on("GROUP BY", ok({"role": "admin", "count": 2}, {"role": "viewer", "count": 5}))

	result = await MemberRepository(gateway, PARTITION).count_by_role()

	assert result.data == {"admin": 2, "manager": 0, "viewer": 5}


@pytest.mark.asyncio
async def test_list_members_page(gateway):
	gateway.on("LIMIT", [_member_row() for _ in range(2)])
	gateway.on("COUNT(*)", count(3))

	result = await MemberRepository(gateway, PARTITION).list(page=1, limit=2)

	assert result.data.has_more is True
	assert len(result.data.data) == 2
