import json

import pytest

from scanattend.domain.common.exceptions import TransientStorageError
from scanattend.infra.change_feed import Change, PostgresChangeFeed


class _Connection:
	def __init__(self):
		self.listeners = {}
		self.termination = []
		self.closed = False

	async def add_listener(self, channel, callback):
		self.listeners[channel] = callback

	async def remove_listener(self, channel, callback):
		self.listeners.pop(channel, None)

	def add_termination_listener(self, callback):
		self.termination.append(callback)

	def is_closed(self):
		return self.closed

	async def close(self):
		self.closed = True

	def notify(self, channel, payload):
		self.listeners[channel](self, 4242, channel, payload)

	def terminate(self):
		self.closed = True
		for callback in self.termination:
			callback(self)


class _Sink:
	def __init__(self):
		self.changes = []
		self.errors = []

	def deliver(self, change):
		self.changes.append(change)

	def fail(self, error):
		self.errors.append(error)


def _payload(schema="org_acme", table="gala_verification", **new):
	return json.dumps({"eventType": "INSERT", "schema": schema, "table": table, "new": new})


@pytest.fixture
def connection():
	return _Connection()


@pytest.fixture
def feed(connection):
	async def _connect(dsn):
		return connection

	return PostgresChangeFeed("postgresql://test", channel="attendance_changes", connect=_connect)


@pytest.mark.asyncio
async def test_routes_payloads_by_schema_and_table(feed, connection):
	gala, other = _Sink(), _Sink()
	await feed.register("org_acme", "gala_verification", gala)
	await feed.register("org_other", "gala_verification", other)

	connection.notify("attendance_changes", _payload(participant_id="P-001", extra="ignored"))

	assert len(gala.changes) == 1
	assert gala.changes[0].new["participant_id"] == "P-001"
	assert gala.changes[0].event_type == "INSERT"
	assert other.changes == []


@pytest.mark.asyncio
async def test_malformed_payload_is_dropped(feed, connection):
	sink = _Sink()
	await feed.register("org_acme", "gala_verification", sink)

	connection.notify("attendance_changes", "{not json")
	connection.notify("attendance_changes", json.dumps({"eventType": "INSERT"}))

	assert sink.changes == []
	assert sink.errors == []


@pytest.mark.asyncio
async def test_termination_fails_every_sink(feed, connection):
	first, second = _Sink(), _Sink()
	await feed.register("org_acme", "gala_verification", first)
	await feed.register("org_acme", "party_verification", second)

	connection.terminate()

	assert isinstance(first.errors[0], TransientStorageError)
	assert isinstance(second.errors[0], TransientStorageError)
	assert not feed.connected


@pytest.mark.asyncio
async def test_last_unregister_closes_connection(feed, connection):
	token = await feed.register("org_acme", "gala_verification", _Sink())
	assert feed.connected

	await feed.unregister(token)

	assert connection.closed
	assert "attendance_changes" not in connection.listeners


@pytest.mark.asyncio
async def test_connect_failure_is_transient():
	async def _refuse(dsn):
		raise ConnectionRefusedError("connection refused")

	feed = PostgresChangeFeed("postgresql://test", connect=_refuse)
	with pytest.raises(TransientStorageError):
		await feed.register("org_acme", "gala_verification", _Sink())


def test_change_from_payload_requires_routing_fields():
	change = Change.from_payload(_payload(id="1"))
	assert (change.schema, change.table) == ("org_acme", "gala_verification")
	with pytest.raises(KeyError):
		Change.from_payload({"eventType": "INSERT", "table": "t"})
	with pytest.raises(ValueError):
		Change.from_payload("[1, 2]")
