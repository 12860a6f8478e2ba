"""In-memory stand-ins for the execution gateway and the change feed."""

from __future__ import annotations

import itertools
import re
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from scanattend.domain.common.rows import utcnow
from scanattend.infra.change_feed import Change
from scanattend.infra.gateway import STORAGE, TRANSIENT, QueryResult, ordered_values

Row = Dict[str, Any]
Response = Union[QueryResult, List[Row], Callable[[str, Dict[str, Any]], Any]]

_INSERT_COLUMNS = re.compile(r"INSERT INTO \S+ \(([^)]*)\) VALUES")


def ok(*rows: Row) -> QueryResult:
	return QueryResult(success=True, data=list(rows))


def fail(error: str = "relation does not exist", *, kind: str = STORAGE, sqlstate: Optional[str] = None) -> QueryResult:
	return QueryResult(success=False, error=error, error_kind=kind, sqlstate=sqlstate)


def unavailable(error: str = "connection refused") -> QueryResult:
	return fail(error, kind=TRANSIENT, sqlstate="08006")


def inserted_row(sql: str, params: Dict[str, Any]) -> Row:
	"""The row an ``INSERT ... RETURNING *`` built by ``build_insert`` would return."""
	match = _INSERT_COLUMNS.search(sql)
	if match is None:
		raise AssertionError(f"not an insert: {sql}")
	columns = [column.strip().strip('"') for column in match.group(1).split(",")]
	return dict(zip(columns, ordered_values(params)))


def count(value: int) -> QueryResult:
	return ok({"count": value})


def attendee_row(participant_id: str = "P-001", name: str = "Ada Lovelace") -> Row:
	return {"id": str(uuid4()), "name": name, "participant_id": participant_id, "created_at": utcnow()}


def verification_row(participant_id: str = "P-001", status: str = "verified", name: str = "Ada Lovelace") -> Row:
	return {
		"id": str(uuid4()),
		"name": name,
		"participant_id": participant_id,
		"status": status,
		"verified_at": utcnow(),
	}


class RecordingGateway:
	"""Records every statement and answers from scripted rules.

	``on(fragment, *responses)`` answers statements containing ``fragment``;
	responses are used in order and the last one repeats. Unmatched inserts
	echo the inserted row, anything else succeeds with no rows.
	"""

	def __init__(self) -> None:
		self.calls: List[Tuple[str, Dict[str, Any]]] = []
		self.transactions = 0
		self._rules: List[Tuple[str, List[Response]]] = []

	def on(self, fragment: str, *responses: Response) -> "RecordingGateway":
		self._rules.append((fragment, list(responses)))
		return self

	async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
		params = dict(params or {})
		self.calls.append((sql, params))
		for fragment, responses in self._rules:
			if fragment in sql:
				response = responses.pop(0) if len(responses) > 1 else responses[0]
				return self._resolve(response, sql, params)
		if sql.startswith("INSERT") and "RETURNING" in sql:
			return ok(inserted_row(sql, params))
		return ok()

	@staticmethod
	def _resolve(response: Response, sql: str, params: Dict[str, Any]) -> QueryResult:
		if callable(response):
			response = response(sql, params)
		if isinstance(response, QueryResult):
			return response
		return ok(*response)

	@asynccontextmanager
	async def transaction(self):
		self.transactions += 1
		yield self

	@property
	def statements(self) -> List[str]:
		return [sql for sql, _ in self.calls]

	def matching(self, fragment: str) -> List[str]:
		return [sql for sql in self.statements if fragment in sql]

	def index_of(self, fragment: str) -> int:
		for index, sql in enumerate(self.statements):
			if fragment in sql:
				return index
		raise AssertionError(f"no statement containing {fragment!r}")


class InMemoryChangeFeed:
	def __init__(self, register_error: Optional[BaseException] = None) -> None:
		self.register_error = register_error
		self.sinks: Dict[int, Tuple[str, str, Any]] = {}
		self.unregistered: List[int] = []
		self._tokens = itertools.count(1)

	async def register(self, partition: str, table: str, sink: Any) -> int:
		if self.register_error is not None:
			raise self.register_error
		token = next(self._tokens)
		self.sinks[token] = (partition, table, sink)
		return token

	async def unregister(self, token: int) -> None:
		self.unregistered.append(token)
		self.sinks.pop(token, None)

	def emit(self, partition: str, table: str, row: Row, event_type: str = "INSERT") -> int:
		change = Change(event_type=event_type, schema=partition, table=table, new=row)
		delivered = 0
		for sink_partition, sink_table, sink in list(self.sinks.values()):
			if (sink_partition, sink_table) == (partition, table):
				sink.deliver(change)
				delivered += 1
		return delivered

	def drop_connection(self, error: BaseException) -> None:
		sinks, self.sinks = list(self.sinks.values()), {}
		for _, _, sink in sinks:
			sink.fail(error)
