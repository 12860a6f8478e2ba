"""Parameterized statement builders scoped to ``<partition>.<table>``.

Identifiers pass through :func:`naming.safe_identifier` and are quoted; every
value becomes a positional placeholder (``$1``, ``$2``, ...) whose binding is
carried in ``params`` under ``param1``, ``param2``, ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from scanattend.domain.common.naming import qualified, quote

Params = Dict[str, Any]


@dataclass(frozen=True)
class Statement:
	sql: str
	params: Params = field(default_factory=dict)


class _Binder:
	def __init__(self, start: int = 1) -> None:
		self.index = start
		self.params: Params = {}

	def bind(self, value: Any) -> str:
		placeholder = f"${self.index}"
		self.params[f"param{self.index}"] = value
		self.index += 1
		return placeholder


def _where(conditions: Optional[Mapping[str, Any]], binder: _Binder) -> str:
	clauses = []
	for column, value in (conditions or {}).items():
		if value is None:
			raise ValueError(f"condition on {column!r} has no value")
		clauses.append(f"{quote(column)} = {binder.bind(value)}")
	return f"WHERE {' AND '.join(clauses)}" if clauses else ""


def build_where(conditions: Mapping[str, Any], *, start: int = 1) -> Tuple[str, Params]:
	binder = _Binder(start)
	clause = _where(conditions, binder)
	return clause, binder.params


def build_insert(table: str, data: Mapping[str, Any], partition: Optional[str] = None) -> Statement:
	if not data:
		raise ValueError("insert requires at least one column")
	binder = _Binder()
	columns = ", ".join(quote(column) for column in data)
	placeholders = ", ".join(binder.bind(value) for value in data.values())
	sql = f"INSERT INTO {qualified(table, partition)} ({columns}) VALUES ({placeholders}) RETURNING *"
	return Statement(sql, binder.params)


def build_update(
	table: str,
	data: Mapping[str, Any],
	conditions: Mapping[str, Any],
	partition: Optional[str] = None,
) -> Statement:
	binder = _Binder()
	assignments = [f"{quote(column)} = {binder.bind(value)}" for column, value in data.items() if value is not None]
	if not assignments:
		raise ValueError("update requires at least one column")
	where = _where(conditions, binder)
	if not where:
		raise ValueError("update requires a condition")
	sql = f"UPDATE {qualified(table, partition)} SET {', '.join(assignments)} {where} RETURNING *"
	return Statement(sql, binder.params)


def build_select(
	table: str,
	conditions: Optional[Mapping[str, Any]] = None,
	partition: Optional[str] = None,
	*,
	columns: Sequence[str] = (),
	order_by: Optional[str] = None,
	descending: bool = False,
	limit: Optional[int] = None,
) -> Statement:
	binder = _Binder()
	selected = ", ".join(quote(column) for column in columns) if columns else "*"
	parts = [f"SELECT {selected} FROM {qualified(table, partition)}"]
	where = _where(conditions, binder)
	if where:
		parts.append(where)
	if order_by:
		parts.append(f"ORDER BY {quote(order_by)} {'DESC' if descending else 'ASC'}")
	if limit is not None:
		parts.append(f"LIMIT {binder.bind(int(limit))}")
	return Statement(" ".join(parts), binder.params)


def build_count(
	table: str,
	conditions: Optional[Mapping[str, Any]] = None,
	partition: Optional[str] = None,
	*,
	group_by: Optional[str] = None,
) -> Statement:
	binder = _Binder()
	if group_by:
		parts = [f"SELECT {quote(group_by)}, COUNT(*) AS count FROM {qualified(table, partition)}"]
	else:
		parts = [f"SELECT COUNT(*) AS count FROM {qualified(table, partition)}"]
	where = _where(conditions, binder)
	if where:
		parts.append(where)
	if group_by:
		parts.append(f"GROUP BY {quote(group_by)}")
	return Statement(" ".join(parts), binder.params)


def build_delete(table: str, conditions: Mapping[str, Any], partition: Optional[str] = None) -> Statement:
	binder = _Binder()
	where = _where(conditions, binder)
	if not where:
		raise ValueError("delete requires a condition")
	return Statement(f"DELETE FROM {qualified(table, partition)} {where} RETURNING *", binder.params)


__all__ = [
	"Params",
	"Statement",
	"build_count",
	"build_delete",
	"build_insert",
	"build_select",
	"build_update",
	"build_where",
]
