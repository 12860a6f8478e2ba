"""Deterministic storage identifiers derived from display names.

Organization partitions and per-event tables are named from user supplied
display strings. Every identifier that is ever spliced into a statement comes
out of this module; values are always bound as parameters instead.

Names must stay bit-exact with partitions that already exist:

* organization partition: ``org_`` + sanitize(name)
* attendance table: sanitize(event name) + ``_attendance``
* verification table: sanitize(event name) + ``_verification``
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

PARTITION_PREFIX = "org_"
ATTENDANCE_SUFFIX = "_attendance"
VERIFICATION_SUFFIX = "_verification"
# Postgres truncates longer identifiers (NAMEDATALEN - 1).
MAX_IDENTIFIER_LENGTH = 63

_UNSAFE = re.compile(r"[^a-z0-9]")
_REPEATED_UNDERSCORE = re.compile(r"_+")
_UNSAFE_IDENTIFIER = re.compile(r"[^A-Za-z0-9_]")


@dataclass(frozen=True)
class EventTableNames:
	attendance: str
	verification: str


def sanitize(name: str) -> str:
	"""Lower-case ``name``, map everything outside ``[a-z0-9]`` to ``_`` and collapse runs."""
	return _REPEATED_UNDERSCORE.sub("_", _UNSAFE.sub("_", name.lower()))


def partition_id(org_name: str) -> str:
	return f"{PARTITION_PREFIX}{sanitize(org_name)}"


def attendance_table(event_name: str) -> str:
	return f"{sanitize(event_name)}{ATTENDANCE_SUFFIX}"


def verification_table(event_name: str) -> str:
	return f"{sanitize(event_name)}{VERIFICATION_SUFFIX}"


def event_tables(event_name: str) -> EventTableNames:
	return EventTableNames(
		attendance=attendance_table(event_name),
		verification=verification_table(event_name),
	)


def safe_identifier(value: str) -> str:
	"""Guard applied to column/table identifiers right before they are spliced into SQL."""
	return _UNSAFE_IDENTIFIER.sub("_", value)


def quote(identifier: str) -> str:
	# Sanitized names may start with a digit ("2024 Gala" -> "2024_gala_attendance").
	return f'"{safe_identifier(identifier)}"'


def qualified(table: str, partition: str | None = None) -> str:
	if partition:
		return f"{quote(partition)}.{quote(table)}"
	return quote(table)


def has_identifier_chars(name: str) -> bool:
	"""True when sanitizing ``name`` leaves more than underscores."""
	return bool(sanitize(name).strip("_"))


def fits_identifier(identifier: str) -> bool:
	return len(identifier.encode("utf-8")) <= MAX_IDENTIFIER_LENGTH


def index_name(table: str, column: str) -> str:
	name = f"idx_{safe_identifier(table)}_{safe_identifier(column)}"
	if fits_identifier(name):
		return name
	# Keep long names distinct after truncation.
	digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
	return f"{name[: MAX_IDENTIFIER_LENGTH - len(digest) - 1]}_{digest}"


__all__ = [
	"EventTableNames",
	"MAX_IDENTIFIER_LENGTH",
	"attendance_table",
	"event_tables",
	"fits_identifier",
	"has_identifier_chars",
	"index_name",
	"partition_id",
	"qualified",
	"quote",
	"safe_identifier",
	"sanitize",
	"verification_table",
]
