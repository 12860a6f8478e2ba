"""Coercion helpers for rows coming from asyncpg records or JSON change payloads."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

# row_to_json drops trailing zeros from fractional seconds ("...56.1234+00:00")
# and may print a bare hour offset ("+00"); fromisoformat before 3.11 takes neither.
_FRACTION = re.compile(r"\.(\d+)")
_HOUR_OFFSET = re.compile(r"(\d{2}:\d{2}(?:\.\d+)?[+-]\d{2})$")


def as_uuid(value: Any) -> UUID:
	return value if isinstance(value, UUID) else UUID(str(value))


def _normalise_timestamp(text: str) -> str:
	text = text.strip().replace("Z", "+00:00")
	text = _FRACTION.sub(lambda match: "." + match.group(1)[:6].ljust(6, "0"), text, count=1)
	return _HOUR_OFFSET.sub(r"\1:00", text)


def as_datetime(value: Any) -> datetime:
	if isinstance(value, datetime):
		return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
	parsed = datetime.fromisoformat(_normalise_timestamp(str(value)))
	return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def as_optional_datetime(value: Any) -> Optional[datetime]:
	if value in (None, ""):
		return None
	return as_datetime(value)


def utcnow() -> datetime:
	return datetime.now(timezone.utc)
