from __future__ import annotations

from typing import Annotated, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from scanattend.domain.common import naming

EventName = Annotated[str, Field(min_length=1, max_length=255)]


class EventCreate(BaseModel):
	name: EventName
	creator_id: UUID

	@field_validator("name")
	def _require_identifier_chars(cls, value: str) -> str:
		value = value.strip()
		if not naming.has_identifier_chars(value):
			raise ValueError("Event name must contain at least one letter or digit")
		# The verification suffix is the longer of the two.
		if not naming.fits_identifier(naming.verification_table(value)):
			raise ValueError(
				f"Event name is too long; its table names must stay within {naming.MAX_IDENTIFIER_LENGTH} characters"
			)
		return value


class EventUpdate(BaseModel):
	name: Optional[EventName] = None
