from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scanattend.domain.attendance.models import VerificationStatus

ParticipantName = Annotated[str, Field(min_length=1, max_length=255)]
ParticipantId = Annotated[str, Field(min_length=1, max_length=255)]


def _strip(value: object) -> object:
	return value.strip() if isinstance(value, str) else value


class AttendeeCreate(BaseModel):
	"""One expected participant; accepts CSV-style ``participantId`` too."""

	model_config = ConfigDict(populate_by_name=True)

	name: ParticipantName
	participant_id: ParticipantId = Field(validation_alias="participantId")

	@field_validator("name", "participant_id", mode="before")
	def _strip_values(cls, value):  # type: ignore[override]
		return _strip(value)


class AttendeeUpdate(BaseModel):
	name: ParticipantName

	@field_validator("name", mode="before")
	def _strip_name(cls, value):  # type: ignore[override]
		return _strip(value)


class VerificationCreate(BaseModel):
	name: ParticipantName
	participant_id: ParticipantId
	status: VerificationStatus = VerificationStatus.VERIFIED
