"""Input shapes for organization writes."""

from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from scanattend.domain.common import naming

OrgName = Annotated[str, Field(min_length=1, max_length=255)]
Password = Annotated[str, Field(min_length=8, max_length=100)]


def _check_name(value: str) -> str:
	value = value.strip()
	if not value:
		raise ValueError("Organization name is required")
	if not naming.has_identifier_chars(value):
		raise ValueError("Organization name must contain at least one letter or digit")
	return value


class OrganizationCreate(BaseModel):
	name: OrgName
	email: Annotated[EmailStr, Field(max_length=255)]
	password: Password

	@field_validator("name")
	def _check_partition_name(cls, value: str) -> str:
		value = _check_name(value)
		if not naming.fits_identifier(naming.partition_id(value)):
			raise ValueError(
				f"Organization name is too long; its partition name must stay within {naming.MAX_IDENTIFIER_LENGTH} characters"
			)
		return value


class OrganizationUpdate(BaseModel):
	name: Optional[OrgName] = None
	email: Optional[Annotated[EmailStr, Field(max_length=255)]] = None
	password: Optional[Password] = None

	@field_validator("name")
	def _check_display_name(cls, value: Optional[str]) -> Optional[str]:
		# A rename never touches partition_id, so only the character rule applies.
		return None if value is None else _check_name(value)


class Credentials(BaseModel):
	email: Annotated[EmailStr, Field(max_length=255)]
	password: Annotated[str, Field(min_length=1, max_length=100)]
