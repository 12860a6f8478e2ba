from __future__ import annotations

from typing import Annotated, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from scanattend.domain.members.models import MemberRole

MemberName = Annotated[str, Field(min_length=1, max_length=255)]


class MemberCreate(BaseModel):
	org_id: UUID
	name: MemberName
	email: Annotated[EmailStr, Field(max_length=255)]
	role: MemberRole = MemberRole.VIEWER


class MemberUpdate(BaseModel):
	name: Optional[MemberName] = None
	email: Optional[Annotated[EmailStr, Field(max_length=255)]] = None
	role: Optional[MemberRole] = None
