"""Access tokens binding a session to one organization partition.

HS256 with the configured secret key. Every token carries the organization id
(``sub``) and its partition id, so a caller can be scoped without a registry
lookup.
"""

from __future__ import annotations

import time
from typing import Any, Dict
from uuid import UUID

import jwt
from jwt import InvalidTokenError

from scanattend.domain.common.exceptions import AuthenticationError
from scanattend.settings import settings

ISSUER = "scanattend"
AUDIENCE = "scanattend-clients"
ALGORITHM = "HS256"


def encode_access(org_id: UUID | str, partition_id: str, email: str) -> str:
	now = int(time.time())
	body: Dict[str, Any] = {
		"iss": ISSUER,
		"aud": AUDIENCE,
		"iat": now,
		"exp": now + settings.access_ttl_minutes * 60,
		"sub": str(org_id),
		"partition": partition_id,
		"email": email,
	}
	return jwt.encode(body, settings.signing_key(), algorithm=ALGORITHM)


def decode_access(token: str) -> Dict[str, Any]:
	"""Decode and validate an access token.

	Raises :class:`AuthenticationError` for expired, tampered or incomplete tokens.
	"""
	try:
		payload = jwt.decode(
			token,
			settings.signing_key(),
			algorithms=[ALGORITHM],
			audience=AUDIENCE,
			issuer=ISSUER,
			leeway=5,
			options={"require": ["exp", "iat", "iss", "aud"]},
		)
	except InvalidTokenError as exc:
		raise AuthenticationError("Invalid or expired token") from exc
	for claim in ("sub", "partition"):
		if not payload.get(claim):
			raise AuthenticationError(f"Token is missing the {claim} claim")
	return payload


__all__ = ["decode_access", "encode_access"]
