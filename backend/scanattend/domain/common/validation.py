"""Declarative input validation on top of pydantic models."""

from __future__ import annotations

from typing import Any, List, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from scanattend.domain.common.exceptions import ValidationError

M = TypeVar("M", bound=BaseModel)


def describe_errors(exc: PydanticValidationError) -> List[str]:
	"""Render every violated field as ``"path: message"``."""
	messages: List[str] = []
	for error in exc.errors():
		path = ".".join(str(part) for part in error.get("loc", ())) or "input"
		messages.append(f"{path}: {error.get('msg', 'invalid value')}")
	return messages


def validate(model: Type[M], data: Any) -> M:
	if isinstance(data, model):
		return data
	try:
		return model.model_validate(data)
	except PydanticValidationError as exc:
		raise ValidationError(describe_errors(exc)) from exc


__all__ = ["describe_errors", "validate"]
