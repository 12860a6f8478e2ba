"""Uniform result envelopes returned by repositories and services."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, TypeVar

from scanattend.domain.common.exceptions import AttendanceError

T = TypeVar("T")
U = TypeVar("U")


@dataclass
class Result(Generic[T]):
	"""``{success, data?, error?}`` with the error reason code alongside."""

	success: bool
	data: Optional[T] = None
	error: Optional[str] = None
	code: Optional[str] = None
	exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

	@classmethod
	def ok(cls, data: Optional[T] = None) -> "Result[T]":
		return cls(success=True, data=data)

	@classmethod
	def fail(cls, exc: BaseException | str, fallback: str = "Operation failed") -> "Result[T]":
		"""Wrap an error; non-public errors only surface ``fallback``."""
		if isinstance(exc, str):
			return cls(success=False, error=exc, code="error")
		if isinstance(exc, AttendanceError):
			message = exc.detail if exc.public else fallback
			return cls(success=False, error=message, code=exc.reason, exception=exc)
		return cls(success=False, error=fallback, code="unexpected", exception=exc)

	@property
	def retryable(self) -> bool:
		return bool(getattr(self.exception, "retryable", False))

	def unwrap(self) -> T:
		if self.success:
			return self.data  # type: ignore[return-value]
		if self.exception is not None:
			raise self.exception
		raise AttendanceError(self.error)


@dataclass
class Page(Generic[T]):
	data: List[T]
	total: int
	page: int
	limit: int
	has_more: bool

	def map(self, fn: Callable[[T], U]) -> "Page[U]":
		return Page(
			data=[fn(item) for item in self.data],
			total=self.total,
			page=self.page,
			limit=self.limit,
			has_more=self.has_more,
		)


__all__ = ["Page", "Result"]
