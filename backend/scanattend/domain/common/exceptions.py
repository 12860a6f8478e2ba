"""Error taxonomy for the attendance data layer."""

from __future__ import annotations

from typing import Iterable


class AttendanceError(Exception):
	"""Base class for attendance data layer errors."""

	reason: str = "attendance_error"
	detail: str = "Attendance operation failed"
	# Whether ``detail`` may be shown to end users as-is.
	public: bool = True
	retryable: bool = False

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class ValidationError(AttendanceError):
	"""Malformed or missing input; raised before storage is touched."""

	reason = "validation_error"
	detail = "Validation failed"

	def __init__(self, fields: Iterable[str] = (), detail: str | None = None) -> None:
		self.fields = list(fields)
		if detail is None and self.fields:
			detail = f"Validation failed: {', '.join(self.fields)}"
		super().__init__(detail)


class ConflictError(AttendanceError):
	"""Duplicate email, participant id or event name."""

	reason = "conflict"
	detail = "Resource already exists"


class NotFoundError(AttendanceError):
	"""Referenced entity is absent."""

	reason = "not_found"
	detail = "Not found"


class AuthenticationError(AttendanceError):
	"""Credential or session token rejected."""

	reason = "unauthenticated"
	detail = "Invalid credentials"


class ProvisioningError(AttendanceError):
	"""Partition/table create or drop failed at the storage layer."""

	reason = "provisioning_failed"
	detail = "Storage provisioning failed"
	public = False


class TransientStorageError(AttendanceError):
	"""The execution gateway itself failed; callers may retry."""

	reason = "storage_unavailable"
	detail = "Storage temporarily unavailable"
	public = False
	retryable = True


class StorageError(AttendanceError):
	"""A statement was rejected by the database."""

	reason = "storage_error"
	detail = "Storage operation failed"
	public = False
