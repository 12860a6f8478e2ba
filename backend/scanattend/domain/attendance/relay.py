"""Relay live attendance updates onto a redis stream.

Socket servers in other processes read ``attendance:event:<id>``; each
entry is ``{type, event_id, ts, payload}`` with ``payload`` as JSON.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from scanattend.domain.attendance.models import AttendanceStats, VerificationRecord
from scanattend.domain.attendance.realtime import SubscriptionHandlers
from scanattend.infra.redis import redis_client
from scanattend.settings import settings

_LOG = logging.getLogger(__name__)

STREAM_PREFIX = "attendance:event:"


def stream_name(event_id: UUID | str) -> str:
	return f"{STREAM_PREFIX}{event_id}"


def _now_ts() -> str:
	return datetime.now(timezone.utc).isoformat()


class RedisRelay:
	def __init__(self, event_id: UUID | str, *, maxlen: Optional[int] = None) -> None:
		self.event_id = str(event_id)
		self.stream = stream_name(event_id)
		self.maxlen = maxlen or settings.relay_stream_maxlen

	async def _publish(self, kind: str, payload: Any) -> str:
		entry = {
			"type": kind,
			"event_id": self.event_id,
			"ts": _now_ts(),
			"payload": json.dumps(payload, separators=(",", ":"), default=str),
		}
		return await redis_client.xadd_capped(self.stream, entry, self.maxlen)

	async def publish_verification(self, record: VerificationRecord) -> None:
		await self._publish("verification", record.to_wire())

	async def publish_stats(self, stats: AttendanceStats) -> None:
		await self._publish("stats", stats.to_wire())

	async def publish_error(self, error: BaseException) -> None:
		# Only a generic message leaves the process.
		detail = getattr(error, "detail", None) if getattr(error, "public", False) else None
		_LOG.warning("relay.subscription_error", extra={"event_id": self.event_id, "error": str(error)})
		await self._publish("error", {"message": detail or "Live updates interrupted"})

	def handlers(self) -> SubscriptionHandlers:
		return SubscriptionHandlers(
			on_verification_update=self.publish_verification,
			on_stats_update=self.publish_stats,
			on_error=self.publish_error,
		)


__all__ = ["RedisRelay", "stream_name"]
