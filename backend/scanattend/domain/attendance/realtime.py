"""Live updates for events and organizations.

Every subscription owns a channel: a bounded ``asyncio.Queue`` fed by the
change feed and drained by its own consumer task.

* An event subscription listens to one event's verification table. For each
  inserted row it calls ``on_verification_update``, recomputes the event
  statistics and calls ``on_stats_update``.
* An organization subscription listens to the partition's ``events`` table
  and calls ``on_event_update`` for every inserted or updated event row.

Handlers may be plain functions or coroutines. A handler that raises is
reported to ``on_error`` and the channel keeps running; a failing
``on_error`` is only logged. When the queue is full new changes are dropped
and the loss is reported to ``on_error``. A feed failure marks the
subscription ``errored``; it stays that way until it is resubscribed.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from scanattend.domain.attendance.models import VerificationRecord
from scanattend.domain.attendance.stats import StatisticsAggregator
from scanattend.domain.common.exceptions import AttendanceError, NotFoundError
from scanattend.domain.events.models import Event
from scanattend.domain.tenancy.provisioner import EVENTS_TABLE
from scanattend.infra.change_feed import Change, ChangeFeed
from scanattend.obs import logging as obs_logging
from scanattend.obs import metrics as obs_metrics
from scanattend.settings import settings

_LOG = logging.getLogger(__name__)

Handler = Callable[..., Any]


class NotifierBackpressure(AttendanceError):
	reason = "backpressure"
	detail = "Live update queue is full; changes were dropped"


class SubscriptionStatus(str, Enum):
	ACTIVE = "active"
	ERRORED = "errored"
	CLOSED = "closed"


@dataclass
class SubscriptionHandlers:
	on_verification_update: Optional[Handler] = None
	on_stats_update: Optional[Handler] = None
	on_error: Optional[Handler] = None


@dataclass
class OrganizationHandlers:
	on_event_update: Optional[Handler] = None
	on_error: Optional[Handler] = None


@dataclass(frozen=True)
class _Failure:
	error: BaseException


class _Channel:
	"""Queue plus consumer task; registered with the feed as a sink."""

	def __init__(self, partition: str, handlers: Any, queue_size: int) -> None:
		self.partition = partition
		self.handlers = handlers
		self.status = SubscriptionStatus.ACTIVE
		self.token: Optional[int] = None
		self.dropped = 0
		self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_size))
		self._task: Optional[asyncio.Task] = None

	@property
	def _log_extra(self) -> Dict[str, Any]:
		return {"partition": self.partition}

	@property
	def _task_name(self) -> str:
		raise NotImplementedError

	def _context(self):
		return obs_logging.log_context(partition=self.partition)

	async def _handle(self, change: Change) -> None:
		raise NotImplementedError

	# --- Sink side (called by the feed) ----------------------------------

	def deliver(self, change: Change) -> None:
		if self.status is not SubscriptionStatus.ACTIVE:
			return
		try:
			self._queue.put_nowait(change)
		except asyncio.QueueFull:
			self.dropped += 1
			obs_metrics.inc_notifier_delivery("dropped")

	def fail(self, error: BaseException) -> None:
		if self.status is not SubscriptionStatus.ACTIVE:
			return
		self.status = SubscriptionStatus.ERRORED
		_LOG.warning("notifier.subscription_errored", extra={**self._log_extra, "error": str(error)})
		if self._queue.full():
			self._queue.get_nowait()
			self.dropped += 1
		self._queue.put_nowait(_Failure(error))

	# --- Consumer side ---------------------------------------------------

	def start(self) -> None:
		self._task = asyncio.create_task(self._run(), name=self._task_name)

	async def _run(self) -> None:
		with self._context():
			while True:
				item = await self._queue.get()
				try:
					if self.dropped:
						dropped, self.dropped = self.dropped, 0
						await self._call("on_error", NotifierBackpressure(f"{dropped} live update(s) dropped"))
					if isinstance(item, _Failure):
						await self._call("on_error", item.error)
						return
					await self._handle(item)
				except Exception:
					_LOG.exception("notifier.dispatch_failed", extra=self._log_extra)
				finally:
					self._queue.task_done()

	async def _call(self, name: str, *args: Any) -> None:
		handler = getattr(self.handlers, name)
		if handler is None:
			return
		try:
			result = handler(*args)
			if inspect.isawaitable(result):
				await result
			obs_metrics.inc_notifier_delivery(name)
		except Exception as exc:
			obs_metrics.inc_notifier_handler_error(name)
			if name == "on_error":
				_LOG.exception("notifier.on_error_failed", extra=self._log_extra)
				return
			_LOG.warning("notifier.handler_failed", extra={**self._log_extra, "handler": name, "error": str(exc)})
			await self._call("on_error", exc)

	async def drain(self) -> None:
		"""Wait until every queued change has been handled."""
		await self._queue.join()

	async def close(self, feed: ChangeFeed) -> None:
		self.status = SubscriptionStatus.CLOSED
		if self.token is not None:
			try:
				await feed.unregister(self.token)
			except AttendanceError as exc:
				_LOG.warning("notifier.unregister_failed", extra={**self._log_extra, "error": str(exc)})
			self.token = None
		if self._task is not None:
			self._task.cancel()
			with contextlib.suppress(asyncio.CancelledError):
				await self._task
			self._task = None


class Subscription(_Channel):
	"""One event's channel over its verification table."""

	def __init__(
		self,
		event_id: str,
		partition: str,
		attendance_table: str,
		verification_table: str,
		handlers: SubscriptionHandlers,
		stats: StatisticsAggregator,
		queue_size: int,
	) -> None:
		super().__init__(partition, handlers, queue_size)
		self.event_id = event_id
		self.attendance_table = attendance_table
		self.verification_table = verification_table
		self._stats = stats

	@property
	def _log_extra(self) -> Dict[str, Any]:
		return {"event_id": self.event_id}

	@property
	def _task_name(self) -> str:
		return f"attendance-notifier-{self.event_id}"

	def _context(self):
		return obs_logging.log_context(partition=self.partition, event_id=self.event_id)

	async def _handle(self, change: Change) -> None:
		if change.event_type != "INSERT":
			return
		try:
			record = VerificationRecord.from_row(change.new)
		except (KeyError, ValueError, TypeError) as exc:
			_LOG.warning("notifier.unmappable_row", extra={"event_id": self.event_id, "error": str(exc)})
			await self._call("on_error", exc)
			return
		await self._call("on_verification_update", record)

		stats = await self._stats.get_attendance_stats(self.partition, self.attendance_table, self.verification_table)
		if stats.success:
			await self._call("on_stats_update", stats.data)
		else:
			await self._call("on_error", stats.exception or AttendanceError(stats.error))


class OrganizationSubscription(_Channel):
	"""One organization's channel over its ``events`` table."""

	@property
	def _task_name(self) -> str:
		return f"organization-notifier-{self.partition}"

	async def _handle(self, change: Change) -> None:
		if change.event_type not in ("INSERT", "UPDATE"):
			return
		try:
			event = Event.from_row(change.new)
		except (KeyError, ValueError, TypeError) as exc:
			_LOG.warning("notifier.unmappable_row", extra={"partition": self.partition, "error": str(exc)})
			await self._call("on_error", exc)
			return
		await self._call("on_event_update", event)


class ChangeNotifier:
	def __init__(self, feed: ChangeFeed, stats: StatisticsAggregator, *, queue_size: Optional[int] = None) -> None:
		self._feed = feed
		self._stats = stats
		self._queue_size = queue_size or settings.notifier_queue_size
		self._subscriptions: Dict[str, Subscription] = {}
		self._organizations: Dict[str, OrganizationSubscription] = {}

	async def _register(self, channel: _Channel, table: str) -> None:
		channel.start()
		try:
			channel.token = await self._feed.register(channel.partition, table, channel)
		except AttendanceError as exc:
			channel.fail(exc)
			return
		_LOG.info("notifier.subscribed", extra={**channel._log_extra, "partition": channel.partition, "table": table})

	async def subscribe(
		self,
		event_id: UUID | str,
		partition: str,
		attendance_table: str,
		verification_table: str,
		handlers: SubscriptionHandlers,
	) -> Subscription:
		key = str(event_id)
		# At most one channel per event.
		await self.unsubscribe(key)

		subscription = Subscription(
			key,
			partition,
			attendance_table,
			verification_table,
			handlers,
			self._stats,
			self._queue_size,
		)
		self._subscriptions[key] = subscription
		await self._register(subscription, verification_table)
		return subscription

	async def resubscribe(self, event_id: UUID | str) -> Subscription:
		current = self._subscriptions.get(str(event_id))
		if current is None:
			raise NotFoundError("No subscription for this event")
		return await self.subscribe(
			current.event_id,
			current.partition,
			current.attendance_table,
			current.verification_table,
			current.handlers,
		)

	async def unsubscribe(self, event_id: UUID | str) -> bool:
		subscription = self._subscriptions.pop(str(event_id), None)
		if subscription is None:
			return False
		await subscription.close(self._feed)
		_LOG.info("notifier.unsubscribed", extra={"event_id": subscription.event_id})
		return True

	async def subscribe_organization(self, partition: str, handlers: OrganizationHandlers) -> OrganizationSubscription:
		"""Event created, renamed, archived or reactivated anywhere in the partition."""
		# At most one channel per organization.
		await self.unsubscribe_organization(partition)

		subscription = OrganizationSubscription(partition, handlers, self._queue_size)
		self._organizations[partition] = subscription
		await self._register(subscription, EVENTS_TABLE)
		return subscription

	async def resubscribe_organization(self, partition: str) -> OrganizationSubscription:
		current = self._organizations.get(partition)
		if current is None:
			raise NotFoundError("No subscription for this organization")
		return await self.subscribe_organization(partition, current.handlers)

	async def unsubscribe_organization(self, partition: str) -> bool:
		subscription = self._organizations.pop(partition, None)
		if subscription is None:
			return False
		await subscription.close(self._feed)
		_LOG.info("notifier.unsubscribed", extra={"partition": partition})
		return True

	async def unsubscribe_all(self) -> None:
		for event_id in list(self._subscriptions):
			await self.unsubscribe(event_id)
		for partition in list(self._organizations):
			await self.unsubscribe_organization(partition)

	def get(self, event_id: UUID | str) -> Optional[Subscription]:
		return self._subscriptions.get(str(event_id))

	def get_organization(self, partition: str) -> Optional[OrganizationSubscription]:
		return self._organizations.get(partition)

	def status(self, event_id: UUID | str) -> Optional[SubscriptionStatus]:
		subscription = self._subscriptions.get(str(event_id))
		return subscription.status if subscription else None

	def active_subscriptions(self) -> List[str]:
		return [key for key, sub in self._subscriptions.items() if sub.status is SubscriptionStatus.ACTIVE]

	def active_organizations(self) -> List[str]:
		return [key for key, sub in self._organizations.items() if sub.status is SubscriptionStatus.ACTIVE]


__all__ = [
	"ChangeNotifier",
	"NotifierBackpressure",
	"OrganizationHandlers",
	"OrganizationSubscription",
	"Subscription",
	"SubscriptionHandlers",
	"SubscriptionStatus",
]
