"""Central registry for Prometheus metrics used across the data layer."""

from __future__ import annotations

from prometheus_client import Counter

SCANS = Counter(
	"scanattend_scans_total",
	"Attendance scans processed",
	["outcome"],
)

GATEWAY_FAILURES = Counter(
	"scanattend_gateway_failures_total",
	"Statements that failed in the execution gateway",
	["kind"],
)

PROVISIONING_FAILURES = Counter(
	"scanattend_provisioning_failures_total",
	"Partition/table provisioning steps that failed",
	["operation"],
)

NOTIFIER_DELIVERIES = Counter(
	"scanattend_notifier_deliveries_total",
	"Change notifications delivered to subscribers",
	["kind"],
)

NOTIFIER_HANDLER_ERRORS = Counter(
	"scanattend_notifier_handler_errors_total",
	"Subscriber handler invocations that raised",
	["handler"],
)

IMPORT_ROWS = Counter(
	"scanattend_import_rows_total",
	"Bulk import rows by result bucket",
	["bucket"],
)

AUDIT_WRITES = Counter(
	"scanattend_audit_writes_total",
	"Audit log writes by outcome",
	["outcome"],
)


def inc_scan(outcome: str) -> None:
	SCANS.labels(outcome=outcome).inc()


def inc_gateway_failure(kind: str) -> None:
	GATEWAY_FAILURES.labels(kind=kind).inc()


def inc_provisioning_failure(operation: str) -> None:
	PROVISIONING_FAILURES.labels(operation=operation).inc()


def inc_notifier_delivery(kind: str) -> None:
	NOTIFIER_DELIVERIES.labels(kind=kind).inc()


def inc_notifier_handler_error(handler: str) -> None:
	NOTIFIER_HANDLER_ERRORS.labels(handler=handler).inc()


def inc_import_rows(bucket: str, count: int) -> None:
	if count:
		IMPORT_ROWS.labels(bucket=bucket).inc(count)


def inc_audit_write(outcome: str) -> None:
	AUDIT_WRITES.labels(outcome=outcome).inc()
