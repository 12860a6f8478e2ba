"""Repair partially provisioned organization partitions.

Runs the idempotent reconcile pass for every registered organization, or only
for the partitions given with ``--partition``. Exits non-zero if any partition
is still incomplete afterwards.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Sequence
from uuid import uuid4

from scanattend import obs
from scanattend.domain.common.naming import quote
from scanattend.domain.tenancy.provisioner import REGISTRY_TABLE, ReconcileReport, SchemaProvisioner
from scanattend.infra.gateway import ExecutionGateway
from scanattend.infra.postgres import close_pool, init_pool
from scanattend.obs.logging import log_context

_LOG = logging.getLogger("scanattend.scripts.reconcile")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Reconcile tenant partitions and event tables")
	parser.add_argument(
		"--partition",
		action="append",
		default=[],
		help="Partition id to reconcile (repeatable); defaults to every registered organization",
	)
	return parser.parse_args(argv)


async def _registered_partitions(gateway: ExecutionGateway) -> List[str]:
	result = await gateway.execute(f"SELECT partition_id FROM {quote(REGISTRY_TABLE)} ORDER BY partition_id")
	rows = result.raise_for_error().data
	return [row["partition_id"] for row in rows]


async def reconcile(partitions: Sequence[str], gateway: ExecutionGateway) -> List[ReconcileReport]:
	provisioner = SchemaProvisioner(gateway)
	if not await provisioner.ensure_registry():
		raise SystemExit("Could not create the organizations registry")
	targets = list(partitions) or await _registered_partitions(gateway)
	reports: List[ReconcileReport] = []
	for partition_id in targets:
		with log_context(partition=partition_id):
			report = await provisioner.reconcile_partition(partition_id)
			level = logging.INFO if report.clean else logging.ERROR
			_LOG.log(
				level,
				"reconcile.partition",
				extra={
					"created_partition": report.created_partition,
					"repaired_events": report.repaired_events,
					"failed_events": report.failed_events,
					"errors": report.errors,
					"warnings": report.warnings,
				},
			)
		reports.append(report)
	return reports


async def main(argv: Sequence[str] | None = None) -> int:
	args = _parse_args(argv)
	obs.init()
	with log_context(request_id=uuid4().hex):
		pool = await init_pool()
		try:
			reports = await reconcile(args.partition, ExecutionGateway(pool))
		finally:
			await close_pool()
		failed = [report.partition_id for report in reports if not report.clean]
		_LOG.info("reconcile.done", extra={"partitions": len(reports), "failed": failed})
	return 1 if failed else 0


if __name__ == "__main__":
	raise SystemExit(asyncio.run(main()))
