#!/usr/bin/env python3
"""Register Prefect v3 deployments for the valuation pipeline.

Deploys from remote code storage (git) so a managed work pool can pull the
repository at run time:

	flow.from_source(source=..., entrypoint=...).deploy(...)

Pass `--local` to deploy the flows imported from this checkout instead (for a
worker built from the repository itself).
"""

from __future__ import annotations

import argparse
import importlib
import os
from dataclasses import dataclass
from typing import Any

from prefect.schedules import Cron


DEFAULT_SOURCE = os.getenv("PREFECT_DEPLOY_SOURCE")


@dataclass(frozen=True)
class DeploymentSpec:
	name: str
	entrypoint: str
	cron: str


DEPLOYMENTS: tuple[DeploymentSpec, ...] = (
	DeploymentSpec(
		name="daily-valuation-metrics",
		entrypoint="src/pipelines/flows/fetch_metrics.py:fetch_metrics_flow",
		cron="0 6 * * *",
	),
)


def import_flow_from_entrypoint(entrypoint: str):
	"""Import a flow from `src/pipelines/flows/foo.py:bar` or `src.pipelines.flows.foo:bar`."""
	module_part, flow_attr = entrypoint.split(":", 1)
	module_part = module_part.removesuffix(".py").replace("/", ".")
	module = importlib.import_module(module_part)
	return getattr(module, flow_attr)


def deploy(
	*,
	local: bool,
	source: str | None,
	ref: str | None,
	work_pool_name: str,
	work_queue_name: str | None,
	timezone: str,
) -> None:
	from prefect import flow

	if not local and not source:
		raise SystemExit("Missing code storage source. Set PREFECT_DEPLOY_SOURCE, pass --source, or use --local.")

	errors: list[str] = []
	for spec in DEPLOYMENTS:
		try:
			if local:
				deploy_flow = import_flow_from_entrypoint(spec.entrypoint)
			else:
				src: Any = source
				if ref:
					from prefect.runner.storage import GitRepository

					src = GitRepository(url=source, reference=ref)
				deploy_flow = flow.from_source(source=src, entrypoint=spec.entrypoint)

			deploy_kwargs: dict[str, Any] = {
				"name": spec.name,
				"work_pool_name": work_pool_name,
				"schedules": [Cron(spec.cron, timezone=timezone)],
			}
			if work_queue_name:
				deploy_kwargs["work_queue_name"] = work_queue_name

			deploy_flow.deploy(**deploy_kwargs)
			print(f"Deployed {spec.name}")
		except Exception as exc:
			errors.append(f"{spec.name}: {exc}")

	if errors:
		msg = "One or more deployments failed:\n" + "\n".join(f"- {e}" for e in errors)
		raise SystemExit(msg)


def main() -> None:
	p = argparse.ArgumentParser(description="Create Prefect deployments for the valuation pipeline.")
	p.add_argument("--work-pool", required=True, help="Prefect work pool name")
	p.add_argument("--work-queue", default=None, help="Optional work queue name")
	p.add_argument("--local", action="store_true", help="Deploy flows imported from this checkout.")
	p.add_argument(
		"--source",
		default=DEFAULT_SOURCE,
		help="Remote code storage source (git URL). Default: $PREFECT_DEPLOY_SOURCE",
	)
	p.add_argument("--ref", default=None, help="Optional git ref (branch/tag/commit).")
	p.add_argument("--timezone", default="UTC", help="Schedule timezone for the cron (default: UTC).")
	args = p.parse_args()

	deploy(
		local=args.local,
		source=args.source,
		ref=args.ref,
		work_pool_name=args.work_pool,
		work_queue_name=args.work_queue,
		timezone=args.timezone,
	)


if __name__ == "__main__":
	main()
