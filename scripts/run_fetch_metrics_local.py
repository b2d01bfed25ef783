import argparse
import asyncio
import os
import sys
from pathlib import Path


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the Prefect fetch-valuation-metrics flow locally")
    p.add_argument(
        "--use-prefect-api",
        action="store_true",
        help="Use PREFECT_API_URL/PREFECT_API_KEY from the environment if set. Default is local/ephemeral execution.",
    )
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch + normalize only; do not write to the database.",
    )
    p.add_argument("--date", default=None, help="Override the captured time (ISO date or datetime).")
    return p.parse_args()


def _maybe_set_ephemeral_prefect_env(use_prefect_api: bool) -> None:
    if use_prefect_api:
        return
    # Ensure local execution doesn't depend on Prefect server/cloud.
    os.environ.pop("PREFECT_API_URL", None)
    os.environ.pop("PREFECT_API_KEY", None)
    os.environ.setdefault("PREFECT_SERVER_ALLOW_EPHEMERAL_MODE", "true")


async def _run(dry_run: bool, date: str | None) -> int:
    from src.pipelines.flows.fetch_metrics import fetch_metrics_flow, parse_captured_at

    captured_at = parse_captured_at(date) if date else None
    summary = await fetch_metrics_flow(dry_run=dry_run, captured_at=captured_at)
    mode = "dry-run" if dry_run else "persist"
    print(f"Done ({mode}): {summary['message']} in {summary['duration']}")
    return 0 if summary["success"] else 1


def main() -> int:
    args = _parse_args()

    # Ensure `import src...` works when running from the repo root.
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

    _maybe_set_ephemeral_prefect_env(args.use_prefect_api)
    return asyncio.run(_run(dry_run=args.dry_run, date=args.date))


if __name__ == "__main__":
    raise SystemExit(main())
