"""CLI entry point for the candidate sourcing pipeline."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from sourcing.core.config import Settings
from sourcing.core.db import get_sourcing_run, init_db, insert_job
from sourcing.core.schemas import Job
from sourcing.fetch.client import ProfileFetchClient
from sourcing.pipeline.fit_scorer import FitScoringEngine
from sourcing.pipeline.orchestrator import create_run, run_sourcing
from sourcing.pipeline.scheduler import total_batches


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Candidate sourcing - fetch external profiles, dedup, score and link to jobs",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- run subcommand ---
    run_parser = subparsers.add_parser("run", help="Run a sourcing pass over profile references")
    run_parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    run_parser.add_argument(
        "--references",
        required=True,
        help="Text file with one profile URL per line ('#' starts a comment)",
    )
    job_group = run_parser.add_mutually_exclusive_group()
    job_group.add_argument("--job-id", type=int, help="ID of a stored job to score against")
    job_group.add_argument("--job-file", help="Job YAML to store and score against")
    run_parser.add_argument("--intent", default="", help="Free-text search intent for the run record")
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without calling the provider",
    )
    run_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    # --- status subcommand ---
    status_parser = subparsers.add_parser("status", help="Print a sourcing run's progress as JSON")
    status_parser.add_argument("--config", default="config/settings.yaml")
    status_parser.add_argument("--run-id", type=int, required=True)
    status_parser.add_argument("--verbose", "-v", action="store_true")

    # --- add-job subcommand ---
    job_parser = subparsers.add_parser("add-job", help="Store a job requirement context")
    job_parser.add_argument("--config", default="config/settings.yaml")
    job_parser.add_argument("--job-file", required=True, help="Path to job YAML")
    job_parser.add_argument("--verbose", "-v", action="store_true")

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO; polling makes that noisy.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def read_references(path: str | Path) -> list[str]:
    """Read profile references, skipping blank lines and comments."""
    path = Path(path)
    if not path.exists():
        msg = f"References file not found: {path}"
        raise FileNotFoundError(msg)
    references: list[str] = []
    for line in path.read_text().splitlines():
        line = line.split("#", 1)[0].strip()
        if line:
            references.append(line)
    return references


def load_settings(path: str) -> Settings:
    try:
        return Settings.from_yaml(path)
    except FileNotFoundError:
        logging.getLogger(__name__).info("No config at %s, using defaults", path)
        return Settings()


def dry_run(settings: Settings, references: list[str], job: Job | None) -> None:
    """Print what would happen without contacting the provider."""
    batch_size = settings.sourcing.batch_size
    attempts = len(references) * (settings.sourcing.max_retries + 1)

    print(f"[DRY RUN] {len(references)} profile references")
    print(f"[DRY RUN] {total_batches(len(references), batch_size)} batches of up to {batch_size}")
    print(f"[DRY RUN] Cost: ${len(references) * settings.provider.cost_per_call:.4f} "
          f"(worst case ${attempts * settings.provider.cost_per_call:.4f})")
    if job is not None:
        print(f"[DRY RUN] Scoring against '{job.title}' with {settings.scoring.llm_provider}, "
              f"threshold {settings.scoring.threshold}")
    else:
        print("[DRY RUN] No job given: candidates would be stored without scoring")


async def run(
    settings: Settings,
    references: list[str],
    job_id: int | None,
    intent: str,
) -> None:
    """Run one sourcing pass end to end."""
    # Missing credentials must fail before any run record is written.
    engine = FitScoringEngine.from_config(settings.scoring) if job_id is not None else None
    client = ProfileFetchClient(settings.provider)

    conn = init_db(settings.database.path)
    try:
        async with client:
            run_id = create_run(conn, references, settings, job_id=job_id, search_intent=intent)
            print(f"Sourcing run #{run_id} started ({len(references)} references)")
            report = await run_sourcing(conn, run_id, client, engine, settings)
        sourcing_run = get_sourcing_run(conn, run_id)
    finally:
        conn.close()

    progress = sourcing_run.progress if sourcing_run else None
    print(f"\nRun #{run_id} {report.status}: {progress.message if progress else ''}")
    print(f"  {report.fetched}/{len(references)} profiles fetched, "
          f"{len(report.created_ids)} new candidates")
    if sourcing_run is not None:
        print(f"  {sourcing_run.fetch_calls} provider calls, est. ${sourcing_run.estimated_cost:.4f}")
    if report.link_summary is not None:
        summary = report.link_summary
        print(f"  {summary.recommended} recommended, {summary.low_fit} low fit, "
              f"{summary.failures} scoring failures")


def cmd_run(args: argparse.Namespace) -> None:
    """Handle run subcommand."""
    settings = load_settings(args.config)
    references = read_references(args.references)

    job: Job | None = None
    job_id: int | None = args.job_id
    if args.job_file:
        job = Job.from_yaml(args.job_file)

    if args.dry_run:
        dry_run(settings, references, job)
        return

    if job is not None:
        conn = init_db(settings.database.path)
        job_id = insert_job(conn, job)
        conn.close()
        print(f"Stored job #{job_id}: {job.title}")

    asyncio.run(run(settings, references, job_id, args.intent))


def cmd_status(args: argparse.Namespace) -> None:
    """Handle status subcommand."""
    settings = load_settings(args.config)
    conn = init_db(settings.database.path)
    sourcing_run = get_sourcing_run(conn, args.run_id)
    conn.close()
    if sourcing_run is None:
        msg = f"Sourcing run #{args.run_id} not found"
        raise ValueError(msg)

    print(json.dumps({
        "id": sourcing_run.id,
        "status": sourcing_run.status,
        "progress": sourcing_run.progress.model_dump(),
        "fetch_calls": sourcing_run.fetch_calls,
        "estimated_cost": sourcing_run.estimated_cost,
        "candidates_created": sourcing_run.candidates_created,
        "error_log": sourcing_run.error_log,
    }, indent=2))


def cmd_add_job(args: argparse.Namespace) -> None:
    """Handle add-job subcommand."""
    settings = load_settings(args.config)
    job = Job.from_yaml(args.job_file)
    conn = init_db(settings.database.path)
    job_id = insert_job(conn, job)
    conn.close()
    print(f"Stored job #{job_id}: {job.title}")
    print(f"Run sourcing with: python main.py run --references <file> --job-id {job_id}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    handlers = {"run": cmd_run, "status": cmd_status, "add-job": cmd_add_job}
    try:
        handlers[args.command](args)
    except (FileNotFoundError, ImportError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
