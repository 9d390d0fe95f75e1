#!/usr/bin/env python3
"""Blog Publisher - operator CLI for the publish job queue."""

import argparse
import getpass
import json
import logging
import sys
from typing import List, Optional

from .adapters import create_default_registry
from .config import DEFAULT_DISPATCH_LIMIT, STALE_RUNNING_THRESHOLD_SECONDS
from .crypto import encrypt_secret
from .persistence import PublishJobStatus, create_storage
from .queue import PublishQueue

logger = logging.getLogger(__name__)


def build_queue(args: argparse.Namespace) -> PublishQueue:
    """Create the publish queue from CLI storage options."""
    storage = create_storage(args.storage, db_path=args.db_path)
    return PublishQueue(storage, create_default_registry())


def _print_job(job) -> None:
    line = f"  {job.job_id}  {job.status.value:<8} {job.platform}:{job.target_id}  draft={job.draft_id} attempts={job.attempts}"
    if job.last_error:
        line += f"\n      last_error: {job.last_error}"
    print(line)


def cmd_approve(queue: PublishQueue, args: argparse.Namespace) -> int:
    queue.on_draft_approved(args.draft_id, args.location_id)
    jobs = queue.list_jobs(draft_id=args.draft_id, location_id=args.location_id)
    print(f"Draft {args.draft_id} approved. Jobs:")
    for job in jobs:
        _print_job(job)
    return 0


def cmd_dispatch(queue: PublishQueue, args: argparse.Namespace) -> int:
    outcomes = queue.dispatch_queued(args.draft_id, args.location_id, limit=args.limit)
    if not outcomes:
        print("No queued jobs dispatched.")
        return 0
    for outcome in outcomes:
        detail = outcome.error or outcome.external_id or ""
        print(f"  {outcome.job_id}  {outcome.kind.value:<17} {outcome.platform}:{outcome.target_id}  {detail}")
    return 0


def cmd_requeue(queue: PublishQueue, args: argparse.Namespace) -> int:
    job = queue.requeue_job(args.job_id)
    if job is None:
        print(f"Error: job {args.job_id} is not eligible for requeue (missing, not failed, or already published)")
        return 1
    print(f"Requeued as {job.job_id}")
    return 0


def cmd_recover_stale(queue: PublishQueue, args: argparse.Namespace) -> int:
    count = queue.recover_stale_jobs(args.older_than)
    print(f"Failed {count} stale running job(s)")
    return 0


def cmd_jobs(queue: PublishQueue, args: argparse.Namespace) -> int:
    status = PublishJobStatus(args.status) if args.status else None
    jobs = queue.list_jobs(status=status, draft_id=args.draft_id, location_id=args.location_id, limit=args.limit)
    if args.json:
        print(json.dumps([job.model_dump(mode="json") for job in jobs], indent=2))
        return 0
    if not jobs:
        print("No jobs found.")
        return 0
    for job in jobs:
        _print_job(job)
    return 0


def cmd_ledger(queue: PublishQueue, args: argparse.Namespace) -> int:
    entries = queue.list_ledger(args.draft_id)
    if not entries:
        print(f"No ledger entries for draft {args.draft_id}.")
        return 0
    for entry in entries:
        print(f"  {entry.platform}:{entry.target_id}  external_id={entry.external_id}  url={entry.published_url or '-'}")
    return 0


def cmd_stats(queue: PublishQueue, args: argparse.Namespace) -> int:
    stats = queue.get_stats()
    print(json.dumps(stats.model_dump(mode="json"), indent=2))
    return 0


def cmd_platforms(queue: PublishQueue, args: argparse.Namespace) -> int:
    print("Registered platforms:")
    for platform in queue.adapters.platforms:
        print(f"  {platform}")
    return 0


def cmd_encrypt_secret(args: argparse.Namespace) -> int:
    secret = args.secret if args.secret is not None else getpass.getpass("Secret: ")
    try:
        print(encrypt_secret(secret))
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    return 0


QUEUE_COMMANDS = {
    "approve": cmd_approve,
    "dispatch": cmd_dispatch,
    "requeue": cmd_requeue,
    "recover-stale": cmd_recover_stale,
    "jobs": cmd_jobs,
    "ledger": cmd_ledger,
    "stats": cmd_stats,
    "platforms": cmd_platforms,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m blog_publisher",
        description="Blog Publisher - publish job queue operator tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fan an approved draft out to its location's targets and publish
  python -m blog_publisher approve DRAFT_ID --location LOCATION_ID

  # Inspect failed jobs and re-drive one
  python -m blog_publisher jobs --status failed
  python -m blog_publisher requeue JOB_ID

  # Encrypt a platform token for a target config
  PUBLISHER_TOKEN_KEY=... python -m blog_publisher encrypt-secret
""",
    )
    parser.add_argument(
        "--storage",
        type=str,
        default=None,
        choices=["memory", "sqlite", "postgres"],
        help="Storage backend (default: postgres if DATABASE_URL is set, else sqlite)",
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="SQLite database path (default: BLOG_PUBLISHER_DB_PATH or ./data/blog_publisher.db)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    approve = subparsers.add_parser("approve", help="Run the draft-approved hook")
    approve.add_argument("draft_id")
    approve.add_argument("--location", dest="location_id", required=True)

    dispatch = subparsers.add_parser("dispatch", help="Dispatch a draft's queued jobs")
    dispatch.add_argument("draft_id")
    dispatch.add_argument("--location", dest="location_id", required=True)
    dispatch.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_DISPATCH_LIMIT,
        help=f"Maximum jobs to run (default: {DEFAULT_DISPATCH_LIMIT})",
    )

    requeue = subparsers.add_parser("requeue", help="Requeue a failed job")
    requeue.add_argument("job_id")

    recover = subparsers.add_parser("recover-stale", help="Fail jobs stuck in running")
    recover.add_argument(
        "--older-than",
        type=int,
        default=STALE_RUNNING_THRESHOLD_SECONDS,
        help=f"Age threshold in seconds (default: {STALE_RUNNING_THRESHOLD_SECONDS})",
    )

    jobs = subparsers.add_parser("jobs", help="List jobs, newest first")
    jobs.add_argument("--status", choices=[s.value for s in PublishJobStatus], default=None)
    jobs.add_argument("--draft", dest="draft_id", default=None)
    jobs.add_argument("--location", dest="location_id", default=None)
    jobs.add_argument("--limit", type=int, default=50)
    jobs.add_argument("--json", action="store_true", help="Print jobs as JSON")

    ledger = subparsers.add_parser("ledger", help="Show a draft's publish ledger")
    ledger.add_argument("draft_id")

    subparsers.add_parser("stats", help="Show queue statistics")
    subparsers.add_parser("platforms", help="List registered platforms")

    encrypt = subparsers.add_parser("encrypt-secret", help="Encrypt a credential with PUBLISHER_TOKEN_KEY")
    encrypt.add_argument("secret", nargs="?", default=None, help="Secret to encrypt (prompted if omitted)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the Blog Publisher CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")

    if args.command == "encrypt-secret":
        return cmd_encrypt_secret(args)

    queue = build_queue(args)
    try:
        return QUEUE_COMMANDS[args.command](queue, args)
    finally:
        queue.storage.close()


if __name__ == "__main__":
    sys.exit(main())
