"""
Manage the publishing queue from the command line.

Usage::

    # Put a post on a slot:
    python manage_queue.py enqueue launch-post facebook 2026-11-03T09:00:00Z --content "We're live!"

    # Move a job (date/time picker):
    python manage_queue.py reschedule <job_id> 2026-11-03T10:30:00Z

    # Drop a job on another calendar day, keeping its time:
    python manage_queue.py move <job_id> 2026-11-04

    # Re-arm a failed job, cancel a job, show the queue:
    python manage_queue.py retry <job_id>
    python manage_queue.py cancel <job_id>
    python manage_queue.py snapshot
"""

import argparse
import asyncio
import logging
import sys
from datetime import date

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("manage_queue")

EXIT_CONFLICT = 2

# Commands that act on an existing job id
JOB_COMMANDS = ("reschedule", "move", "retry", "cancel")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage scheduled publishing jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    enqueue = sub.add_parser("enqueue", help="Create a job and place it on a slot")
    enqueue.add_argument("content_ref", help="Content item reference")
    enqueue.add_argument("platform", help="Target platform (facebook, instagram, linkedin, ...)")
    enqueue.add_argument("time", help="Publish time, ISO-8601 (naive times are UTC)")
    enqueue.add_argument("--content", help="Post text")
    enqueue.add_argument("--media", nargs="*", default=[], metavar="FILE", help="Media files")
    enqueue.add_argument("--max-attempts", type=int, help="Attempt ceiling (default from settings)")
    enqueue.add_argument("--override", action="store_true", help="Place even if the slot is taken")

    reschedule = sub.add_parser("reschedule", help="Move a job to a new date/time")
    reschedule.add_argument("job_id")
    reschedule.add_argument("time", help="New publish time, ISO-8601")
    reschedule.add_argument("--platform", help="Move to another platform as well")
    reschedule.add_argument("--override", action="store_true", help="Move even if the slot is taken")

    move = sub.add_parser("move", help="Move a job to another day, keeping its time of day")
    move.add_argument("job_id")
    move.add_argument("date", help="Target date, YYYY-MM-DD")
    move.add_argument("--override", action="store_true", help="Move even if the slot is taken")

    retry = sub.add_parser("retry", help="Re-arm a failed job")
    retry.add_argument("job_id")
    retry.add_argument("--at", help="Run at this time instead of now, ISO-8601")

    cancel = sub.add_parser("cancel", help="Delete a job")
    cancel.add_argument("job_id")

    sub.add_parser("snapshot", help="Show jobs grouped by state")
    return parser


def print_job(job) -> None:
    print(f"  {job.id}  {job.summary()}  attempts={job.attempt_count}/{job.max_attempts}")
    if job.last_error:
        print(f"      last error: {job.last_error}")


def report_placement(result, job_id=None) -> int:
    from postflow.scheduling import ResultStatus

    if result.status is ResultStatus.CONFLICT:
        print(f"Slot taken by job {result.conflict.id}:")
        print_job(result.conflict)
        print("Pick another slot or repeat with --override.")
        return EXIT_CONFLICT
    job = result.raise_for_status(job_id)
    print(f"Job {job.id} is {job.state.value} for {job.scheduled_time.isoformat()}")
    return 0


async def run_command(args: argparse.Namespace) -> int:
    from postflow.config import get_settings, validate_env
    from postflow.exceptions import ConfigurationError
    from postflow.scheduling import InMemoryJobStore, SchedulingSystem, Slot
    from postflow.utils import parse_timestamp

    settings = get_settings()
    validate_env(settings)

    if settings.store_backend == "supabase":
        from postflow.database import get_db

        store = await get_db()
    else:
        if args.command in JOB_COMMANDS:
            raise ConfigurationError(
                f"'{args.command}' needs store_backend: supabase; "
                "the in-memory store starts empty for every command"
            )
        logger.warning("Using the in-memory store: changes are lost when this command exits")
        store = InMemoryJobStore()

    system = SchedulingSystem(store, settings)

    if args.command == "enqueue":
        result = await system.place_new(
            args.content_ref,
            args.platform,
            parse_timestamp(args.time),
            content=args.content,
            media_files=args.media,
            max_attempts=args.max_attempts,
            override=args.override,
        )
        return report_placement(result)

    if args.command == "reschedule":
        job = await system.get_job(args.job_id)
        platform = args.platform or (job.platform if job else "")
        slot = Slot(platform=platform, time=parse_timestamp(args.time))
        result = await system.reschedule(args.job_id, slot, override=args.override)
        return report_placement(result, args.job_id)

    if args.command == "move":
        result = await system.move_to_day(args.job_id, date.fromisoformat(args.date), override=args.override)
        return report_placement(result, args.job_id)

    if args.command == "retry":
        at = parse_timestamp(args.at) if args.at else None
        job = (await system.retry(args.job_id, at=at)).raise_for_status(args.job_id)
        print(f"Job {job.id} re-armed for {job.scheduled_time.isoformat()}")
        return 0

    if args.command == "cancel":
        if await system.cancel(args.job_id):
            print(f"Job {args.job_id} cancelled")
        else:
            print(f"Job {args.job_id} not cancelled (missing or completed)")
        return 0

    snapshot = await system.get_queue_snapshot()
    for state, count in snapshot.counts().items():
        print(f"{state}: {count}")
        for job in getattr(snapshot, state):
            print_job(job)
    if snapshot.next_due_time:
        print(f"next due: {snapshot.next_due_time.isoformat()}")
    return 0


def main() -> int:
    from postflow.exceptions import ConfigurationError, EngineBaseError

    args = build_parser().parse_args()
    try:
        return asyncio.run(run_command(args))
    except (EngineBaseError, ConfigurationError, ValueError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
