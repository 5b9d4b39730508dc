#!/usr/bin/env python3
"""Diagnostic script to inspect the import job table (read-only)."""

import argparse

from app.core.config import get_settings
from app.db.session import get_session_factory
from app.workers.import_queue import ImportJobQueue


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("job_id", nargs="?", help="Show logs and errors for this job")
    parser.add_argument("--status", help="Only list jobs with this status")
    parser.add_argument("--limit", type=int, default=20)
    args = parser.parse_args()

    settings = get_settings()
    queue = ImportJobQueue.from_settings(get_session_factory(), settings, publish=False)

    print("=" * 60)
    print("Import Queue Diagnostic")
    print("=" * 60)
    print(f"   Poll interval: {settings.import_poll_interval_ms}ms")
    print(f"   Concurrency:   {settings.import_concurrent_jobs}")
    print(f"   Max retries:   {settings.import_max_retries}")

    if args.job_id:
        job = queue.get_job_status(args.job_id)
        if job is None:
            print(f"\nJob {args.job_id} not found")
            raise SystemExit(1)
        print(f"\nJob {job.id}: {job.type} from {job.source_id}")
        print(f"   status={job.status} attempt={job.attempt} errors={job.error_count}")
        print(f"   progress={job.processed_items}/{job.total_items} checkpoint={job.last_checkpoint}")
        print(f"   started={job.started_at} finished={job.finished_at}")

        print("\nLogs:")
        for entry in queue.get_job_logs(job.id):
            print(f"   {entry.created_at} [{entry.level}] {entry.message}")

        print("\nErrors:")
        errors = queue.get_job_errors(job.id)
        if not errors:
            print("   none")
        for error in errors:
            where = f" item={error.external_id}" if error.external_id else ""
            print(f"   {error.created_at} [{error.stage}] {error.error_code or '-'}{where}: {error.error_message}")
    else:
        print("\nJobs by status:")
        for status, count in queue.count_by_status().items():
            print(f"   {status}: {count}")

        print(f"\nLatest jobs{f' ({args.status})' if args.status else ''}:")
        for job in queue.list_jobs(status=args.status, limit=args.limit):
            print(
                f"   {job.id} | {job.status:<8} | {job.type:<5} | "
                f"{job.processed_items}/{job.total_items} | errors={job.error_count}"
            )

    queue.close()
    print("\n" + "=" * 60)


if __name__ == "__main__":
    main()
