"""CLI utility to reset jobs left in `running` by a crashed process."""

from __future__ import annotations

import argparse
import logging

from commandcenter.server.queue import JobQueue
from commandcenter.storage.sql_storage import SqlStore


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recover stuck command center jobs")
    parser.add_argument(
        "--connection-url",
        required=True,
        help="SQLAlchemy connection URL (e.g., sqlite:///commandcenter.db)",
    )
    parser.add_argument(
        "--max-age-seconds",
        type=int,
        default=3600,
        help="Reset jobs running for longer than this many seconds.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of jobs to recover.",
    )
    return parser


def main() -> None:
    args = build_arg_parser().parse_args()
    logging.basicConfig(level=logging.INFO)
    queue = JobQueue(SqlStore(connection_url=args.connection_url))
    recovered = queue.recover_stale_jobs(
        max_age_seconds=args.max_age_seconds,
        limit=args.limit,
    )
    if not recovered:
        print("No stuck jobs recovered.")
        return
    print(f"Reset {len(recovered)} stuck jobs to pending:")
    for job_id in recovered:
        print(f"- {job_id}")


if __name__ == "__main__":
    main()
