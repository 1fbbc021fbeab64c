"""Run the background worker on its own: due jobs, ritual checks, snoozed tasks, cleanup."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from commandcenter.client import CommandCenter
from commandcenter.config import Settings


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the command center worker")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit (for an external cron).",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser


async def run(once: bool) -> None:
    center = CommandCenter.from_settings(Settings.from_env())
    center.scheduler.sync_rituals()
    worker = center.create_worker()
    if once:
        summary = await worker.run_once()
        await center.queue.drain()
        logging.getLogger("run_worker").info(f"Worker pass: {summary}")
        return

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)
    await worker.run()


if __name__ == "__main__":
    args = build_arg_parser().parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run(args.once))
