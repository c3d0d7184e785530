# src/pillar_engine/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then one of:
- run: the periodic notification scheduler until SIGINT/SIGTERM (default),
- sweep: a single sweep, printed as a summary,
- complete TASK_ID: complete a task through the completion hook (ops/debugging).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from ..config import get_settings
from ..core.state import AppState
from ..errors import EngineError
from ..logging_setup import setup_logging
from ..notifications.scheduler import run_notification_scheduler, run_sweep
from ..tasks.task_api import complete_task
from .bootstrap import create_initial_state

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pillar-engine", description="Pillar notification & recurrence engine")
    sub = p.add_subparsers(dest="command")

    sub.add_parser("run", help="run the periodic notification scheduler (default)")
    sub.add_parser("sweep", help="run one notification sweep and exit")

    pc = sub.add_parser("complete", help="complete a task and spawn its next occurrence")
    pc.add_argument("task_id", type=int)
    return p


def cmd_run(state: AppState) -> int:
    settings = state.settings

    async def _main() -> None:
        loop = asyncio.get_running_loop()
        runner = asyncio.create_task(
            run_notification_scheduler(
                state,
                interval_seconds=settings.sweep_interval_seconds,
                initial_delay_seconds=settings.sweep_initial_delay_seconds,
                batch_limit=settings.sweep_batch_limit,
                max_workers=settings.sweep_max_workers,
            )
        )

        def _handle_signal(signum: int) -> None:
            logger.info("Signal %s received, shutting down...", signum)
            runner.cancel()

        for sig in (signal.SIGINT, signal.SIGTERM):
            # Some platforms (Windows) do not support loop signal handlers.
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, _handle_signal, sig)

        logger.info(
            "Notification scheduler started (interval: %ss, first sweep in %ss)",
            settings.sweep_interval_seconds,
            settings.sweep_initial_delay_seconds,
        )
        with contextlib.suppress(asyncio.CancelledError):
            await runner

    asyncio.run(_main())
    return 0


def cmd_sweep(state: AppState) -> int:
    settings = state.settings
    result = asyncio.run(
        run_sweep(
            state.task_store,
            state.preference_store,
            state.notification_store,
            now=state.clock(),
            events=state.events,
            batch_limit=settings.sweep_batch_limit,
            max_workers=settings.sweep_max_workers,
        )
    )
    print(
        f"scanned={result.scanned} created={result.created} "
        f"duplicates={result.duplicates} failed={result.failed}"
    )
    return 1 if result.failed else 0


def cmd_complete(state: AppState, task_id: int) -> int:
    try:
        res = complete_task(state.task_store, task_id, now=state.clock(), events=state.events)
    except EngineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if res.already_completed:
        print(f"Task {task_id} was already completed.")
    else:
        print(f"Completed task {task_id}.")
    if res.successor is not None:
        due = res.successor.due_date.isoformat() if res.successor.due_date else ""
        print(f"Next occurrence: task {res.successor.id} due {due}")
    return 0


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    ns = _build_parser().parse_args(argv)

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (log file %s)...", settings.app_name, log_file)
    state = create_initial_state(settings=settings)

    command = ns.command or "run"
    if command == "sweep":
        return cmd_sweep(state)
    if command == "complete":
        return cmd_complete(state, ns.task_id)

    rc = cmd_run(state)
    logger.info("Bye.")
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
