# src/cadence/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the materialization loop in a background thread (optional),
- the operator console REPL in the main thread (optional).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import threading

from ..config import get_settings
from ..logging_setup import setup_logging
from ..series.scheduler import MaterializationScheduler, run_materialization_loop
from .bootstrap import create_initial_state
from .console import run_console_loop

logger = logging.getLogger(__name__)


class SchedulerBackgroundRunner:
    """Runs run_materialization_loop on a private event loop in a daemon thread."""

    def __init__(self, scheduler: MaterializationScheduler, *, interval_seconds: float) -> None:
        self._scheduler = scheduler
        self._interval = interval_seconds
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run, name="cadence-scheduler", daemon=True)

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._task = loop.create_task(run_materialization_loop(self._scheduler, interval_seconds=self._interval))
        self._ready.set()
        try:
            loop.run_until_complete(self._task)
        except asyncio.CancelledError:
            logger.debug("Materialization loop cancelled.")
        finally:
            loop.close()

    def start(self) -> None:
        self._thread.start()
        self._ready.wait(timeout=5.0)
        logger.info("Scheduler started (interval=%.1fs).", self._interval)

    def stop(self) -> None:
        if self._loop is not None and self._task is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._task.cancel)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout=timeout)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cadence", description="Recurring task engine.")
    parser.add_argument("--once", action="store_true", help="run a single scheduler tick and exit")
    parser.add_argument("--no-console", action="store_true", help="run the scheduler without the REPL")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(argv)
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/cadence")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "cadence"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    if args.once:
        report = state.scheduler.tick()
        print(report.summary())
        return

    runner: SchedulerBackgroundRunner | None = None
    if settings.scheduler_enabled:
        runner = SchedulerBackgroundRunner(state.scheduler, interval_seconds=settings.scheduler_interval_seconds)
        runner.start()

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    if args.no_console:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        if not args.no_console:
            run_console_loop(state)
        elif runner is None:
            logger.info("Console and scheduler both disabled; nothing to do.")
        else:
            logger.info("Console disabled. Running the scheduler only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        if runner is not None:
            runner.stop()
            runner.join(timeout=10.0)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
