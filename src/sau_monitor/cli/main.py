# src/sau_monitor/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads the tracker state, then runs:
- the check loop as a background asyncio task,
- the console REPL in the foreground (optional).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..tasks.check_loop import run_check_loop

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        outcomes = await state.service.reconciler.flush()
        if outcomes and not outcomes[-1].ok:
            logger.error("Final flush did not persist tracker state: %s", outcomes[-1].error)
    except Exception:
        logger.exception("Final flush failed.")

    close = getattr(state.notifier, "close", None)
    if close is not None:
        try:
            await close()
        except Exception:
            logger.debug("Notifier close failed.", exc_info=True)


async def run(state: AppState) -> None:
    settings = state.settings
    await state.service.start()

    check_task = asyncio.create_task(
        run_check_loop(state.service, state.source, interval_seconds=settings.check_interval_seconds),
        name="sau-check-loop",
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            # Not supported on every platform.
            loop.add_signal_handler(sig, stop.set)

    try:
        if settings.console_enabled:
            console_task = asyncio.create_task(run_console_loop(state), name="sau-console")
            stop_task = asyncio.create_task(stop.wait())
            await asyncio.wait({console_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            stop_task.cancel()
            if not console_task.done():
                # The REPL thread stays blocked in input(); the process exits anyway.
                console_task.cancel()
        else:
            logger.info("Console disabled. Running the check loop only. Press Ctrl+C to stop.")
            await stop.wait()
    finally:
        check_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await check_task
        await _shutdown(state)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_buffer = setup_logging(
        log_dir=getattr(settings, "data_dir", ".local/sau"),
        console_level=console_level,
        buffer_size=getattr(settings, "log_buffer_size", 1000),
    )
    logging.getLogger("nio").setLevel(max(console_level, logging.INFO))

    logger.info("Starting %s...", getattr(settings, "app_name", "sau-monitor"))

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings, log_buffer=log_buffer)

    try:
        asyncio.run(run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    logger.info("Bye.")


if __name__ == "__main__":
    main()
