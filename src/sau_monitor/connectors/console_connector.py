# src/sau_monitor/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
import webbrowser
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleNotifier:
    """SystemNotifier that prints notifications to the terminal."""

    async def notify(self, *, title: str, message: str, task_ids: Sequence[str] = ()) -> None:
        _print_ts(f"[NOTIFY] {title}")
        if message:
            _print_ts(f"         {message}")
        if task_ids:
            _print_ts(f"         ids: {', '.join(task_ids)}  (/openall, /ignoreall)")


class ConsoleBadge:
    """BadgeRenderer that keeps the text and writes it to the terminal title when possible."""

    def __init__(self) -> None:
        self.text = ""

    async def set_badge(self, text: str) -> None:
        self.text = text
        try:
            if sys.stdout.isatty():
                label = f"SAU ({text})" if text else "SAU"
                sys.stdout.write(f"\033]0;{label}\007")
                sys.stdout.flush()
        except Exception:
            logger.debug("Terminal title update failed.", exc_info=True)


class ConsoleTaskListener:
    """TaskListener that lists the handed-off tasks."""

    async def on_tasks(self, tasks: Sequence[Any], message: str = "") -> None:
        if message:
            _print_ts(message)
        for t in tasks:
            _print_ts(f"  - {t.id}: {t.titulo} [{t.unidade}] {t.link}")


class LoggingTabOpener:
    """TabOpener that opens links in the default browser."""

    def __init__(self, *, open_browser: bool = True) -> None:
        self.open_browser = open_browser

    async def open_url(self, url: str) -> None:
        logger.info("Opening %s", url)
        if not self.open_browser:
            return
        ok = await asyncio.to_thread(webbrowser.open_new_tab, url)
        if not ok:
            raise RuntimeError(f"no browser could open {url}")


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Type /help for commands. Use /exit to quit.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, ">>> ")).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            response = await command_registry.handle(state, user_input, emit=_print_ts)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Not a command. Use /help to list available commands."
        _print_ts(response)

    logger.info("Console connector finished.")
