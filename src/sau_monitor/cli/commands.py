# src/sau_monitor/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from ..core.state import AppState
from ..storage.sizing import format_bytes
from ..tasks.check_loop import run_check_once

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /pending, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return await handler(state, args, emit)
        except ValueError as e:
            return f"Invalid arguments for /{name}: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ms(ts: int) -> str:
    if not ts:
        return "never"
    return datetime.fromtimestamp(ts / 1000).astimezone().strftime("%Y-%m-%d %H:%M:%S")


async def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    service = state.service
    st = service.reconciler.state
    policy = service.reconciler.renotification
    renotify = f"every {policy.interval_minutes:g} min" if policy.enabled else "OFF"
    return (
        "Status:\n"
        f"  Known tasks: {len(st.known_tasks)}\n"
        f"  Pending: {service.pending_count()}\n"
        f"  Ignored / snoozed / opened: {len(st.ignored)} / {len(st.snoozed)} / {len(st.opened)}\n"
        f"  Renotification: {renotify}\n"
        f"  Last check: {_fmt_ms(service.last_check_timestamp)}"
    )


async def cmd_pending(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    tasks = state.service.latest_tasks()
    if not tasks:
        return "No pending tasks."
    lines = [f"Pending tasks ({len(tasks)}):"]
    for t in tasks:
        lines.append(f"  {t.id}: {t.titulo} [{t.unidade}]")
    return "\n".join(lines)


async def cmd_check(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("Checking tasks...")
    result = await run_check_once(state.service, state.source)
    if result is None:
        return "Check failed; see /logs."
    return (
        f"Check done: {len(result.new_ids)} new, {len(result.renotified_ids)} renotified, "
        f"{result.pending_count} pending."
    )


def _known_task_id(state: AppState, words: list[str]) -> str | None:
    # Task ids embed the send date ("123-01/02/2024 09:15"), so they span several words.
    task_id = " ".join(words)
    if state.service.reconciler.get_task(task_id) is None:
        return None
    return task_id


async def cmd_ignore(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /ignore TASK_ID"
    task_id = _known_task_id(state, args)
    if task_id is None:
        return f"Unknown task: {' '.join(args)}"
    pending = await state.service.ignore(task_id)
    return f"Ignored {task_id}. Pending: {pending}."


async def cmd_ignore_all(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    ids = await state.service.ignore_all()
    return f"Ignored {len(ids)} task(s)."


async def cmd_snooze(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /snooze ID        -> snooze for the default period
    /snooze ID 30     -> snooze for 30 minutes
    """
    if not args:
        return "Usage: /snooze TASK_ID [MINUTES]"
    words = args
    minutes: float | None = None
    if len(args) > 1:
        try:
            minutes = float(args[-1])
            words = args[:-1]
        except ValueError:
            minutes = None
    task_id = _known_task_id(state, words)
    if task_id is None:
        return f"Unknown task: {' '.join(words)}"
    pending = await state.service.snooze(task_id, minutes)
    shown = minutes if minutes is not None else state.service.default_snooze_minutes
    return f"Snoozed {task_id} for {shown:g} min. Pending: {pending}."


async def cmd_open(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /open TASK_ID"
    task_id = " ".join(args)
    if await state.service.open_task(task_id):
        return f"Opened {task_id}."
    return f"Could not open {task_id}."


async def cmd_open_all(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    opened = await state.service.open_all_pending()
    return f"Opened {len(opened)} task(s)."


async def cmd_reset(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args or args[0].lower() != "confirm":
        return "This clears every known task and suppression. Run /reset confirm to proceed."
    await state.service.reset_all()
    return "Tracker state reset."


async def cmd_stats(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    stats = await state.service.storage_stats()
    lines = ["Storage:"]
    for tier, entry in stats.items():
        if not entry["available"]:
            lines.append(f"  {tier}: unavailable")
            continue
        limits = entry["limits"]
        lines.append(
            f"  {tier}: {format_bytes(entry['bytesInUse'])} / {format_bytes(limits['totalBytes'])} "
            f"({entry['percentUsed']['bytes']:.1f}%), {entry['itemCount']} item(s)"
        )
    return "\n".join(lines)


async def cmd_logs(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /logs       -> last 20 entries
    /logs 100   -> last 100 entries
    """
    buf = state.log_buffer
    if buf is None:
        return "Log buffer is not enabled."
    limit = 20
    if args:
        try:
            limit = max(1, int(args[0]))
        except ValueError:
            return f"Not a number: {args[0]}"
    entries = buf.get_stored_logs(limit)
    if not entries:
        return "No log entries."
    return "\n".join(f"{e['timestamp']} {e['level']} {e['logger']}: {e['message']}" for e in entries)


registry.register("help", cmd_help, "Show this help.")
registry.register("status", cmd_status, "Show tracker status.")
registry.register("pending", cmd_pending, "List pending tasks.", aliases=["tasks"])
registry.register("check", cmd_check, "Run a task check now.")
registry.register("ignore", cmd_ignore, "Ignore a task: /ignore ID")
registry.register("ignoreall", cmd_ignore_all, "Ignore every pending task.")
registry.register("snooze", cmd_snooze, "Snooze a task: /snooze ID [MINUTES]")
registry.register("open", cmd_open, "Open a task in the browser: /open ID")
registry.register("openall", cmd_open_all, "Open every pending task.")
registry.register("reset", cmd_reset, "Clear all tracker state: /reset confirm")
registry.register("stats", cmd_stats, "Show storage usage per tier.")
registry.register("logs", cmd_logs, "Show recent log entries: /logs [N]")
