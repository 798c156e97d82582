# tests/test_service.py

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from sau_monitor.tasks.check_loop import run_check_loop, run_check_once
from sau_monitor.tasks.service import LOGIN_REQUIRED_TITLE
from sau_monitor.tasks.sources import JsonFileTaskSource, LoginRequiredError
from sau_monitor.tasks.task_models import make_task_id

from .fakes import FakeTaskSource, task_record


def _tid(numero: str) -> str:
    return make_task_id(numero, "01/02/2024 09:15")


@pytest.mark.asyncio
async def test_handle_scrape_notifies_and_updates_badge(service, notifier, badge, listener) -> None:
    result = await service.handle_scrape([task_record("1"), task_record("2")])

    assert result.pending_count == 2
    assert notifier.sent[0].task_ids == [_tid("1"), _tid("2")]
    assert notifier.sent[0].title == "Monitor SAU: 2 Nova(s) Tarefa(s)!"
    assert badge.texts[-1] == "2"
    assert [t.id for t in listener.calls[-1][0]] == [_tid("1"), _tid("2")]


@pytest.mark.asyncio
async def test_user_actions_refresh_badge(service, badge) -> None:
    await service.handle_scrape([task_record("1"), task_record("2"), task_record("3")])

    assert await service.ignore(_tid("1")) == 2
    assert await service.snooze(_tid("2")) == 1
    assert await service.mark_opened(_tid("3")) == 0

    assert badge.texts[-3:] == ["2", "1", ""]
    snoozed_until = service.reconciler.state.snoozed[_tid("2")]
    assert snoozed_until - service.reconciler._clock() == 15 * 60_000


@pytest.mark.asyncio
async def test_open_all_pending_opens_links_and_marks_opened(service, tab_opener) -> None:
    await service.handle_scrape([task_record("1"), task_record("2"), task_record("3")])
    await service.ignore(_tid("3"))
    tab_opener.broken.add("https://sau.example/tarefa/2")

    opened = await service.open_all_pending()

    assert opened == [_tid("1")]
    assert tab_opener.opened == ["https://sau.example/tarefa/1"]
    # 1 success + 3 attempts on the broken link.
    assert tab_opener.attempts == 4
    assert service.reconciler.state.opened == {_tid("1"): True}
    assert [t.id for t in service.latest_tasks()] == [_tid("2")]


@pytest.mark.asyncio
async def test_open_task_without_link_or_unknown(service, tab_opener) -> None:
    await service.handle_scrape([task_record("1", link="")])

    assert await service.open_task(_tid("1")) is False
    assert await service.open_task("missing") is False
    assert tab_opener.attempts == 0


@pytest.mark.asyncio
async def test_ignore_all_clears_ui_list(service, listener) -> None:
    await service.handle_scrape([task_record("1"), task_record("2")])

    ids = await service.ignore_all()

    assert ids == [_tid("1"), _tid("2")]
    assert listener.calls[-1] == ([], "")
    assert service.pending_count() == 0


@pytest.mark.asyncio
async def test_check_once_reconciles_fetched_batch(service, notifier) -> None:
    source = FakeTaskSource([[task_record("1")]])

    result = await run_check_once(service, source)

    assert result is not None
    assert result.new_ids == [_tid("1")]
    assert service.last_check_timestamp > 0


@pytest.mark.asyncio
async def test_check_once_raises_fallback_notification_on_logout(service, notifier) -> None:
    source = FakeTaskSource(error=LoginRequiredError("session expired"))

    result = await run_check_once(service, source)

    assert result is None
    assert notifier.sent[0].title == LOGIN_REQUIRED_TITLE
    assert notifier.sent[0].message == "session expired"


@pytest.mark.asyncio
async def test_check_once_survives_source_errors(service) -> None:
    source = FakeTaskSource(error=OSError("network down"))

    assert await run_check_once(service, source) is None
    assert service.pending_count() == 0


@pytest.mark.asyncio
async def test_check_loop_runs_until_cancelled(service) -> None:
    source = FakeTaskSource([[task_record("1")]])

    runner = asyncio.create_task(run_check_loop(service, source, interval_seconds=0.01))
    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert source.calls >= 1
    assert _tid("1") in service.reconciler.state.known_tasks


@pytest.mark.asyncio
async def test_start_loads_state_and_sets_badge(service, gateway, badge) -> None:
    await service.handle_scrape([task_record("1")])
    service.reconciler.state.known_tasks.clear()

    assert await service.start() == 1
    assert badge.texts[-1] == "1"


@pytest.mark.asyncio
async def test_json_file_source_shapes(tmp_path: Path) -> None:
    path = tmp_path / "scraped.json"
    source = JsonFileTaskSource(path)

    assert await source.fetch_tasks() == []

    path.write_text(json.dumps([task_record("1"), "junk"]), "utf-8")
    assert [t["numero"] for t in await source.fetch_tasks()] == ["1"]

    path.write_text(json.dumps({"tasks": [task_record("2")]}), "utf-8")
    assert [t["numero"] for t in await source.fetch_tasks()] == ["2"]

    path.write_text(json.dumps({"loggedIn": False, "message": "login page"}), "utf-8")
    with pytest.raises(LoginRequiredError, match="login page"):
        await source.fetch_tasks()

    path.write_text(json.dumps("nope"), "utf-8")
    assert await source.fetch_tasks() == []
