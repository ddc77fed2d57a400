import json
import threading
import time
from pathlib import Path

import anyio
import pytest

from tgdebug.api import TelegramBotApi
from tgdebug.cache import CacheStore
from tgdebug.config import Settings
from tgdebug.errors import AuthError, TelegramBotApiError, TransportError
from tgdebug.poller import Poller, compute_backoff_delay
from tgdebug.state import EngineState

_WEBHOOK_CONFLICT = (
    "Conflict: can't use getUpdates method while webhook is active; "
    "use deleteWebhook to delete the webhook first"
)


def _update(update_id: int, chat_id: int = 99, text: str = "hi") -> dict:
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "from": {"id": 42, "first_name": "Alice"},
            "chat": {"id": chat_id, "type": "private", "first_name": "Alice"},
            "date": 1_700_000_000,
            "text": text,
        },
    }


def _bad(update_id: int) -> dict:
    return {"update_id": update_id, "message": {"text": "no chat"}}


class FakeApi:
    """Scripted `get_updates`: lists are returned, exceptions raised, callables awaited."""

    def __init__(self, responses: list) -> None:
        self.responses = list(responses)
        self.calls: list[int | None] = []

    async def get_updates(self, *, offset: int | None, timeout_seconds: int, limit: int = 100):
        self.calls.append(offset)
        if not self.responses:
            await anyio.sleep_forever()
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return item


def _setup(tmp_path: Path, responses: list, **settings_kwargs) -> tuple[FakeApi, EngineState, Poller]:
    settings = Settings(
        cache_path=tmp_path / "cache.json",
        backoff_base_seconds=1.0,
        backoff_max_seconds=8.0,
        **settings_kwargs,
    )
    state = EngineState.load(CacheStore(settings.cache_path), settings=settings)
    api = FakeApi(responses)
    return api, state, Poller(api, state, settings)


def _persisted_offset(tmp_path: Path) -> int:
    return json.loads((tmp_path / "cache.json").read_text(encoding="utf-8"))["offset"]


def test_compute_backoff_delay() -> None:
    assert compute_backoff_delay(0, base=1.0, cap=30.0) == 0.0
    assert [compute_backoff_delay(n, base=1.0, cap=30.0) for n in range(1, 7)] == [
        1.0,
        2.0,
        4.0,
        8.0,
        16.0,
        30.0,
    ]
    assert compute_backoff_delay(10_000, base=1.0, cap=30.0) == 30.0


@pytest.mark.anyio
async def test_batch_commits_offset_after_max_update_id(tmp_path: Path) -> None:
    api, state, poller = _setup(tmp_path, [[_update(10), _update(12), _update(11)], []])

    result = await poller.tick()

    assert result.applied == 3
    assert result.offset == 13
    assert state.snapshot.offset == 13
    assert _persisted_offset(tmp_path) == 13
    assert len(state.snapshot.chats) == 1
    assert state.snapshot.chats[0].message_count == 3

    await poller.tick()
    assert api.calls == [None, 13]


@pytest.mark.anyio
async def test_malformed_record_among_valid_ones(tmp_path: Path) -> None:
    _, state, poller = _setup(tmp_path, [[_update(1), _bad(2), _update(3)]])

    result = await poller.tick()

    assert result.applied == 2
    assert result.decode_failures == 1
    assert state.offset == 4
    snapshot = state.snapshot
    assert snapshot.decode_failures == 1
    assert snapshot.analytics.total_events == 2
    assert [e.update_id for e in snapshot.raw_events] == [1, 2, 3]
    assert snapshot.raw_events[1].error is not None


@pytest.mark.anyio
async def test_trailing_failure_is_retried_then_skipped(tmp_path: Path) -> None:
    api, state, poller = _setup(tmp_path, [[_update(1), _bad(2)], [_bad(2)], []])

    await poller.tick()
    assert state.offset == 2

    result = await poller.tick()
    assert result.applied == 0
    assert result.decode_failures == 1
    assert state.offset == 3

    await poller.tick()
    assert api.calls == [None, 2, 3]


@pytest.mark.anyio
async def test_empty_batch_keeps_offset(tmp_path: Path) -> None:
    _, state, poller = _setup(tmp_path, [[]])
    state.offset = 7

    result = await poller.tick()

    assert result.offset == 7
    assert state.poller_status == "idle"


@pytest.mark.anyio
async def test_auth_error_is_fatal_and_stops_polling(tmp_path: Path) -> None:
    api, state, poller = _setup(
        tmp_path,
        [AuthError("Telegram getUpdates failed: Unauthorized", method="getUpdates", error_code=401)],
    )

    with anyio.fail_after(5):
        await poller.run()

    assert api.calls == [None]
    assert state.snapshot.poller_status == "fatal"
    assert "Unauthorized" in (state.snapshot.last_error or "")

    result = await poller.tick()
    assert result.fatal is True
    assert api.calls == [None]


@pytest.mark.anyio
async def test_transient_failures_back_off_and_degrade(tmp_path: Path) -> None:
    err = TransportError("Telegram getUpdates failed: network error", method="getUpdates")
    _, state, poller = _setup(tmp_path, [err, err, err, [_update(1)]])

    delays = []
    statuses = []
    for _ in range(3):
        result = await poller.tick()
        delays.append(result.delay)
        statuses.append(state.snapshot.poller_status)

    assert delays == [1.0, 2.0, 4.0]
    assert statuses == ["idle", "idle", "degraded"]
    assert state.snapshot.consecutive_failures == 3

    result = await poller.tick()
    assert result.delay == 0.0
    assert poller.consecutive_failures == 0
    assert state.snapshot.poller_status == "idle"
    assert state.snapshot.last_error is None


@pytest.mark.anyio
async def test_retry_after_is_a_lower_bound(tmp_path: Path) -> None:
    err = TelegramBotApiError(
        "Telegram getUpdates failed: Too Many Requests",
        method="getUpdates",
        error_code=429,
        retry_after=7,
    )
    _, _, poller = _setup(tmp_path, [err])

    result = await poller.tick()

    assert result.delay == 7.0


@pytest.mark.anyio
async def test_conflict_suspends_polling(tmp_path: Path) -> None:
    err = TelegramBotApiError(
        "Telegram getUpdates failed: Conflict",
        method="getUpdates",
        error_code=409,
        description=_WEBHOOK_CONFLICT,
    )
    api, state, poller = _setup(tmp_path, [err])

    result = await poller.tick()

    assert result.suspended is True
    assert state.authority.mode == "webhook"
    assert state.snapshot.poller_status == "suspended"

    result = await poller.tick()
    assert result.suspended is True
    assert api.calls == [None]


@pytest.mark.anyio
async def test_webhook_set_during_request_applies_result_then_suspends(tmp_path: Path) -> None:
    state_holder: list[EngineState] = []

    async def in_flight() -> list[dict]:
        state_holder[0].authority.enter_webhook("https://example.com/hook")
        return [_update(5)]

    api, state, poller = _setup(tmp_path, [in_flight, [_update(6)]])
    state_holder.append(state)

    first = await poller.tick()
    assert first.applied == 1
    assert state.offset == 6

    second = await poller.tick()
    assert second.suspended is True
    assert api.calls == [None]


@pytest.mark.anyio
async def test_run_resumes_when_polling_is_allowed_again(tmp_path: Path) -> None:
    err = TelegramBotApiError(
        "Telegram getUpdates failed: Conflict",
        method="getUpdates",
        error_code=409,
        description=_WEBHOOK_CONFLICT,
    )
    api, state, poller = _setup(tmp_path, [err, [_update(1)]])

    async with anyio.create_task_group() as tg:
        tg.start_soon(poller.run)
        with anyio.fail_after(5):
            while state.poller_status != "suspended":
                await anyio.sleep(0.01)
            assert api.calls == [None]

            state.authority.enter_polling()
            while state.offset < 2:
                await anyio.sleep(0.01)
        tg.cancel_scope.cancel()

    assert api.calls[:2] == [None, None]
    assert state.snapshot.poller_status == "stopped"


@pytest.mark.anyio
async def test_run_flushes_on_cancellation(tmp_path: Path) -> None:
    api, state, poller = _setup(
        tmp_path,
        [[_update(1)], [_update(2)]],
        flush_interval_seconds=3600.0,
    )

    async with anyio.create_task_group() as tg:
        tg.start_soon(poller.run)
        with anyio.fail_after(5):
            while len(api.calls) < 3:
                await anyio.sleep(0.01)
        # The second batch falls inside the debounce window.
        assert _persisted_offset(tmp_path) == 2
        assert state.offset == 3
        tg.cancel_scope.cancel()

    assert _persisted_offset(tmp_path) == 3
    assert state.poller_status == "stopped"


@pytest.mark.anyio
async def test_request_refresh_cuts_backoff_short(tmp_path: Path) -> None:
    err = TransportError("Telegram getUpdates failed: network error", method="getUpdates")
    api, state, poller = _setup(tmp_path, [err, [_update(1)]])

    async with anyio.create_task_group() as tg:
        tg.start_soon(poller.run)
        with anyio.fail_after(0.9):
            while poller.consecutive_failures == 0:
                await anyio.sleep(0.01)
            await anyio.sleep(0.05)
            poller.request_refresh()
            while state.offset < 2:
                await anyio.sleep(0.01)
        tg.cancel_scope.cancel()

    assert api.calls[:2] == [None, None]


@pytest.mark.anyio
async def test_conflict_with_another_poller_backs_off(tmp_path: Path) -> None:
    err = TelegramBotApiError(
        "Telegram getUpdates failed: Conflict: terminated by other getUpdates request",
        method="getUpdates",
        error_code=409,
        description=(
            "Conflict: terminated by other getUpdates request; "
            "make sure that only one bot instance is running"
        ),
    )
    api, state, poller = _setup(tmp_path, [err, [_update(1)]])

    result = await poller.tick()

    assert result.suspended is False
    assert result.delay == 1.0
    assert state.authority.mode == "unknown"
    assert state.snapshot.poller_status == "idle"

    result = await poller.tick()
    assert result.applied == 1
    assert api.calls == [None, None]


@pytest.mark.anyio
async def test_batch_without_progress_backs_off(tmp_path: Path) -> None:
    api, state, poller = _setup(tmp_path, [[["junk"]], [["junk"]], [["junk"]]])

    delays = []
    for _ in range(3):
        result = await poller.tick()
        delays.append(result.delay)

    assert delays == [1.0, 2.0, 4.0]
    assert result.decode_failures == 1
    assert state.offset == 0
    assert state.snapshot.poller_status == "degraded"
    assert "offset stuck" in (state.snapshot.last_error or "")
    assert api.calls == [None, None, None]


@pytest.mark.anyio
async def test_cancel_abandons_in_flight_long_poll(tmp_path: Path, monkeypatch) -> None:
    started = threading.Event()

    def slow_call_sync(self, method, params=None, *, timeout=10.0):
        started.set()
        time.sleep(2)
        return []

    monkeypatch.setattr(TelegramBotApi, "_call_sync", slow_call_sync)
    settings = Settings(cache_path=tmp_path / "cache.json")
    state = EngineState.load(CacheStore(settings.cache_path), settings=settings)
    poller = Poller(TelegramBotApi(token="t"), state, settings)

    began = time.monotonic()
    async with anyio.create_task_group() as tg:
        tg.start_soon(poller.run)
        with anyio.fail_after(1):
            while not started.is_set():
                await anyio.sleep(0.01)
        tg.cancel_scope.cancel()

    assert time.monotonic() - began < 1.5
    assert state.poller_status == "stopped"
