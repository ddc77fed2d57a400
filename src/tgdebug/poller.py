"""Long-poll loop over `getUpdates`.

State machine: `idle -> polling -> idle` on success, `-> idle | degraded` on a
retryable failure, `-> fatal` when the token is rejected, and `suspended`
whenever the delivery-mode authority reports an active webhook.

Offset rules:
- While a batch is applied, a pending cursor advances to
  `max(pending, update_id + 1)` for every successfully decoded event, in
  arrival order. The cursor is committed only after the batch is consumed.
- Undecodable records do not advance the cursor, unless a batch contains
  nothing but undecodable records with known ids. Those are skipped (they are
  already in the raw log) so one poison update cannot stall the loop forever.
- If applying an event raises, the events applied before it are committed and
  the rest of the batch is fetched again on the next tick.
- A non-empty batch that moves nothing forward counts as a failure and backs
  off.

Suspension only affects the *next* request: a request already in flight when
the webhook is set completes and its result is applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import anyio

from .api import TelegramBotApi
from .config import Settings
from .decoder import decode_batch
from .errors import AuthError, DecodeError, TelegramBotApiError
from .state import EngineState

logger = logging.getLogger(__name__)

_CONFLICT_ERROR_CODE = 409
# 2**62 already exceeds any sane ceiling; keeps the float math finite.
_MAX_BACKOFF_EXPONENT = 62


def compute_backoff_delay(failures: int, *, base: float, cap: float) -> float:
    """Delay before the next attempt after `failures` consecutive failures.

    `0` failures means no delay. Otherwise the delay doubles from `base` and
    is capped at `cap`.
    """

    if failures <= 0:
        return 0.0
    exponent = min(failures - 1, _MAX_BACKOFF_EXPONENT)
    return min(cap, base * (2**exponent))


def _is_webhook_conflict(e: TelegramBotApiError) -> bool:
    """A 409 caused by an active webhook.

    Telegram also answers 409 ("terminated by other getUpdates request") when
    another poller uses the same token; that one is retried with backoff.
    """

    if e.error_code != _CONFLICT_ERROR_CODE:
        return False
    return "webhook" in (e.description or str(e)).lower()


@dataclass(slots=True, frozen=True)
class TickResult:
    applied: int = 0
    decode_failures: int = 0
    offset: int = 0
    delay: float = 0.0
    error: str | None = None
    suspended: bool = False
    fatal: bool = False


class Poller:
    """Drives `getUpdates` and feeds decoded events into `EngineState`."""

    def __init__(
        self,
        api: TelegramBotApi,
        state: EngineState,
        settings: Settings,
    ) -> None:
        self.api = api
        self.state = state
        self.settings = settings
        self._failures = 0
        self._refresh: anyio.Event | None = None

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def request_refresh(self) -> None:
        """Cut the current backoff/idle wait short and poll again."""

        if self._refresh is not None:
            self._refresh.set()
            self._refresh = None

    async def tick(self) -> TickResult:
        state = self.state
        if state.poller_status == "fatal":
            return TickResult(offset=state.offset, fatal=True, error=state.last_error)
        if not state.authority.polling_allowed:
            if state.poller_status != "suspended":
                state.set_status("suspended")
            return TickResult(offset=state.offset, suspended=True)

        state.set_status("polling", consecutive_failures=self._failures)
        try:
            records = await self.api.get_updates(
                offset=state.offset or None,
                timeout_seconds=self.settings.poll_timeout_seconds,
                limit=self.settings.poll_limit,
            )
        except AuthError as e:
            logger.error("token rejected, polling stopped: %s", e)
            state.set_status("fatal", error=str(e))
            return TickResult(offset=state.offset, fatal=True, error=str(e))
        except TelegramBotApiError as e:
            if _is_webhook_conflict(e):
                logger.warning("getUpdates conflicts with an active webhook: %s", e)
                state.authority.enter_webhook(state.authority.webhook_url)
                state.set_status("suspended", error=str(e))
                return TickResult(offset=state.offset, suspended=True, error=str(e))
            return self._backoff(str(e), retry_after=e.retry_after)

        return self._apply_batch(records)

    def _backoff(
        self,
        error: str,
        *,
        retry_after: int | None = None,
        applied: int = 0,
        decode_failures: int = 0,
    ) -> TickResult:
        self._failures += 1
        delay = compute_backoff_delay(
            self._failures,
            base=self.settings.backoff_base_seconds,
            cap=self.settings.backoff_max_seconds,
        )
        if retry_after is not None:
            delay = max(delay, float(retry_after))
        degraded = self._failures >= self.settings.degraded_after_failures
        logger.warning(
            "getUpdates failed (%d in a row), retrying in %.1fs: %s",
            self._failures,
            delay,
            error,
        )
        self.state.set_status(
            "degraded" if degraded else "idle",
            error=error,
            consecutive_failures=self._failures,
        )
        return TickResult(
            applied=applied,
            decode_failures=decode_failures,
            offset=self.state.offset,
            delay=delay,
            error=error,
        )

    def _apply_batch(self, records: list[object]) -> TickResult:
        state = self.state
        start = state.offset
        pending = start
        applied = 0
        failed_ids: list[int] = []
        failed = 0
        error: str | None = None

        for result in decode_batch(records):
            if isinstance(result, DecodeError):
                state.record_failure(result)
                failed += 1
                if result.update_id is not None:
                    failed_ids.append(result.update_id)
                continue
            try:
                state.apply(result)
            except Exception as e:  # pragma: no cover
                logger.exception("applying update_id=%d failed", result.update_id)
                error = f"apply failed at update_id={result.update_id}: {e}"
                break
            pending = max(pending, result.update_id + 1)
            applied += 1

        if error is None and applied == 0 and failed_ids:
            skip_to = max(failed_ids) + 1
            if skip_to > pending:
                logger.warning(
                    "skipping %d undecodable update(s), offset %d -> %d",
                    len(failed_ids),
                    pending,
                    skip_to,
                )
                pending = skip_to

        state.commit(pending)
        if records:
            logger.info(
                "batch committed updates=%d applied=%d failed=%d offset=%d",
                len(records),
                applied,
                failed,
                state.offset,
            )

        if error is None and records and applied == 0 and state.offset == start:
            error = f"{failed} undecodable update(s) without update_id, offset stuck at {start}"
        if error is not None:
            return self._backoff(error, applied=applied, decode_failures=failed)

        self._failures = 0
        state.set_status("idle", consecutive_failures=0)
        return TickResult(applied=applied, decode_failures=failed, offset=state.offset)

    async def _wait(self, delay: float) -> None:
        if self._refresh is None:
            self._refresh = anyio.Event()
        with anyio.move_on_after(delay):
            await self._refresh.wait()

    async def run(self) -> None:
        """Poll until the token is rejected or the task is cancelled.

        A final forced flush runs on every exit path.
        """

        try:
            while True:
                result = await self.tick()
                if result.fatal:
                    return
                if result.suspended:
                    authority = self.state.authority
                    while not authority.polling_allowed:
                        await authority.wait_for_change()
                    continue
                if result.delay > 0:
                    await self._wait(result.delay)
        finally:
            if self.state.poller_status != "fatal":
                self.state.set_status("stopped", consecutive_failures=self._failures)
            self.state.flush(force=True)
