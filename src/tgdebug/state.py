"""Single owned engine state shared by ingestion (writer) and presentation (reader).

Design notes / invariants:
- Only the ingestion path mutates `EngineState`. Readers use `snapshot`, which
  is replaced wholesale at commit/status boundaries and is never observed
  half-way through a batch.
- `offset` never decreases.
- A failed flush keeps the in-memory state and marks the document dirty; the
  next flush trigger retries.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Literal

from pydantic import BaseModel, ConfigDict

from .analytics import AnalyticsAggregator, AnalyticsSnapshot
from .cache import CacheStore
from .config import Settings
from .errors import DecodeError, PersistenceError
from .mode import DeliveryMode, DeliveryModeAuthority
from .models import CacheDocument, Chat, Event
from .raw_log import RawEventLog, RawLogEntry
from .registry import ChatRegistry
from .tz import parse_timezone

logger = logging.getLogger(__name__)

PollerStatus = Literal["idle", "polling", "suspended", "degraded", "fatal", "stopped"]


class StateSnapshot(BaseModel):
    """Read-only view handed to the presentation side."""

    model_config = ConfigDict(frozen=True)

    offset: int
    chats: tuple[Chat, ...]
    analytics: AnalyticsSnapshot
    raw_events: tuple[RawLogEntry, ...]
    poller_status: PollerStatus
    delivery_mode: DeliveryMode
    webhook_url: str | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    decode_failures: int = 0
    persistence_error: str | None = None

    def entries_for_chat(self, chat_id: int) -> tuple[RawLogEntry, ...]:
        """Raw log entries that originated in `chat_id`, oldest first."""

        return tuple(entry for entry in self.raw_events if entry.chat_id == chat_id)


class EngineState:
    def __init__(
        self,
        *,
        store: CacheStore,
        document: CacheDocument | None = None,
        authority: DeliveryModeAuthority | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if settings is None:
            settings = Settings(cache_path=store.path)
        if document is None:
            document = CacheDocument()

        self.store = store
        self.authority = authority or DeliveryModeAuthority()
        self.token = document.token
        self.offset = document.offset
        self.registry = ChatRegistry(document.chats.values())
        self.analytics = AnalyticsAggregator(tz=parse_timezone(settings.timezone))
        self.analytics.seed(document.chats.values())
        self.raw_log = RawEventLog(settings.raw_log_capacity)

        self.poller_status: PollerStatus = "idle"
        self.last_error: str | None = None
        self.consecutive_failures = 0
        self.decode_failures = 0
        self.persistence_error: str | None = None

        self._flush_interval = settings.flush_interval_seconds
        self._clock = clock
        self._dirty = False
        self._last_flush_at: float | None = None
        self._snapshot = self._build_snapshot()

    @classmethod
    def load(
        cls,
        store: CacheStore,
        *,
        authority: DeliveryModeAuthority | None = None,
        settings: Settings | None = None,
    ) -> EngineState:
        """Build state from the persisted document (empty if absent or damaged)."""

        return cls(
            store=store,
            document=store.load(),
            authority=authority,
            settings=settings,
        )

    @property
    def snapshot(self) -> StateSnapshot:
        return self._snapshot

    def apply(self, event: Event) -> None:
        """Dispatch one decoded event to registry, analytics and the raw log."""

        self.registry.observe(event)
        self.analytics.update(event)
        self.raw_log.append_event(event)
        self._dirty = True

    def record_failure(self, failure: DecodeError) -> None:
        logger.warning(
            "decode failure index=%d update_id=%s: %s",
            failure.index,
            failure.update_id,
            failure.reason,
        )
        self.decode_failures += 1
        self.raw_log.append_failure(failure)

    def commit(self, offset: int) -> None:
        """Make a fully applied batch visible and schedule persistence."""

        if offset > self.offset:
            self.offset = offset
            self._dirty = True
        self.flush()
        self.publish()

    def set_token(self, token: str) -> None:
        if token != self.token:
            self.token = token
            self._dirty = True

    def set_status(
        self,
        status: PollerStatus,
        *,
        error: str | None = None,
        consecutive_failures: int | None = None,
    ) -> None:
        self.poller_status = status
        self.last_error = error
        if consecutive_failures is not None:
            self.consecutive_failures = consecutive_failures
        self.publish()

    def publish(self) -> None:
        self._snapshot = self._build_snapshot()

    def _build_snapshot(self) -> StateSnapshot:
        chats = self.registry.chats()
        return StateSnapshot(
            offset=self.offset,
            chats=tuple(chats),
            analytics=self.analytics.snapshot(chats),
            raw_events=self.raw_log.entries(),
            poller_status=self.poller_status,
            delivery_mode=self.authority.mode,
            webhook_url=self.authority.webhook_url,
            last_error=self.last_error,
            consecutive_failures=self.consecutive_failures,
            decode_failures=self.decode_failures,
            persistence_error=self.persistence_error,
        )

    def to_document(self) -> CacheDocument:
        return CacheDocument(
            token=self.token,
            offset=self.offset,
            chats=self.registry.to_mapping(),
        )

    def flush(self, *, force: bool = False) -> bool:
        """Write the document if dirty and outside the debounce window.

        Returns `True` when the document on disk is up to date afterwards.
        Persistence failures are logged and retried on the next flush.
        """

        if not self._dirty and not force:
            return True
        now = self._clock()
        if (
            not force
            and self._last_flush_at is not None
            and now - self._last_flush_at < self._flush_interval
        ):
            return False

        try:
            self.store.save(self.to_document())
        except PersistenceError as e:
            logger.warning("cache flush failed, keeping in-memory state: %s", e)
            self.persistence_error = str(e)
            self._dirty = True
            return False

        self._dirty = False
        self._last_flush_at = now
        self.persistence_error = None
        return True
