"""Incremental usage statistics over the event stream.

Design notes / invariants:
- `update(event)` touches exactly one per-kind counter, at most one per-chat
  counter (only when the event has an `origin_chat`) and at most one hourly
  bucket.
- Events without a `timestamp` are excluded from the hourly histogram and
  counted in `untimed_events` instead; they are never attributed to hour 0.
- The histogram is maintained incrementally because the raw log is bounded
  and cannot rebuild it.
- `snapshot()` is O(number of chats), independent of event history.
- `per_chat` (and the ranking built from it) are lifetime counts: `seed()`
  starts them from the persisted registry. `total_events`, `per_kind`,
  `hourly` and `untimed_events` cover the current process only, so after a
  restart `sum(per_chat)` may exceed `total_events`.
"""

from __future__ import annotations

import datetime
from collections import Counter
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

from .models import Chat, Event
from .tz import hour_of_day

HOURS_PER_DAY = 24


class ChatCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    chat_id: int
    display_name: str
    count: int


class AnalyticsSnapshot(BaseModel):
    """Immutable view of the aggregated counters."""

    model_config = ConfigDict(frozen=True)

    total_events: int = 0
    per_chat: dict[int, int] = {}
    per_kind: dict[str, int] = {}
    hourly: tuple[int, ...] = (0,) * HOURS_PER_DAY
    untimed_events: int = 0
    chat_kinds: dict[str, int] = {}
    total_chats: int = 0
    total_topics: int = 0
    ranking: tuple[ChatCount, ...] = ()

    def top_chats(self, limit: int) -> tuple[ChatCount, ...]:
        """Return the `limit` busiest chats (fewer if not that many exist)."""

        return self.ranking[: max(limit, 0)]


class AnalyticsAggregator:
    def __init__(self, *, tz: datetime.tzinfo = datetime.UTC) -> None:
        self._tz = tz
        self._total = 0
        self._untimed = 0
        self._per_chat: Counter[int] = Counter()
        self._per_kind: Counter[str] = Counter()
        self._hourly = [0] * HOURS_PER_DAY

    def seed(self, chats: Iterable[Chat]) -> None:
        """Start per-chat counts from persisted registry counts.

        Session counters (`total_events`, `per_kind`, `hourly`) are left alone;
        the registry does not persist them.
        """

        for chat in chats:
            self._per_chat[chat.id] = chat.message_count

    def update(self, event: Event) -> None:
        self._total += 1
        self._per_kind[event.kind] += 1
        if event.origin_chat is not None:
            self._per_chat[event.origin_chat.id] += 1
        if event.timestamp is None:
            self._untimed += 1
        else:
            self._hourly[hour_of_day(event.timestamp, tz=self._tz)] += 1

    def snapshot(self, chats: Iterable[Chat] = ()) -> AnalyticsSnapshot:
        """Copy the counters, enriched with per-chat metadata from `chats`."""

        chat_list = list(chats)
        names = {chat.id: chat.display_name for chat in chat_list}
        ranking = sorted(
            (
                ChatCount(
                    chat_id=chat_id,
                    display_name=names.get(chat_id, f"Chat {chat_id}"),
                    count=count,
                )
                for chat_id, count in self._per_chat.items()
            ),
            key=lambda c: (-c.count, c.chat_id),
        )
        return AnalyticsSnapshot(
            total_events=self._total,
            per_chat=dict(self._per_chat),
            per_kind=dict(self._per_kind),
            hourly=tuple(self._hourly),
            untimed_events=self._untimed,
            chat_kinds=dict(Counter(chat.kind for chat in chat_list)),
            total_chats=len(chat_list),
            total_topics=sum(len(chat.topics) for chat in chat_list),
            ranking=tuple(ranking),
        )
