"""Bounded log of recently received raw updates.

Each entry gets an index from a counter that only grows, so an index keeps
pointing at the same entry (or at nothing, once evicted) while the log rolls.
Decode failures are kept alongside decoded events for raw inspection.
"""

from __future__ import annotations

from collections import deque
from typing import Any

from pydantic import BaseModel, ConfigDict

from .errors import DecodeError
from .models import Event


class RawLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    update_id: int | None
    kind: str | None
    chat_id: int | None = None
    payload: Any = None
    error: str | None = None
    raw: bytes | None = None


class RawEventLog:
    def __init__(self, capacity: int = 50) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0; got {capacity}")
        self._entries: deque[RawLogEntry] = deque(maxlen=capacity)
        self._next_index = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _append(self, **fields: Any) -> RawLogEntry:
        entry = RawLogEntry(index=self._next_index, **fields)
        self._next_index += 1
        self._entries.append(entry)
        return entry

    def append_event(self, event: Event) -> RawLogEntry:
        kind = event.raw_kind if event.kind == "unrecognized" else event.kind
        chat_id = event.origin_chat.id if event.origin_chat is not None else None
        return self._append(
            update_id=event.update_id, kind=kind, chat_id=chat_id, payload=event.payload
        )

    def append_failure(self, failure: DecodeError) -> RawLogEntry:
        return self._append(
            update_id=failure.update_id, kind=None, error=failure.reason, raw=failure.raw
        )

    def get(self, index: int) -> RawLogEntry | None:
        """Return the entry with `index`, or `None` if evicted or never written."""

        if not self._entries:
            return None
        pos = index - self._entries[0].index
        if pos < 0 or pos >= len(self._entries):
            return None
        return self._entries[pos]

    def entries(self) -> tuple[RawLogEntry, ...]:
        return tuple(self._entries)

    def entries_for_chat(self, chat_id: int) -> tuple[RawLogEntry, ...]:
        """Return the retained decoded entries whose origin chat is `chat_id`, oldest first."""

        return tuple(entry for entry in self._entries if entry.chat_id == chat_id)
