"""Chat registry derived from observed events.

Design notes / invariants:
- A chat record is created on the first event that references an unknown chat
  id and is never deleted during a session.
- Every observed event with an `origin_chat` increments `message_count`.
  Replaying the same event counts it again: there is no deduplication by
  `update_id`, but a chat id never maps to more than one record.
- `display_name` tracks the latest name seen upstream, not its history.
- Chat kind comes from the id: positive ids are private chats, `-100...` ids
  are supergroups (or channels, when the update says so) and other negative
  ids are basic groups.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import Final

from .models import Chat, ChatKind, Event, Topic

_SUPERGROUP_ID_PREFIX: Final[str] = "100"
# Supergroup/channel ids are -(10**12 + channel id) and channel ids have at
# least ten digits.
_SUPERGROUP_MIN_DIGITS: Final[int] = 13


def classify_chat_id(chat_id: int, reported_type: str | None = None) -> ChatKind:
    """Derive a chat kind from the sign/prefix rule on `chat_id`.

    `reported_type` only refines the result inside the same id family: a
    `-100...` id reported as `"channel"` is a channel.
    """

    if chat_id > 0:
        return "private"
    digits = str(-chat_id)
    if digits.startswith(_SUPERGROUP_ID_PREFIX) and len(digits) >= _SUPERGROUP_MIN_DIGITS:
        return "channel" if reported_type == "channel" else "supergroup"
    return "group"


class ChatRegistry:
    """In-memory chat records keyed by chat id."""

    def __init__(
        self,
        chats: Iterable[Chat] = (),
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chats: dict[int, Chat] = {chat.id: chat for chat in chats}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._chats)

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._chats

    def get(self, chat_id: int) -> Chat | None:
        return self._chats.get(chat_id)

    def observe(self, event: Event) -> Chat | None:
        """Create or update the chat referenced by `event`.

        Returns the updated record, or `None` when the event carries no chat.
        """

        ref = event.origin_chat
        if ref is None:
            return None

        seen_at = event.timestamp if event.timestamp is not None else int(self._clock())
        chat = self._chats.get(ref.id)
        if chat is None:
            chat = Chat(
                id=ref.id,
                kind=classify_chat_id(ref.id, ref.type),
                display_name=ref.display_name,
                first_seen_at=seen_at,
                last_seen_at=seen_at,
            )
            self._chats[ref.id] = chat
        else:
            chat.last_seen_at = max(chat.last_seen_at, seen_at)
            chat.first_seen_at = min(chat.first_seen_at, seen_at)
            if chat.display_name != ref.display_name:
                chat.display_name = ref.display_name
        chat.message_count += 1

        if event.thread_id is not None:
            self._observe_topic(chat, event.thread_id, event.topic_name, seen_at)
        return chat

    def _observe_topic(
        self, chat: Chat, thread_id: int, topic_name: str | None, seen_at: int
    ) -> None:
        topic = chat.topics.get(thread_id)
        if topic is None:
            topic = Topic(thread_id=thread_id, last_seen_at=seen_at)
            chat.topics[thread_id] = topic
        topic.message_count += 1
        topic.last_seen_at = max(topic.last_seen_at, seen_at)
        if topic_name:
            topic.name = topic_name

    def chats(self) -> list[Chat]:
        """Return copies of all chats, most recently seen first."""

        return sorted(
            (chat.model_copy(deep=True) for chat in self._chats.values()),
            key=lambda c: (c.last_seen_at, c.id),
            reverse=True,
        )

    def to_mapping(self) -> dict[int, Chat]:
        return {chat_id: chat.model_copy(deep=True) for chat_id, chat in self._chats.items()}
