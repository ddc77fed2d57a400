"""Pydantic models for decoded updates, chats and the persisted cache document.

`Event` is a closed tagged union over Bot API update kinds: `kind` is one of
`KNOWN_UPDATE_KINDS` or `"unrecognized"`, in which case `raw_kind` names the
top-level field the API sent. All kind-specific extraction lives in
`tgdebug.decoder`; everything downstream matches on `kind` only.
"""

from __future__ import annotations

from typing import Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION: Final[int] = 1

UpdateKind = Literal[
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
    "business_connection",
    "business_message",
    "edited_business_message",
    "deleted_business_messages",
    "message_reaction",
    "message_reaction_count",
    "inline_query",
    "chosen_inline_result",
    "callback_query",
    "shipping_query",
    "pre_checkout_query",
    "purchased_paid_media",
    "poll",
    "poll_answer",
    "my_chat_member",
    "chat_member",
    "chat_join_request",
    "chat_boost",
    "removed_chat_boost",
    "unrecognized",
]

# Documented `Update` field order; the first present field wins.
KNOWN_UPDATE_KINDS: Final[tuple[str, ...]] = (
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
    "business_connection",
    "business_message",
    "edited_business_message",
    "deleted_business_messages",
    "message_reaction",
    "message_reaction_count",
    "inline_query",
    "chosen_inline_result",
    "callback_query",
    "shipping_query",
    "pre_checkout_query",
    "purchased_paid_media",
    "poll",
    "poll_answer",
    "my_chat_member",
    "chat_member",
    "chat_join_request",
    "chat_boost",
    "removed_chat_boost",
)

ChatKind = Literal["private", "group", "supergroup", "channel"]


class ChatRef(BaseModel):
    """Chat identity as carried by a single update."""

    model_config = ConfigDict(frozen=True)

    id: int
    type: str | None = None
    display_name: str


class Sender(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    display_name: str
    is_bot: bool = False


class Event(BaseModel):
    """One decoded update.

    `timestamp` is the source-provided unix seconds and is `None` for kinds
    that carry no date (inline queries, callbacks, polls, ...). `payload` is
    the kind's body verbatim, kept for raw inspection.
    """

    model_config = ConfigDict(frozen=True)

    update_id: int
    kind: UpdateKind
    raw_kind: str | None = None
    origin_chat: ChatRef | None = None
    sender: Sender | None = None
    timestamp: int | None = None
    text: str | None = None
    thread_id: int | None = None
    topic_name: str | None = None
    payload: Any = None


class Topic(BaseModel):
    """Forum topic seen inside a supergroup."""

    thread_id: int
    name: str | None = None
    message_count: int = 0
    last_seen_at: int = 0


class Chat(BaseModel):
    """Registry record for one discovered chat.

    Invariant:
        `last_seen_at` never decreases and `first_seen_at <= last_seen_at`.
    """

    model_config = ConfigDict(extra="ignore")

    id: int
    kind: ChatKind
    display_name: str
    first_seen_at: int
    last_seen_at: int
    message_count: int = 0
    topics: dict[int, Topic] = Field(default_factory=dict)


class CacheDocument(BaseModel):
    """The persisted aggregate: token, next offset and discovered chats.

    Unknown fields are ignored and missing ones defaulted so older or newer
    files still load.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: int = SCHEMA_VERSION
    token: str | None = None
    offset: int = 0
    chats: dict[int, Chat] = Field(default_factory=dict)
