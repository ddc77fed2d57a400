"""Raw Bot API update records -> `Event` values.

`decode_batch()` preserves order and cardinality: N input records always
yield N results, each either an `Event` or a `DecodeError`. A malformed record
never stops its siblings from decoding.

Classification inspects top-level fields in documented `Update` order
(`KNOWN_UPDATE_KINDS`); the first present known field wins. Updates whose
fields are all unknown decode to `kind="unrecognized"` rather than failing, so
new API variants show up in the raw log instead of crashing ingestion.

A record is malformed when:
- it is not a JSON object,
- `update_id` is missing or not an integer,
- the known kind's body is not an object, or a nested chat/user object it
  relies on has the wrong shape (e.g. a message without `chat.id`).
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import DecodeError
from .models import KNOWN_UPDATE_KINDS, ChatRef, Event, Sender

type DecodeResult = Event | DecodeError

_MESSAGE_KINDS = frozenset(
    {
        "message",
        "edited_message",
        "channel_post",
        "edited_channel_post",
        "business_message",
        "edited_business_message",
    }
)


class _MalformedRecord(ValueError):
    pass


class _RawChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str | None = None
    title: str | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class _RawUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    is_bot: bool = False
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None


def _join_name(first: str | None, last: str | None) -> str:
    return " ".join(part for part in (first, last) if part)


def chat_display_name(chat: _RawChat) -> str:
    """Title, then `@username`, then first/last name, then `Chat <id>`."""

    if chat.title:
        return chat.title
    if chat.username:
        return f"@{chat.username}"
    name = _join_name(chat.first_name, chat.last_name)
    return name or f"Chat {chat.id}"


def _sender_display_name(user: _RawUser) -> str:
    if user.username:
        return f"@{user.username}"
    name = _join_name(user.first_name, user.last_name)
    return name or f"User {user.id}"


def _object(body: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise _MalformedRecord(f"{key} is not an object")
    return value


def _chat(body: dict[str, Any], key: str = "chat", *, required: bool) -> ChatRef | None:
    raw = _object(body, key)
    if raw is None:
        if required:
            raise _MalformedRecord(f"missing {key}")
        return None
    chat = _RawChat.model_validate(raw)
    return ChatRef(id=chat.id, type=chat.type, display_name=chat_display_name(chat))


def _user(body: dict[str, Any], key: str) -> Sender | None:
    raw = _object(body, key)
    if raw is None:
        return None
    user = _RawUser.model_validate(raw)
    return Sender(
        id=user.id, display_name=_sender_display_name(user), is_bot=user.is_bot
    )


def _chat_as_sender(body: dict[str, Any], key: str) -> Sender | None:
    chat = _chat(body, key, required=False)
    if chat is None:
        return None
    return Sender(id=chat.id, display_name=chat.display_name)


def _int(body: dict[str, Any], key: str) -> int | None:
    value = body.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _str(body: dict[str, Any], key: str) -> str | None:
    value = body.get(key)
    return value if isinstance(value, str) else None


def _message_fields(body: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "origin_chat": _chat(body, required=True),
        "sender": _user(body, "from") or _chat_as_sender(body, "sender_chat"),
        "timestamp": _int(body, "edit_date") or _int(body, "date"),
        "text": _str(body, "text") or _str(body, "caption"),
    }
    # `message_thread_id` also appears on plain replies; only topic messages
    # identify a forum topic.
    if body.get("is_topic_message") is True:
        fields["thread_id"] = _int(body, "message_thread_id")
    topic_created = _object(body, "forum_topic_created")
    if topic_created is not None:
        fields["topic_name"] = _str(topic_created, "name")
    return fields


def _business_connection(body: dict[str, Any]) -> dict[str, Any]:
    return {"sender": _user(body, "user"), "timestamp": _int(body, "date")}


def _deleted_business_messages(body: dict[str, Any]) -> dict[str, Any]:
    return {"origin_chat": _chat(body, required=True)}


def _message_reaction(body: dict[str, Any]) -> dict[str, Any]:
    return {
        "origin_chat": _chat(body, required=True),
        "sender": _user(body, "user") or _chat_as_sender(body, "actor_chat"),
        "timestamp": _int(body, "date"),
    }


def _message_reaction_count(body: dict[str, Any]) -> dict[str, Any]:
    return {"origin_chat": _chat(body, required=True), "timestamp": _int(body, "date")}


def _query(text_key: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def extract(body: dict[str, Any]) -> dict[str, Any]:
        return {"sender": _user(body, "from"), "text": _str(body, text_key)}

    return extract


def _callback_query(body: dict[str, Any]) -> dict[str, Any]:
    # The attached message's `date` is when that message was sent, not when
    # the button was pressed, so callbacks stay untimed.
    message = _object(body, "message")
    return {
        "origin_chat": _chat(message, required=False) if message else None,
        "sender": _user(body, "from"),
        "text": _str(body, "data"),
    }


def _poll(body: dict[str, Any]) -> dict[str, Any]:
    return {"text": _str(body, "question")}


def _poll_answer(body: dict[str, Any]) -> dict[str, Any]:
    return {"sender": _user(body, "user") or _chat_as_sender(body, "voter_chat")}


def _chat_member(body: dict[str, Any]) -> dict[str, Any]:
    return {
        "origin_chat": _chat(body, required=True),
        "sender": _user(body, "from"),
        "timestamp": _int(body, "date"),
    }


def _chat_join_request(body: dict[str, Any]) -> dict[str, Any]:
    return {**_chat_member(body), "text": _str(body, "bio")}


def _chat_boost(body: dict[str, Any]) -> dict[str, Any]:
    boost = _object(body, "boost")
    return {
        "origin_chat": _chat(body, required=True),
        "timestamp": _int(boost, "add_date") if boost else None,
    }


def _removed_chat_boost(body: dict[str, Any]) -> dict[str, Any]:
    return {
        "origin_chat": _chat(body, required=True),
        "timestamp": _int(body, "remove_date"),
    }


_EXTRACTORS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    **{kind: _message_fields for kind in _MESSAGE_KINDS},
    "business_connection": _business_connection,
    "deleted_business_messages": _deleted_business_messages,
    "message_reaction": _message_reaction,
    "message_reaction_count": _message_reaction_count,
    "inline_query": _query("query"),
    "chosen_inline_result": _query("query"),
    "callback_query": _callback_query,
    "shipping_query": _query("invoice_payload"),
    "pre_checkout_query": _query("invoice_payload"),
    "purchased_paid_media": _query("paid_media_payload"),
    "poll": _poll,
    "poll_answer": _poll_answer,
    "my_chat_member": _chat_member,
    "chat_member": _chat_member,
    "chat_join_request": _chat_join_request,
    "chat_boost": _chat_boost,
    "removed_chat_boost": _removed_chat_boost,
}


def classify_update(update: dict[str, Any]) -> tuple[str, str | None]:
    """Return `(kind, raw_kind)` for a raw update object.

    `raw_kind` is the top-level field name that determined the kind; for
    updates with no fields besides `update_id` it is `None`.
    """

    for kind in KNOWN_UPDATE_KINDS:
        if kind in update:
            return kind, kind
    for key in update:
        if key != "update_id":
            return "unrecognized", key
    return "unrecognized", None


def _raw_bytes(record: Any) -> bytes:
    try:
        return json.dumps(record, ensure_ascii=False, separators=(",", ":")).encode(
            "utf-8"
        )
    except (TypeError, ValueError):
        return repr(record).encode("utf-8")


def decode_update(record: Any, *, index: int = 0) -> DecodeResult:
    """Decode one raw record; never raises for bad input."""

    if not isinstance(record, dict):
        return DecodeError(
            index=index,
            reason=f"expected JSON object, got {type(record).__name__}",
            raw=_raw_bytes(record),
        )

    update_id = record.get("update_id")
    if not isinstance(update_id, int) or isinstance(update_id, bool):
        return DecodeError(
            index=index, reason="missing or invalid update_id", raw=_raw_bytes(record)
        )

    kind, raw_kind = classify_update(record)
    if kind == "unrecognized":
        payload = record.get(raw_kind) if raw_kind is not None else None
        return Event(
            update_id=update_id, kind="unrecognized", raw_kind=raw_kind, payload=payload
        )

    body = record[kind]
    if not isinstance(body, dict):
        return DecodeError(
            index=index,
            update_id=update_id,
            reason=f"{kind} is not an object",
            raw=_raw_bytes(record),
        )
    try:
        fields = _EXTRACTORS[kind](body)
    except (_MalformedRecord, ValidationError) as e:
        reason = (
            f"{kind}: invalid nested object ({e.error_count()} error(s))"
            if isinstance(e, ValidationError)
            else f"{kind}: {e}"
        )
        return DecodeError(
            index=index, update_id=update_id, reason=reason, raw=_raw_bytes(record)
        )

    return Event(update_id=update_id, kind=kind, raw_kind=raw_kind, payload=body, **fields)


def decode_batch(records: Sequence[Any]) -> list[DecodeResult]:
    """Decode a `getUpdates` result list, one result per record, in order."""

    return [decode_update(record, index=i) for i, record in enumerate(records)]
