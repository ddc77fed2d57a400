"""Telegram Bot API debugger.

This package long-polls the Bot API `getUpdates` endpoint for a single bot
token and keeps a local picture of what the bot receives:

- every update is decoded into an `Event` (a closed union over Bot API update
  kinds, plus `unrecognized` for fields this version does not know yet)
- chats seen in updates are kept in a `ChatRegistry` (with forum topics)
- usage counters (per chat, per kind, per hour of day) are aggregated
  incrementally
- the most recent raw updates, including undecodable ones, are kept in a
  bounded `RawEventLog`

Design notes / boundaries:
- Ingestion (the `Poller`) is the only writer of `EngineState`. The console
  view and commands only read `EngineState.snapshot`, which is replaced as a
  whole after each batch is committed.
- The next `getUpdates` offset only moves forward and is persisted together
  with the token and the chat registry in one JSON cache document, written via
  temporary file + rename.
- Polling and a webhook are never both active: the `DeliveryModeAuthority`
  decides, the poller suspends itself while a webhook is set.
- The bot token is never logged or printed.

Implementation note:
- Internal logic is split across `tgdebug.*` submodules.
"""

from __future__ import annotations

from .analytics import AnalyticsAggregator, AnalyticsSnapshot, ChatCount
from .api import TelegramBotApi
from .cache import CacheStore
from .cli import main, run
from .commands import CommandService, parse_chat_id, validate_message_text, validate_token
from .config import Settings
from .decoder import chat_display_name, classify_update, decode_batch, decode_update
from .errors import (
    AuthError,
    CommandError,
    DecodeError,
    PersistenceError,
    TelegramBotApiError,
    TransportError,
)
from .mode import DeliveryMode, DeliveryModeAuthority
from .models import (
    KNOWN_UPDATE_KINDS,
    CacheDocument,
    Chat,
    ChatKind,
    ChatRef,
    Event,
    Sender,
    Topic,
    UpdateKind,
)
from .poller import Poller, TickResult, compute_backoff_delay
from .raw_log import RawEventLog, RawLogEntry
from .registry import ChatRegistry, classify_chat_id
from .state import EngineState, PollerStatus, StateSnapshot
from .tz import format_unix_seconds, parse_timezone
from .webhook import WebhookController, WebhookStatus, validate_webhook_url

__all__ = [
    "KNOWN_UPDATE_KINDS",
    "AnalyticsAggregator",
    "AnalyticsSnapshot",
    "AuthError",
    "CacheDocument",
    "CacheStore",
    "Chat",
    "ChatCount",
    "ChatKind",
    "ChatRef",
    "ChatRegistry",
    "CommandError",
    "CommandService",
    "DecodeError",
    "DeliveryMode",
    "DeliveryModeAuthority",
    "EngineState",
    "Event",
    "PersistenceError",
    "Poller",
    "PollerStatus",
    "RawEventLog",
    "RawLogEntry",
    "Sender",
    "Settings",
    "StateSnapshot",
    "TelegramBotApi",
    "TelegramBotApiError",
    "TickResult",
    "Topic",
    "TransportError",
    "UpdateKind",
    "WebhookController",
    "WebhookStatus",
    "chat_display_name",
    "classify_chat_id",
    "classify_update",
    "compute_backoff_delay",
    "decode_batch",
    "decode_update",
    "format_unix_seconds",
    "main",
    "parse_chat_id",
    "parse_timezone",
    "run",
    "validate_message_text",
    "validate_token",
    "validate_webhook_url",
]
