"""Commands issued by the presentation side.

Each command validates its input, performs one request and either returns a
result or raises `CommandError` to the caller. Commands never mutate
ingestion state directly; mode changes go through the delivery-mode
authority and refreshes through the poller.
"""

from __future__ import annotations

from typing import Any, Final

from .api import TelegramBotApi
from .errors import CommandError, TelegramBotApiError
from .poller import Poller
from .webhook import WebhookController

MAX_TOKEN_LENGTH: Final[int] = 256
MAX_CHAT_ID_LENGTH: Final[int] = 20
MAX_MESSAGE_LENGTH: Final[int] = 4096


def parse_chat_id(value: int | str) -> int:
    """Accept an int or a decimal string (as typed by an operator)."""

    if isinstance(value, bool):
        raise CommandError("Invalid chat ID format (must be a number)")
    if isinstance(value, int):
        return value
    raw = value.strip()
    if not raw:
        raise CommandError("Chat ID cannot be empty")
    if len(raw) > MAX_CHAT_ID_LENGTH:
        raise CommandError(f"Chat ID too long (max {MAX_CHAT_ID_LENGTH} chars)")
    try:
        return int(raw)
    except ValueError as e:
        raise CommandError("Invalid chat ID format (must be a number)") from e


def validate_message_text(text: str) -> str:
    stripped = text.strip()
    if not stripped:
        raise CommandError("Message cannot be empty")
    if len(stripped) > MAX_MESSAGE_LENGTH:
        raise CommandError(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")
    return stripped


class CommandService:
    def __init__(
        self,
        api: TelegramBotApi,
        webhook: WebhookController,
        poller: Poller | None = None,
    ) -> None:
        self.api = api
        self.webhook = webhook
        self.poller = poller

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        thread_id: int | None = None,
    ) -> dict[str, Any]:
        """Send a test message; `thread_id` targets a forum topic."""

        target = parse_chat_id(chat_id)
        body = validate_message_text(text)
        try:
            return await self.api.send_message(
                chat_id=target, text=body, message_thread_id=thread_id
            )
        except TelegramBotApiError as e:
            raise CommandError(str(e)) from e

    async def set_webhook(self, url: str) -> None:
        await self.webhook.set(url)

    async def clear_webhook(self, *, drop_pending_updates: bool = False) -> None:
        await self.webhook.clear(drop_pending_updates=drop_pending_updates)

    def force_refresh(self) -> None:
        if self.poller is not None:
            self.poller.request_refresh()


async def validate_token(token: str, *, api_base: str | None = None) -> dict[str, Any]:
    """Check a token with `getMe` and return the bot's user object.

    Raises:
        CommandError: If the token is empty, too long or rejected.
    """

    candidate = token.strip()
    if not candidate:
        raise CommandError("Token cannot be empty")
    if len(candidate) > MAX_TOKEN_LENGTH:
        raise CommandError(f"Token too long (max {MAX_TOKEN_LENGTH} chars)")
    api = (
        TelegramBotApi(token=candidate)
        if api_base is None
        else TelegramBotApi(token=candidate, api_base=api_base)
    )
    try:
        return await api.get_me()
    except TelegramBotApiError as e:
        raise CommandError(str(e)) from e
