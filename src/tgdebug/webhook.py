"""Webhook mode controller.

`set()` and `clear()` change the delivery-mode authority only after the
remote call succeeded; the poller reads the authority before every request,
so the operator never sees polling and a webhook active together.
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any

from pydantic import BaseModel, ConfigDict

from .api import TelegramBotApi
from .errors import CommandError, TelegramBotApiError
from .mode import DeliveryMode, DeliveryModeAuthority

logger = logging.getLogger(__name__)


class WebhookStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: DeliveryMode
    url: str | None = None
    pending_update_count: int = 0
    last_error_date: int | None = None
    last_error_message: str | None = None
    max_connections: int | None = None


def validate_webhook_url(url: str) -> str:
    """Return the trimmed URL, or raise `CommandError` unless it is `https://host/...`."""

    candidate = url.strip()
    parsed = urllib.parse.urlsplit(candidate)
    if parsed.scheme.lower() != "https":
        raise CommandError(f"webhook URL must use https: {candidate!r}")
    if not parsed.hostname:
        raise CommandError(f"webhook URL has no host: {candidate!r}")
    return candidate


class WebhookController:
    def __init__(self, api: TelegramBotApi, authority: DeliveryModeAuthority) -> None:
        self.api = api
        self.authority = authority

    async def get_status(self) -> WebhookStatus:
        """Fetch `getWebhookInfo` and sync the authority with the answer."""

        try:
            info = await self.api.get_webhook_info()
        except TelegramBotApiError as e:
            raise CommandError(str(e)) from e

        url = info.get("url") if isinstance(info.get("url"), str) else ""
        if url:
            self.authority.enter_webhook(url)
        else:
            self.authority.enter_polling()

        def _opt(key: str, kind: type) -> Any:
            value = info.get(key)
            return value if isinstance(value, kind) else None

        return WebhookStatus(
            mode=self.authority.mode,
            url=url or None,
            pending_update_count=_opt("pending_update_count", int) or 0,
            last_error_date=_opt("last_error_date", int),
            last_error_message=_opt("last_error_message", str),
            max_connections=_opt("max_connections", int),
        )

    async def set(self, url: str) -> None:
        checked = validate_webhook_url(url)
        try:
            ok = await self.api.set_webhook(url=checked)
        except TelegramBotApiError as e:
            raise CommandError(str(e)) from e
        if not ok:
            raise CommandError("setWebhook returned false")
        logger.info("webhook set")
        self.authority.enter_webhook(checked)

    async def clear(self, *, drop_pending_updates: bool = False) -> None:
        try:
            ok = await self.api.delete_webhook(drop_pending_updates=drop_pending_updates)
        except TelegramBotApiError as e:
            raise CommandError(str(e)) from e
        if not ok:
            raise CommandError("deleteWebhook returned false")
        logger.info("webhook cleared, polling allowed")
        self.authority.enter_polling()
