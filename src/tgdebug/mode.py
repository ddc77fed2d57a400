"""Delivery mode authority: the single owner of "polling vs webhook".

The poller consults `polling_allowed` before every request and the webhook
controller updates the mode only after the remote call succeeded, so there is
no window where both listeners are considered active.

States: `unknown` (nothing confirmed yet, polling allowed), `polling`,
`webhook`.
"""

from __future__ import annotations

import logging
from typing import Literal

import anyio

logger = logging.getLogger(__name__)

DeliveryMode = Literal["unknown", "polling", "webhook"]


class DeliveryModeAuthority:
    def __init__(self) -> None:
        self._mode: DeliveryMode = "unknown"
        self._webhook_url: str | None = None
        self._changed: anyio.Event | None = None

    @property
    def mode(self) -> DeliveryMode:
        return self._mode

    @property
    def webhook_url(self) -> str | None:
        return self._webhook_url

    @property
    def polling_allowed(self) -> bool:
        return self._mode != "webhook"

    def enter_webhook(self, url: str | None) -> None:
        self._set("webhook", url)

    def enter_polling(self) -> None:
        self._set("polling", None)

    def _set(self, mode: DeliveryMode, url: str | None) -> None:
        if mode == self._mode and url == self._webhook_url:
            return
        logger.info("delivery mode %s -> %s", self._mode, mode)
        self._mode = mode
        self._webhook_url = url
        # Wake every current waiter; the next waiter arms a fresh event.
        if self._changed is not None:
            self._changed.set()
            self._changed = None

    async def wait_for_change(self) -> None:
        if self._changed is None:
            self._changed = anyio.Event()
        await self._changed.wait()
