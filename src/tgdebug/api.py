"""Telegram Bot API transport: send JSON, receive JSON.

Every method is one POST with a JSON body to `<api_base>/bot<token>/<method>`.
The blocking `urllib` call runs in a worker thread so the poll loop and the
presentation side stay responsive. There is no retry logic here; callers
decide what a failure means.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Final

import anyio.to_thread as to_thread

from .errors import AuthError, TelegramBotApiError, TransportError, is_auth_error_code

_TELEGRAM_API_BASE: Final[str] = "https://api.telegram.org"
_DEFAULT_TIMEOUT_SECONDS: Final[float] = 10.0
# Client timeout must exceed the server-side long-poll timeout.
_LONG_POLL_GRACE_SECONDS: Final[float] = 15.0


def _error_from_payload(
    method: str, payload: Any, *, http_status: int | None
) -> TelegramBotApiError:
    error_code: int | None = http_status
    description: str | None = None
    retry_after: int | None = None
    if isinstance(payload, dict):
        if isinstance(payload.get("error_code"), int):
            error_code = payload["error_code"]
        if isinstance(payload.get("description"), str):
            description = payload["description"]
        params = payload.get("parameters")
        if isinstance(params, dict) and isinstance(params.get("retry_after"), int):
            retry_after = params["retry_after"]

    message = f"Telegram {method} failed" + (f": {description}" if description else "")
    if error_code is not None and not description:
        message += f": HTTP {error_code}"

    if is_auth_error_code(error_code):
        cls: type[TelegramBotApiError] = AuthError
    elif error_code is not None and error_code >= 500:
        cls = TransportError
    else:
        cls = TelegramBotApiError
    return cls(
        message,
        method=method,
        error_code=error_code,
        description=description,
        retry_after=retry_after,
    )


@dataclass(slots=True)
class TelegramBotApi:
    """Minimal Bot API client covering the diagnostic surface."""

    token: str
    api_base: str = _TELEGRAM_API_BASE

    def _method_url(self, method: str) -> str:
        # Never log/print this URL; it embeds the bot token.
        return f"{self.api_base}/bot{self.token}/{method}"

    def _call_sync(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> Any:
        body = json.dumps(params or {}, ensure_ascii=False).encode("utf-8")
        request = urllib.request.Request(
            self._method_url(method),
            data=body,
            method="POST",
        )
        request.add_header("Content-Type", "application/json")

        http_status: int | None = None
        try:
            with urllib.request.urlopen(request, timeout=timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            # The Bot API answers 4xx with a JSON error body worth decoding.
            http_status = e.code
            try:
                raw = e.read()
            except OSError:
                raw = b""
        except OSError as e:  # URLError, timeouts, connection resets
            raise TransportError(
                f"Telegram {method} failed: network error ({type(e).__name__})",
                method=method,
            ) from e

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            if http_status is not None:
                raise _error_from_payload(method, None, http_status=http_status) from e
            raise TransportError(
                f"Telegram {method} failed: invalid JSON", method=method
            ) from e

        if not isinstance(payload, dict) or payload.get("ok") is not True:
            raise _error_from_payload(method, payload, http_status=http_status)
        return payload.get("result")

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        abandon_on_cancel: bool = False,
    ) -> Any:
        """Invoke a Bot API method in a worker thread and return `result`.

        With `abandon_on_cancel`, cancelling the caller returns immediately and
        the worker thread's eventual result is discarded.
        """

        return await to_thread.run_sync(
            lambda: self._call_sync(method, params, timeout=timeout),
            abandon_on_cancel=abandon_on_cancel,
        )

    async def get_me(self) -> dict[str, Any]:
        result = await self.call("getMe")
        if not isinstance(result, dict):
            raise TransportError("Telegram getMe failed: missing result dict", method="getMe")
        return result

    async def get_updates(
        self,
        *,
        offset: int | None,
        timeout_seconds: int,
        limit: int = 100,
    ) -> list[Any]:
        """Long-poll `getUpdates`.

        The raw `result` list is returned as-is; malformed items are left for
        the decoder to report.
        """

        params: dict[str, Any] = {"timeout": timeout_seconds, "limit": limit}
        if offset is not None:
            params["offset"] = offset
        result = await self.call(
            "getUpdates",
            params,
            timeout=max(5.0, timeout_seconds + _LONG_POLL_GRACE_SECONDS),
            abandon_on_cancel=True,
        )
        if not isinstance(result, list):
            raise TransportError(
                "Telegram getUpdates failed: missing result list", method="getUpdates"
            )
        return result

    async def send_message(
        self,
        *,
        chat_id: int,
        text: str,
        message_thread_id: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if message_thread_id is not None:
            params["message_thread_id"] = message_thread_id
        result = await self.call("sendMessage", params)
        if not isinstance(result, dict):
            raise TransportError(
                "Telegram sendMessage failed: missing result dict", method="sendMessage"
            )
        return result

    async def get_webhook_info(self) -> dict[str, Any]:
        result = await self.call("getWebhookInfo")
        if not isinstance(result, dict):
            raise TransportError(
                "Telegram getWebhookInfo failed: missing result dict",
                method="getWebhookInfo",
            )
        return result

    async def set_webhook(
        self,
        *,
        url: str,
        drop_pending_updates: bool | None = None,
        secret_token: str | None = None,
    ) -> bool:
        params: dict[str, Any] = {"url": url}
        if drop_pending_updates is not None:
            params["drop_pending_updates"] = drop_pending_updates
        if secret_token is not None:
            params["secret_token"] = secret_token
        return (await self.call("setWebhook", params)) is True

    async def delete_webhook(self, *, drop_pending_updates: bool = False) -> bool:
        result = await self.call(
            "deleteWebhook", {"drop_pending_updates": drop_pending_updates}
        )
        return result is True
