"""Error taxonomy shared by the transport, ingestion and command paths.

Ingestion-path errors (`TransportError`, `DecodeError`, `PersistenceError`)
are absorbed by the poller and turned into status. `AuthError` stops the
poller. `CommandError` is raised synchronously to whoever issued the command.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

_AUTH_ERROR_CODES = frozenset({401, 404})


class TelegramBotApiError(RuntimeError):
    """Raised when a Bot API call fails or returns a non-ok response.

    Messages are built from the method name only; the token is never included.
    """

    def __init__(
        self,
        message: str,
        *,
        method: str,
        error_code: int | None = None,
        description: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.error_code = error_code
        self.description = description
        self.retry_after = retry_after


class TransportError(TelegramBotApiError):
    """Network failure, timeout, server error or unparsable response body."""


class AuthError(TelegramBotApiError):
    """The Bot API rejected the token."""


def is_auth_error_code(error_code: int | None) -> bool:
    return error_code in _AUTH_ERROR_CODES


class PersistenceError(RuntimeError):
    """Reading or writing the cache document failed."""


class CommandError(ValueError):
    """A command was rejected locally or by the remote API."""


class DecodeError(BaseModel):
    """One update record that could not be decoded.

    This is a value, not an exception: the decoder returns it in place of the
    `Event` so sibling records in the same batch still decode.
    """

    model_config = ConfigDict(frozen=True)

    index: int
    update_id: int | None = None
    reason: str
    raw: bytes
