import pytest

from tgdebug.api import TelegramBotApi
from tgdebug.commands import (
    MAX_MESSAGE_LENGTH,
    MAX_TOKEN_LENGTH,
    CommandService,
    parse_chat_id,
    validate_message_text,
    validate_token,
)
from tgdebug.errors import AuthError, CommandError, TelegramBotApiError
from tgdebug.mode import DeliveryModeAuthority
from tgdebug.webhook import WebhookController


class FakeSendApi:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.sent: list[tuple[int, str, int | None]] = []

    async def send_message(self, *, chat_id: int, text: str, message_thread_id: int | None = None) -> dict:
        if self.error is not None:
            raise self.error
        self.sent.append((chat_id, text, message_thread_id))
        return {"message_id": len(self.sent)}


class FakePoller:
    def __init__(self) -> None:
        self.refreshes = 0

    def request_refresh(self) -> None:
        self.refreshes += 1


def _service(api: FakeSendApi, poller: FakePoller | None = None) -> CommandService:
    return CommandService(api, WebhookController(api, DeliveryModeAuthority()), poller)


@pytest.mark.parametrize(
    ("value", "expected"),
    [("123", 123), (" -1001234567890 ", -1001234567890), (42, 42)],
)
def test_parse_chat_id(value, expected) -> None:
    assert parse_chat_id(value) == expected


@pytest.mark.parametrize("value", ["", "   ", "abc", "1" * 21, True])
def test_parse_chat_id_rejects(value) -> None:
    with pytest.raises(CommandError):
        parse_chat_id(value)


def test_validate_message_text() -> None:
    assert validate_message_text("  hello  ") == "hello"
    assert validate_message_text("x" * MAX_MESSAGE_LENGTH) == "x" * MAX_MESSAGE_LENGTH
    with pytest.raises(CommandError, match="empty"):
        validate_message_text(" \n ")
    with pytest.raises(CommandError, match="too long"):
        validate_message_text("x" * (MAX_MESSAGE_LENGTH + 1))


@pytest.mark.anyio
async def test_send_message_validates_then_sends() -> None:
    api = FakeSendApi()
    service = _service(api)

    result = await service.send_message("-1001234567890", " hi ", thread_id=7)

    assert result == {"message_id": 1}
    assert api.sent == [(-1001234567890, "hi", 7)]


@pytest.mark.anyio
async def test_send_message_rejects_bad_input_without_request() -> None:
    api = FakeSendApi()
    service = _service(api)

    with pytest.raises(CommandError):
        await service.send_message("not-a-number", "hi")
    with pytest.raises(CommandError):
        await service.send_message(1, "")

    assert api.sent == []


@pytest.mark.anyio
async def test_send_message_wraps_api_errors() -> None:
    api = FakeSendApi(
        error=TelegramBotApiError(
            "Telegram sendMessage failed: Bad Request: chat not found",
            method="sendMessage",
            error_code=400,
        )
    )

    with pytest.raises(CommandError, match="chat not found"):
        await _service(api).send_message(1, "hi")


def test_force_refresh_reaches_poller() -> None:
    poller = FakePoller()
    service = _service(FakeSendApi(), poller)

    service.force_refresh()

    assert poller.refreshes == 1
    _service(FakeSendApi()).force_refresh()


@pytest.mark.anyio
async def test_validate_token(monkeypatch) -> None:
    async def fake_get_me(self):
        if self.token == "bad":
            raise AuthError("Telegram getMe failed: Unauthorized", method="getMe", error_code=401)
        return {"id": 1, "is_bot": True, "username": "MyBot"}

    monkeypatch.setattr(TelegramBotApi, "get_me", fake_get_me)

    assert (await validate_token(" 123:abc "))["username"] == "MyBot"
    with pytest.raises(CommandError, match="Unauthorized"):
        await validate_token("bad")
    with pytest.raises(CommandError, match="empty"):
        await validate_token("  ")
    with pytest.raises(CommandError, match="too long"):
        await validate_token("x" * (MAX_TOKEN_LENGTH + 1))
