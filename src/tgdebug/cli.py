"""CLI entrypoint.

`monitor` runs the poller in the background and a console view that only
reads committed snapshots. The other subcommands are one-shot operator
commands against the same cache and token.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Final

import anyio
import logfire
from rich import print
from rich.markup import escape
from rich.table import Table

from .api import TelegramBotApi
from .cache import CacheStore
from .commands import CommandService
from .config import Settings
from .errors import CommandError
from .poller import Poller
from .state import EngineState, StateSnapshot
from .tz import format_unix_seconds, parse_timezone
from .webhook import WebhookController

_RENDER_INTERVAL_SECONDS: Final[float] = 0.5
_TEXT_PREVIEW_CHARS: Final[int] = 80


def _parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tgdebug",
        description="Telegram Bot API debugger (getUpdates monitor, chats, webhook).",
    )
    parser.add_argument(
        "--token",
        default="",
        help="Bot token (never printed). Stored in the cache; defaults to the cached token.",
    )
    parser.add_argument(
        "--cache-path",
        default="",
        help="Cache document path (default: $TGDEBUG_CACHE_PATH or ~/.config/tgdebug/cache.json).",
    )
    sub = parser.add_subparsers(dest="command")

    monitor = sub.add_parser("monitor", help="Poll getUpdates and print incoming updates.")
    monitor.add_argument(
        "--timeout-seconds",
        type=int,
        default=None,
        help="getUpdates long-poll timeout seconds.",
    )
    monitor.add_argument(
        "--chat",
        type=int,
        default=None,
        help="Only print raw updates that originated in this chat id.",
    )

    send = sub.add_parser("send", help="Send a test message.")
    send.add_argument("chat_id")
    send.add_argument("text")
    send.add_argument("--thread-id", type=int, default=None, help="Forum topic id.")

    sub.add_parser("webhook-info", help="Show the current delivery mode.")

    set_hook = sub.add_parser("set-webhook", help="Register an https webhook URL.")
    set_hook.add_argument("url")

    clear_hook = sub.add_parser("clear-webhook", help="Remove the webhook and allow polling.")
    clear_hook.add_argument("--drop-pending-updates", action="store_true")

    chats = sub.add_parser("chats", help="List cached chats and statistics.")
    chats.add_argument("--top", type=int, default=10)
    return parser.parse_args(argv)


def _configure_logging() -> None:
    logfire.configure(send_to_logfire="if-token-present")
    logging.basicConfig(level=logging.INFO, handlers=[logfire.LogfireLoggingHandler()])


def _require_token(state: EngineState, token: str) -> str:
    token = token.strip()
    if token:
        state.set_token(token)
        state.flush()
        return token
    if state.token:
        return state.token
    raise SystemExit("No token: pass --token once, it is cached afterwards.")


def _print_chats(snapshot: StateSnapshot, *, top: int, settings: Settings) -> None:
    tz = parse_timezone(settings.timezone)
    table = Table(title=f"Chats ({len(snapshot.chats)})")
    for column in ("id", "kind", "name", "messages", "topics", "last seen"):
        table.add_column(column)
    for chat in snapshot.chats:
        table.add_row(
            str(chat.id),
            chat.kind,
            escape(chat.display_name),
            str(chat.message_count),
            str(len(chat.topics)),
            format_unix_seconds(chat.last_seen_at, tz=tz),
        )
    print(table)

    analytics = snapshot.analytics
    print(f"offset={snapshot.offset} chats={analytics.total_chats} topics={analytics.total_topics}")
    print(f"chat kinds: {analytics.chat_kinds}")
    for rank, entry in enumerate(analytics.top_chats(top), start=1):
        print(f"{rank:>3}. {escape(entry.display_name)} ({entry.chat_id}): {entry.count}")


def _print_new_entries(
    snapshot: StateSnapshot, last_index: int, *, chat_id: int | None = None
) -> int:
    entries = snapshot.raw_events if chat_id is None else snapshot.entries_for_chat(chat_id)
    for entry in entries:
        if entry.index <= last_index:
            continue
        last_index = entry.index
        if entry.error is not None:
            print(
                f"[red]#{entry.index} undecodable[/red] "
                f"update_id={entry.update_id}: {escape(entry.error)}"
            )
            continue
        preview = ""
        if isinstance(entry.payload, dict):
            text = entry.payload.get("text") or entry.payload.get("caption")
            if isinstance(text, str):
                preview = text[:_TEXT_PREVIEW_CHARS]
        print(
            f"[cyan]#{entry.index}[/cyan] update_id={entry.update_id} "
            f"kind={entry.kind} {escape(preview)}"
        )
    return last_index


async def _render(
    state: EngineState, scope: anyio.CancelScope, *, chat_id: int | None = None
) -> None:
    last_index = -1
    last_status = ""
    while True:
        snapshot = state.snapshot
        last_index = _print_new_entries(snapshot, last_index, chat_id=chat_id)
        status = snapshot.poller_status
        if status != last_status and status != "polling":
            detail = f": {escape(snapshot.last_error)}" if snapshot.last_error else ""
            colour = "red" if status in {"fatal", "degraded"} else "green"
            print(f"[{colour}]poller {status}[/{colour}] offset={snapshot.offset}{detail}")
            last_status = status
        if status == "fatal":
            scope.cancel()
            return
        await anyio.sleep(_RENDER_INTERVAL_SECONDS)


async def monitor(
    state: EngineState,
    api: TelegramBotApi,
    settings: Settings,
    *,
    chat_id: int | None = None,
) -> None:
    webhook = WebhookController(api, state.authority)
    try:
        status = await webhook.get_status()
    except CommandError as e:
        print(f"[yellow]getWebhookInfo failed[/yellow]: {escape(str(e))}")
    else:
        if status.mode == "webhook":
            print(
                "[yellow]A webhook is active; polling is suspended.[/yellow] "
                "Run `tgdebug clear-webhook` to switch to polling."
            )

    poller = Poller(api, state, settings)
    print(
        "\n".join(
            [
                "Monitoring getUpdates.",
                f"- cache_path: {settings.cache_path}",
                f"- offset: {state.offset}",
                f"- known_chats: {len(state.registry)}",
                f"- timeout_seconds: {settings.poll_timeout_seconds}",
                f"- chat: {chat_id if chat_id is not None else 'all'}",
            ]
        )
    )
    async with anyio.create_task_group() as tg:
        tg.start_soon(poller.run)
        await _render(state, tg.cancel_scope, chat_id=chat_id)


async def run(args: argparse.Namespace) -> None:
    _configure_logging()

    overrides: dict[str, object] = {}
    if args.cache_path:
        overrides["cache_path"] = Path(args.cache_path)
    if getattr(args, "timeout_seconds", None) is not None:
        overrides["poll_timeout_seconds"] = args.timeout_seconds
    settings = Settings(**overrides)  # type: ignore[arg-type]

    state = EngineState.load(CacheStore(settings.cache_path), settings=settings)
    command = args.command or "monitor"
    if command == "chats":
        _print_chats(state.snapshot, top=args.top, settings=settings)
        return

    token = _require_token(state, args.token)
    api = TelegramBotApi(token=token, api_base=settings.api_base)
    if command == "monitor":
        await monitor(state, api, settings, chat_id=getattr(args, "chat", None))
        return

    commands = CommandService(api, WebhookController(api, state.authority))
    try:
        if command == "send":
            result = await commands.send_message(args.chat_id, args.text, args.thread_id)
            print(f"[green]sent[/green] message_id={result.get('message_id')}")
        elif command == "webhook-info":
            status = await commands.webhook.get_status()
            print(status.model_dump())
        elif command == "set-webhook":
            await commands.set_webhook(args.url)
            print("[green]webhook set[/green]; polling is now suspended")
        elif command == "clear-webhook":
            await commands.clear_webhook(drop_pending_updates=args.drop_pending_updates)
            print("[green]webhook cleared[/green]; polling allowed")
    except CommandError as e:
        print(f"[red]{command} failed[/red]: {escape(str(e))}")
        raise SystemExit(1) from e


async def main() -> None:
    """CLI entrypoint."""
    await run(_parse_cli_args())


def cli() -> None:
    anyio.run(main)
