"""Terminal client for the chat server.

Usage: python -m chat_server.console --chat-id <id> --token <firebase-id-token>
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .client import ChatApiClient, ChatSession, TurnInProgressError, TurnState

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"/quit", "/exit"}


def render_turn(state: TurnState) -> Group:
    parts = []
    if state.response:
        parts.append(Markdown(state.response))
    elif state.in_progress:
        parts.append(Text("Thinking...", style="dim"))
    if state.current_tool is not None:
        parts.append(Text(f"🔧 Running {state.current_tool.name}...", style="yellow"))
    if state.error:
        parts.append(Panel(state.error, border_style="red", title="Error"))
    return Group(*parts)


def render_history(session: ChatSession) -> Table:
    table = Table(title=f"Chat {session.chat_id}", box=box.ROUNDED, show_header=False)
    table.add_column("Role", style="cyan", width=10)
    table.add_column("Content", style="white")
    for message in session.messages:
        table.add_row(message.role, message.content)
    return table


async def run_console(args: argparse.Namespace) -> None:
    console = Console()
    client = ChatApiClient(args.base_url, token=args.token, user_id=args.user_id)

    async with client:
        chat_id = args.chat_id
        if not chat_id:
            chat = await client.create_chat()
            chat_id = chat.id
            console.print(f"[dim]Created chat {chat_id}[/dim]")

        session = ChatSession(client, chat_id, messages=await client.list_messages(chat_id))
        if session.messages:
            console.print(render_history(session))

        console.print(Panel.fit(
            f"[bold cyan]Chat[/bold cyan]\n[dim]chat_id: {chat_id} · type /quit to leave[/dim]",
            border_style="cyan",
        ))

        while True:
            text = await asyncio.to_thread(console.input, "[bold green]you>[/bold green] ")
            if text.strip() in EXIT_COMMANDS:
                break
            if not text.strip():
                continue

            is_first = not session.messages
            with Live(render_turn(session.state), console=console, refresh_per_second=12) as live:
                session.on_update = lambda state: live.update(render_turn(state))
                try:
                    reply = await session.send(text)
                except TurnInProgressError as exc:
                    console.print(f"[yellow]{exc}[/yellow]")
                    continue
                live.update(Markdown(reply.content) if reply else render_turn(session.state))

            if reply is not None and is_first:
                await client.update_chat_title(chat_id, text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chat with the agent from the terminal.")
    parser.add_argument("--base-url", default="http://localhost:8080", help="Chat server URL")
    parser.add_argument("--chat-id", help="Existing chat id; a new chat is created when omitted")
    parser.add_argument("--token", help="Firebase ID token sent as a Bearer token")
    parser.add_argument("--user-id", help="User id for servers running AUTH_BACKEND=header")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        asyncio.run(run_console(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
