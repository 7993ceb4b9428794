"""Interactive chat client: serves the shim in-process and talks to it."""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import httpx
import uvicorn
from rich.console import Console
from rich.table import Table

from ..config_loader import ShimSettings
from ..main import create_app
from .session import ChatError, ChatSession
from .tools import default_tools

logger = logging.getLogger("messages-shim")

EXIT_COMMANDS = ("/exit", "/quit", "/q")
HELP_COMMANDS = ("/help", "/h", "/?")
CLEAR_COMMANDS = ("/clear", "/reset", "/new")

COMMAND_HELP = [
    ("/help", "Show this help"),
    ("/clear", "Clear conversation (new session)"),
    ("/exit", "Exit the chat"),
    ("/tools", "List available tools"),
]


class ShimServer:
    """Run an app under uvicorn on an ephemeral local port in a background thread.

    Usage:
        with ShimServer(app) as server:
            httpx.get(f"{server.base_url}/health")
    """

    def __init__(self, app: Any, host: str = "127.0.0.1", startup_timeout: float = 10.0):
        self.app = app
        self.host = host
        self.startup_timeout = startup_timeout
        self.base_url = ""
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None

    def __enter__(self) -> "ShimServer":
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.bind((self.host, 0))
        port = self._socket.getsockname()[1]

        config = uvicorn.Config(self.app, log_level="error")
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": [self._socket]},
            name="messages-shim-server",
            daemon=True,
        )
        self._thread.start()

        deadline = time.monotonic() + self.startup_timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self.__exit__(None, None, None)
                raise RuntimeError("Shim server failed to start")
            time.sleep(0.01)

        self.base_url = f"http://{self.host}:{port}"
        logger.debug(f"Chat shim listening on {self.base_url}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5)
        if self._socket is not None:
            self._socket.close()


class ChatRepl:
    """Read-eval loop over a ``ChatSession`` with slash commands."""

    def __init__(
        self,
        session: ChatSession,
        console: Console,
        read_input: Optional[Callable[[], Awaitable[str]]] = None,
    ):
        self.session = session
        self.console = console
        self._read_input = read_input or self._prompt

    async def _prompt(self) -> str:
        return await asyncio.to_thread(self.console.input, "[cyan]> [/cyan]")

    def print_welcome(self) -> None:
        self.console.print()
        self.console.print(f"  [bold]messages-shim chat[/bold]  [dim]model {self.session.model}[/dim]")
        self.console.print()
        self.console.print("  [dim]Commands:[/dim]")
        for command, description in COMMAND_HELP:
            self.console.print(f"    [dim]{command:<9} - {description}[/dim]")
        self.console.print()
        self.console.print("  [dim]Start typing to chat...[/dim]")
        self.console.print()

    def print_tools(self) -> None:
        table = Table(title="Available Tools", show_header=True, header_style="bold")
        table.add_column("Tool", style="yellow")
        table.add_column("Description", style="dim")
        for tool in self.session.tools.values():
            table.add_row(tool.name, tool.description)
        self.console.print()
        self.console.print(table)
        self.console.print()

    def handle_command(self, user_input: str) -> bool:
        """Handle a slash command.

        Returns:
            True if the loop should continue, False if it should exit
        """
        command = user_input.split()[0].lower()

        if command in EXIT_COMMANDS:
            self.console.print("\n[dim]Goodbye![/dim]\n")
            return False

        if command in HELP_COMMANDS:
            self.print_welcome()
        elif command in CLEAR_COMMANDS:
            self.session.clear()
            self.console.print("\n[magenta]Starting fresh conversation.[/magenta]\n")
        elif command == "/tools":
            self.print_tools()
        else:
            self.console.print(f"\nUnknown command: {user_input}", style="red", markup=False)
            self.console.print("[dim]Type /help for available commands[/dim]\n")
        return True

    async def run(self) -> None:
        while True:
            try:
                user_input = (await self._read_input()).strip()
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye![/dim]")
                return

            if not user_input:
                continue
            if user_input.startswith("/"):
                if not self.handle_command(user_input):
                    return
                continue

            try:
                await self.session.send(user_input)
            except ChatError as exc:
                self.console.print(f"\nError: {exc.message}\n", style="red", markup=False)
            except httpx.HTTPError as exc:
                self.console.print(f"\nError: {type(exc).__name__}: {exc}\n", style="red", markup=False)
            self.console.print()


def run_chat(settings: ShimSettings, console: Optional[Console] = None) -> int:
    """Serve the shim on a local port and chat with it until the user exits."""
    console = console or Console()
    app = create_app(settings)

    async def _chat(base_url: str) -> None:
        timeout = httpx.Timeout(settings.timeout, connect=10.0)
        # Loopback only; proxy settings from the environment must not apply
        async with httpx.AsyncClient(base_url=base_url, timeout=timeout, trust_env=False) as client:
            session = ChatSession(client, console, model=settings.model, tools=default_tools(Path.cwd()))
            repl = ChatRepl(session, console)
            repl.print_welcome()
            await repl.run()

    with ShimServer(app) as server:
        asyncio.run(_chat(server.base_url))
    return 0
