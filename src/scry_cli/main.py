# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import argparse
import asyncio
import signal
import webbrowser
from dataclasses import replace
from typing import Optional

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.prompt import Prompt

from scry_auth import (
    AuthError,
    ChatSession,
    CredentialStore,
    OAuthFlowManager,
    Provider,
    SessionContext,
    StorageError,
    StreamError,
    TokenChunk,
)

from .connect import connect_provider, show_error
from .logging_setup import setup_logging
from .settings import Settings, SettingsValidationError, load_settings

HELP_TEXT = """[bold]Commands[/bold]
  /connect [provider]  connect (anthropic, github_copilot, openrouter, ollama)
  /disconnect          end the connection, keep the stored credential
  /logout              end the connection and forget the stored credential
  /model <name>        switch model
  /help                show this help
  /quit                exit"""


class ChatApp:
    """The read-eval-print loop around one ChatSession at a time."""

    def __init__(self, settings: Settings, context: SessionContext, console: Console):
        self.settings = settings
        self.context = context
        self.console = console
        self.manager = OAuthFlowManager(
            context.client,
            browser_opener=webbrowser.open if settings.open_browser else None,
        )
        self.model: Optional[str] = settings.model
        self.session = self._new_session(settings.provider)

    def _new_session(self, provider: Provider) -> ChatSession:
        return ChatSession(
            provider,
            self.context,
            model=self.model,
            api_base=self.settings.api_base(provider),
        )

    async def connect(self, provider: Optional[Provider] = None) -> None:
        if provider is not None and provider != self.session.provider:
            await self.session.disconnect()
            self.session = self._new_session(provider)
        await connect_provider(self.session, self.manager, self.settings, self.console)

    async def handle_command(self, line: str) -> bool:
        """Run a slash command. Returns False when the app should exit."""
        command, _, argument = line.partition(" ")
        argument = argument.strip()

        if command in ("/quit", "/exit"):
            return False
        if command == "/help":
            self.console.print(HELP_TEXT)
        elif command == "/connect":
            provider = None
            if argument:
                try:
                    provider = Provider(argument.lower())
                except ValueError:
                    show_error("Unknown provider", argument, self.console)
                    return True
            await self.connect(provider)
        elif command == "/disconnect":
            await self.session.disconnect()
            self.console.print("[yellow]Disconnected.[/yellow]")
        elif command == "/logout":
            try:
                await self.session.logout()
            except StorageError as e:
                show_error("Could not remove credential", str(e), self.console)
            self.console.print("[yellow]Signed out.[/yellow]")
        elif command == "/model":
            if not argument:
                self.console.print(f"Current model: [bold]{self.session.active_model}[/bold]")
            else:
                self.model = argument
                self.session.model = argument
                self.console.print(f"Model set to [bold]{rich_escape(argument)}[/bold]")
        else:
            show_error("Unknown command", f"{command} (try /help)", self.console)
        return True

    async def chat(self, prompt: str) -> None:
        if not self.session.connected:
            self.console.print("[yellow]Not connected. Use /connect first.[/yellow]")
            return

        def on_event(event) -> None:
            if isinstance(event, TokenChunk):
                self.console.print(event.text, end="", markup=False, highlight=False)
            elif isinstance(event, AuthError):
                show_error("Authentication failed", event.message, self.console)
            elif isinstance(event, StreamError):
                show_error("Request failed", event.message, self.console)

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.session.cancel)
            restore_sigint = True
        except (NotImplementedError, RuntimeError):
            restore_sigint = False

        try:
            await self.session.run_turn(prompt, on_event=on_event)
        finally:
            if restore_sigint:
                loop.remove_signal_handler(signal.SIGINT)
        self.console.print()

    async def run(self) -> None:
        self.console.print(
            f"[bold]scry[/bold] - {self.session.provider.display_name} "
            f"([dim]/help for commands[/dim])"
        )
        await self.connect()

        while True:
            try:
                line = Prompt.ask("[bold cyan]>[/bold cyan]").strip()
            except (EOFError, KeyboardInterrupt):
                break
            if not line:
                continue
            if line.startswith("/"):
                if not await self.handle_command(line):
                    break
                continue
            await self.chat(line)

        await self.session.disconnect()


async def run_app(settings: Settings, console: Console) -> None:
    context = SessionContext(
        store=CredentialStore(settings.auth_file),
        http_timeout=settings.http_timeout,
    )
    async with context:
        await ChatApp(settings, context, console).run()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="scry", description="Chat with LLM providers.")
    parser.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        help="Provider to connect to (default: $SCRY_PROVIDER or anthropic)",
    )
    parser.add_argument("--model", help="Model to use (default: provider default)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    console = Console()
    args = parse_args(argv)

    try:
        settings = load_settings()
    except SettingsValidationError as e:
        show_error("Invalid configuration", str(e), console)
        return 2

    overrides = {}
    if args.provider:
        overrides["provider"] = Provider(args.provider)
    if args.model:
        overrides["model"] = args.model
    if overrides:
        settings = replace(settings, **overrides)

    setup_logging(settings.log_dir)
    try:
        asyncio.run(run_app(settings, console))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
