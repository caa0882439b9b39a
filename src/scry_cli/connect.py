# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Interactive connect flows.

Reuses a stored credential when the validator accepts it; otherwise walks
the user through the provider's sign-in options (browser OAuth with a pasted
code, GitHub device code, or a manually entered API key).
"""

import logging
from typing import Optional

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.text import Text

from scry_auth import (
    AnthropicAuthMethod,
    ChatSession,
    Credential,
    CredentialNotFoundError,
    OAuthError,
    OAuthFlowManager,
    Provider,
    ReconnectRequiredError,
    StorageError,
)
from scry_auth.device_flow import DeviceCodeFlow
from scry_auth.types import DeviceCode

from .settings import Settings

lib_logger = logging.getLogger("scry_auth")

console = Console()

ANTHROPIC_CHOICES = {
    "1": AnthropicAuthMethod.CLAUDE_PRO_MAX,
    "2": AnthropicAuthMethod.CREATE_API_KEY,
    "3": None,  # paste an existing API key
}


def show_error(title: str, message: str, out: Optional[Console] = None) -> None:
    (out or console).print(
        Panel(Text(message), title=f"[bold red]{rich_escape(title)}[/bold red]", style="red")
    )


async def resume_stored(session: ChatSession, out: Optional[Console] = None) -> bool:
    """Connect with the stored credential. False when a new sign-in is needed."""
    out = out or console
    try:
        with out.status("[bold green]Checking stored credential...[/bold green]", spinner="dots"):
            await session.connect()
        return True
    except CredentialNotFoundError:
        return False
    except ReconnectRequiredError as e:
        out.print(f"[yellow]{rich_escape(str(e))}[/yellow]")
        return False


async def connect_provider(
    session: ChatSession,
    manager: OAuthFlowManager,
    settings: Settings,
    out: Optional[Console] = None,
) -> bool:
    """Connect the session, prompting for sign-in if needed."""
    out = out or console
    provider = session.provider

    try:
        if await resume_stored(session, out):
            return True

        credential = await _negotiate(session, manager, settings, out)
        if credential is None:
            return False
        with out.status("[bold green]Verifying credential...[/bold green]", spinner="dots"):
            await session.connect(credential)
        if session.save_error:
            show_error(
                "Could not save credential",
                f"{session.save_error}\nThe credential will only be used until scry exits.",
                out,
            )
    except OAuthError as e:
        show_error(f"{provider.display_name} sign-in failed", str(e), out)
        return False
    except ReconnectRequiredError as e:
        show_error(f"{provider.display_name} rejected the credential", str(e), out)
        return False
    except StorageError as e:
        show_error("Credential storage error", str(e), out)
        return False

    out.print(f"[bold green]Connected to {provider.display_name}.[/bold green]")
    return True


async def _negotiate(
    session: ChatSession,
    manager: OAuthFlowManager,
    settings: Settings,
    out: Console,
) -> Optional[Credential]:
    provider = session.provider

    env_key = settings.env_api_key(provider)
    if env_key:
        lib_logger.info(f"Using {provider.display_name} API key from the environment")
        return manager.connect_with_api_key(provider, env_key)

    if session.plugin.supports_device_flow:
        return await _device_sign_in(session, out)

    if session.plugin.supports_pkce:
        out.print(
            Panel(
                Text.from_markup(
                    "1. Claude Pro/Max subscription\n"
                    "2. Create an API key (console account)\n"
                    "3. Enter an existing API key"
                ),
                title=f"Connect to [bold yellow]{provider.display_name}[/bold yellow]",
                style="bold blue",
            )
        )
        choice = Prompt.ask("Choose a sign-in method", choices=list(ANTHROPIC_CHOICES), default="1")
        method = ANTHROPIC_CHOICES[choice]
        if method is not None:
            return await _browser_sign_in(provider, method, manager, out)

    api_key = Prompt.ask(f"[bold]Enter your {provider.display_name} API key[/bold]", password=True)
    return manager.connect_with_api_key(provider, api_key)


async def _browser_sign_in(
    provider: Provider,
    method: AnthropicAuthMethod,
    manager: OAuthFlowManager,
    out: Console,
) -> Credential:
    session = manager.begin(provider, method)
    auth_url = session.authorization_url

    out.print(
        Panel(
            Text.from_markup(
                "1. Your browser will now open to log in and authorize the application.\n"
                "2. If it doesn't open automatically, please open the URL below manually.\n"
                "3. Paste the code shown after authorizing (it looks like code#state)."
            ),
            title=f"{provider.display_name} OAuth Setup",
            style="bold blue",
        )
    )
    out.print(f"[bold]URL:[/bold] [link={auth_url}]{rich_escape(auth_url)}[/link]\n")

    pasted = Prompt.ask("[bold]Enter authorization code[/bold]")
    with out.status("[bold green]Exchanging authorization code...[/bold green]", spinner="dots"):
        return await manager.submit_code(session, pasted)


async def _device_sign_in(session: ChatSession, out: Console) -> Credential:
    flow = DeviceCodeFlow(session.plugin, session.context.client, sleep=session.context.sleep)
    device_code = await flow.request_device_code()

    out.print(
        Panel(
            Text.from_markup("Please visit the URL below and enter the code to authorize:\n"),
            title=f"{session.provider.display_name} OAuth Setup",
            style="bold blue",
        )
    )
    url = device_code.verification_uri_complete or device_code.verification_uri
    out.print(f"[bold]URL:[/bold] {rich_escape(url)}")
    out.print(f"[bold]Code:[/bold] [bold green]{device_code.user_code}[/bold green]\n")

    def on_pending(code: DeviceCode) -> None:
        lib_logger.debug(f"Still waiting for device authorization ({code.user_code})")

    with out.status(
        f"[bold green]Waiting for you to complete authentication (code: {device_code.user_code})...[/bold green]",
        spinner="dots",
    ):
        return await flow.poll_for_token(device_code, on_pending=on_pending)
