"""Session commands: login, logout, status."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.panel import Panel

from ._common import console, fail, home_option
from ..config import load_config
from ..errors import KeyMeshError
from ..identity import LocalIdentity


def register_session_commands(main: click.Group) -> None:
    """Register login, logout and status."""

    @main.command("login")
    @home_option
    @click.option("--token", required=True, help="Session token issued by the directory.")
    @click.option("--hostname", default=None, help="Directory URL (defaults to config).")
    @click.option("--username", default=None, help="Your username, for display.")
    @click.option(
        "--private-key-file",
        default=None,
        type=click.Path(exists=True, dir_okay=False),
        help="File holding your user private key (hex) to store for this device.",
    )
    def login(home, token, hostname, username, private_key_file):
        """Start a session and prepare this device's keys."""
        home_path = Path(home).expanduser()
        identity = LocalIdentity(home_path)
        hostname = hostname or load_config(home_path).hostname

        try:
            identity.login(hostname, token, username=username)
            device_public_key = identity.ensure_device()
            user_public_key = None
            if private_key_file:
                private_key = Path(private_key_file).read_text(encoding="utf-8").strip()
                user_public_key = identity.store_user_private_key(private_key)
        except KeyMeshError as exc:
            fail(exc)
            return

        console.print(f"\n  [green]Logged in[/] to [cyan]{hostname}[/]")
        console.print(f"  Device key: [dim]{device_public_key[:16]}...[/]")
        if user_public_key:
            console.print(f"  User key stored: [dim]{user_public_key[:16]}...[/]")
        console.print("  Run [cyan]keymesh sync[/cyan] to distribute keys.\n")

    @main.command("logout")
    @home_option
    def logout(home):
        """Forget the current session (device keys are kept)."""
        identity = LocalIdentity(Path(home).expanduser())
        if identity.logout():
            console.print("  [green]Logged out.[/]")
        else:
            console.print("  [dim]No active session.[/]")

    @main.command("status")
    @home_option
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def status(home, json_out):
        """Show session, device and organization selection."""
        home_path = Path(home).expanduser()
        identity = LocalIdentity(home_path)
        session = identity.session()
        has_device = identity.has_device()

        try:
            has_user_key = identity.user_private_key() is not None
        except KeyMeshError:
            has_user_key = False

        data = {
            "home": str(home_path),
            "logged_in": session is not None,
            "hostname": session.hostname if session else None,
            "username": session.username if session else None,
            "organization_id": session.organization_id if session else None,
            "device_public_key": identity.device_public_key() if has_device else None,
            "user_key_stored": has_user_key,
        }

        if json_out:
            click.echo(json.dumps(data, indent=2))
            return

        console.print()
        console.print(
            Panel(
                f"Session: {'[green]active[/]' if session else '[yellow]none[/]'}\n"
                f"Directory: [cyan]{data['hostname'] or '-'}[/]\n"
                f"User: [bold]{data['username'] or '-'}[/]\n"
                f"Organization: {data['organization_id'] or '[dim]none selected[/]'}\n"
                f"Device key: {'[green]present[/]' if has_device else '[yellow]missing[/]'}\n"
                f"User key: {'[green]stored[/]' if has_user_key else '[yellow]missing[/]'}",
                title="KeyMesh",
                border_style="cyan",
            )
        )
        console.print()
