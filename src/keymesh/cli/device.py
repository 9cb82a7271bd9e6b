"""Device commands: init, show."""

from __future__ import annotations

import json
from pathlib import Path

import click

from ._common import console, home_option
from ..identity import LocalIdentity


def register_device_commands(main: click.Group) -> None:
    """Register the device command group."""

    @main.group()
    def device():
        """Manage this device's keypair.

        The device private key never leaves this machine. Its public
        key is registered with the directory on the next sync.
        """

    @device.command("init")
    @home_option
    def device_init(home):
        """Generate this device's keypair if it does not exist yet."""
        identity = LocalIdentity(Path(home).expanduser())
        existed = identity.has_device()
        public_key = identity.ensure_device()
        if existed:
            console.print("  [dim]Device keypair already exists.[/]")
        else:
            console.print("  [green]Device keypair generated.[/]")
        console.print(f"  Public key: [cyan]{public_key}[/]")

    @device.command("show")
    @home_option
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    def device_show(home, json_out):
        """Show this device's public key."""
        identity = LocalIdentity(Path(home).expanduser())
        if not identity.has_device():
            console.print("[yellow]No device keypair.[/] Run [cyan]keymesh device init[/cyan].")
            raise SystemExit(1)

        public_key = identity.device_public_key()
        if json_out:
            click.echo(json.dumps({"public_key": public_key}))
        else:
            console.print(f"  Public key: [cyan]{public_key}[/]")
