"""Organization selection commands: select, current."""

from __future__ import annotations

from pathlib import Path

import click

from ._common import console, fail, home_option
from ..errors import KeyMeshError
from ..identity import LocalIdentity


def register_org_commands(main: click.Group) -> None:
    """Register the org command group."""

    @main.group()
    def org():
        """Choose which organization is selected by default."""

    @org.command("select")
    @click.argument("organization_id")
    @home_option
    def org_select(organization_id, home):
        """Select ORGANIZATION_ID as the default organization."""
        identity = LocalIdentity(Path(home).expanduser())
        try:
            identity.select_organization(organization_id)
        except KeyMeshError as exc:
            fail(exc)
            return
        console.print(f"  [green]Selected organization[/] [cyan]{organization_id}[/]")

    @org.command("current")
    @home_option
    def org_current(home):
        """Print the selected organization id."""
        identity = LocalIdentity(Path(home).expanduser())
        selected = identity.current_organization_selection()
        if selected:
            click.echo(selected)
        else:
            console.print("  [dim]No organization selected.[/]")
