"""Sync command: run the key distribution protocol."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.markup import escape
from rich.table import Table

from ._common import console, fail, home_option
from ..errors import KeyMeshError
from ..orchestrator import KeyDistributionOrchestrator


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command."""

    @main.command("sync")
    @home_option
    @click.option("--json-out", is_flag=True, help="Output the summary as JSON.")
    def sync(home, json_out):
        """Distribute your keys to your devices and your teammates.

        Seals your private key for every registered device, bootstraps
        organization keypairs, and grants organization keys to members
        who have published a public key.
        """
        home_path = Path(home).expanduser()

        try:
            orchestrator = KeyDistributionOrchestrator.from_home(home_path)
            if json_out:
                summary = orchestrator.run()
            else:
                with console.status("Syncing keys..."):
                    summary = orchestrator.run()
        except KeyMeshError as exc:
            fail(exc)
            return

        if json_out:
            data = summary.model_dump(mode="json")
            data["stats"] = orchestrator.stats.model_dump(mode="json")
            click.echo(json.dumps(data, indent=2))
            return

        console.print(f"\n  [green]Synced[/] as [bold]{escape(summary.username)}[/]")

        table = Table(title="Organizations", show_header=True, header_style="bold")
        table.add_column("Slug", style="cyan")
        table.add_column("Originated")
        table.add_column("Pending members", style="yellow")
        for slug in summary.organization_slugs:
            table.add_row(
                escape(slug),
                "*" if slug in orchestrator.stats.bootstrapped else "",
                escape(", ".join(summary.pending_members.get(slug, []))),
            )
        console.print(table)

        console.print(
            f"  Device grants: [bold]{orchestrator.stats.device_grants}[/]  "
            f"Team grants: [bold]{orchestrator.stats.team_grants}[/]"
        )
        if summary.emergency_kit_generated_at is None:
            console.print("  [yellow]No emergency kit generated yet.[/]")
        for slug, members in summary.pending_members.items():
            console.print(
                f"  [yellow]@{escape(slug)}:[/] {escape(', '.join(members))} "
                "must run [cyan]keymesh sync[/cyan] before they can be granted access."
            )
        console.print()
