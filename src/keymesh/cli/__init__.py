"""
KeyMesh CLI -- keys on every device, keys for every teammate.

Each command group lives in its own module and is registered on the
main Click group here.

Entry point: keymesh.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="keymesh")
@click.option("-v", "--verbose", count=True, help="Log more (-v info, -vv debug).")
def main(verbose):
    """KeyMesh -- multi-device, multi-organization key distribution.

    Private keys stay private. The directory only sees ciphertext.
    """
    # Logging is configured by each command once its --home is known.


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .session import register_session_commands
from .device import register_device_commands
from .org import register_org_commands
from .sync_cmd import register_sync_commands
from .audit_cmd import register_audit_commands

register_session_commands(main)
register_device_commands(main)
register_org_commands(main)
register_sync_commands(main)
register_audit_commands(main)
