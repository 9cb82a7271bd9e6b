"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the ``--home`` option every command
takes, and the error printer used by every command group.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from .. import KEYMESH_HOME
from ..config import load_config, resolve_home
from ..errors import KeyMeshError

console = Console()
logger = logging.getLogger("keymesh.cli")

__all__ = ["KEYMESH_HOME", "configure_logging", "console", "fail", "home_option", "logger"]

LOG_FORMAT = "%(name)s: %(message)s"


def configure_logging(home: Path, verbose: int = 0) -> None:
    """Set up root logging for a command run against ``home``.

    Args:
        home: KeyMesh home whose config.yaml supplies the default level.
        verbose: Count of ``-v`` flags; overrides the configured level.
    """
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = load_config(home).log_level
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _apply_home(ctx: click.Context, param: click.Parameter, value: str) -> str:
    verbose = ctx.find_root().params.get("verbose", 0)
    configure_logging(resolve_home(value), verbose)
    return value


def home_option(func):
    """``--home`` option that also applies that home's logging config."""
    return click.option(
        "--home",
        default=KEYMESH_HOME,
        type=click.Path(),
        callback=_apply_home,
        help="KeyMesh home directory.",
    )(func)


def fail(exc: KeyMeshError) -> None:
    """Print a KeyMesh error with its hint and exit with status 1.

    Args:
        exc: The error to report.
    """
    console.print(f"[bold red]Error:[/] {escape(exc.message)}")
    if exc.hint:
        console.print(f"  [dim]{escape(exc.hint)}[/]")
    sys.exit(1)
