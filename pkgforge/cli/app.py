"""Main Typer application — registers all CLI commands.

Entry point: ``pkgforge`` (configured via pyproject.toml [project.scripts]).

Pipeline commands, in order: prepare, build, check, package. ``run`` does
all four in one process; ``status`` and ``clean`` inspect and tidy a run.
"""

from __future__ import annotations

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from pkgforge.cli.commands.pipeline import (
    build_cmd,
    check_cmd,
    package_cmd,
    prepare_cmd,
    run_cmd,
)
from pkgforge.cli.commands.status import clean_cmd, status_cmd
from pkgforge.config import ForgeSettings
from pkgforge.core.runner import RedactingFilter

app = typer.Typer(
    name="pkgforge",
    help="pkgforge: staged, fail-fast package build pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def configure_logging(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level [default: PKGFORGE_LOG_LEVEL or INFO]."
    ),
) -> None:
    """Route library logging through Rich on stderr."""
    settings = ForgeSettings()
    level = (log_level or settings.log_level).upper()
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler.addFilter(RedactingFilter([settings.auth_token.get_secret_value()]))
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # urllib3 logs request lines, query string and token included.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# Register subcommands
app.command(name="prepare", help="Acquire + patch source, provision the deploy key.")(prepare_cmd)
app.command(name="build", help="Configure and compile under an ssh-agent session.")(build_cmd)
app.command(name="check", help="Run the test suite.")(check_cmd)
app.command(name="package", help="Install into the staging root with the license.")(package_cmd)
app.command(name="run", help="Run the whole pipeline in one process.")(run_cmd)
app.command(name="status", help="Show the state of a run.")(status_cmd)
app.command(name="clean", help="Discard unconsumed credential material.")(clean_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
