"""``pkgforge status`` and ``pkgforge clean``."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from pkgforge.cli.commands.pipeline import (
    BuilddirOption,
    DestdirOption,
    WorkdirOption,
    make_orchestrator,
)
from pkgforge.monitor.renderer import ResultRenderer

console = Console()


def status_cmd(
    workdir: Optional[Path] = WorkdirOption,
    builddir: Optional[Path] = BuilddirOption,
    destdir: Optional[Path] = DestdirOption,
) -> None:
    """Show where the run under WORKDIR stands."""
    orchestrator = make_orchestrator(workdir, builddir, destdir)
    renderer = ResultRenderer(console=console)
    console.print(renderer.render_record(orchestrator.record))


def clean_cmd(
    workdir: Optional[Path] = WorkdirOption,
    builddir: Optional[Path] = BuilddirOption,
    destdir: Optional[Path] = DestdirOption,
) -> None:
    """Discard provisioned key material that a later stage has not consumed."""
    orchestrator = make_orchestrator(workdir, builddir, destdir)
    if orchestrator.discard_credentials():
        console.print("[green]Discarded provisioned credential.[/green]")
    else:
        console.print("[dim]No credential material to discard.[/dim]")
