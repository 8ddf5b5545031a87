"""Rich terminal renderer for pipeline results and run state.

Color scheme
------------
- green     : PASSED
- red       : FAILED
- magenta   : WAIVED
- dim       : SKIPPED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pkgforge.core.errors import CompileError, PipelineError
from pkgforge.core.runner import tail
from pkgforge.models.record import PipelineRecord
from pkgforge.models.results import PipelineResult
from pkgforge.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    STAGE_DEFINITIONS_BY_ID,
    OutcomeStatus,
    PipelineState,
)

_STATUS_ICONS: dict[OutcomeStatus, str] = {
    OutcomeStatus.PASSED: "[green]PASSED[/green]",
    OutcomeStatus.FAILED: "[bold red]FAILED[/bold red]",
    OutcomeStatus.WAIVED: "[magenta]WAIVED[/magenta]",
    OutcomeStatus.SKIPPED: "[dim]SKIPPED[/dim]",
}


class ResultRenderer:
    """Renders ``PipelineResult`` and ``PipelineRecord`` as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_result(self, result: PipelineResult) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Stage", min_width=24)
        table.add_column("Status", width=10, justify="center")
        table.add_column("Exit", width=6, justify="right")
        table.add_column("Duration", width=10, justify="right")
        table.add_column("Details")

        for outcome in result.outcomes:
            definition = STAGE_DEFINITIONS_BY_ID.get(outcome.stage_id)
            name = definition.display_name if definition else outcome.stage_id
            details = outcome.message.splitlines()[0] if outcome.message else ""
            table.add_row(
                name,
                _STATUS_ICONS[outcome.status],
                str(outcome.exit_status),
                f"{outcome.duration_seconds:.1f}s",
                details,
            )
        return table

    def print_result(self, result: PipelineResult) -> None:
        if not result.outcomes:
            return
        border = "green" if result.succeeded else "red"
        self.console.print(
            Panel(
                self.render_result(result),
                title="[bold]pkgforge[/bold]",
                border_style=border,
            )
        )

    def print_error(self, exc: PipelineError) -> None:
        lines = [f"[bold red]{exc.stage or 'pipeline'} failed[/bold red] (exit {exc.exit_code})"]
        if isinstance(exc, CompileError):
            hint = "transient, the whole pipeline may be retried" if exc.retryable else "not transient"
            lines.append(f"[dim]cause: {exc.kind.value} ({hint})[/dim]")
        body: list[Text] = [Text.from_markup("\n".join(lines))]
        diagnostic = tail(exc.output) if exc.output else exc.message
        if diagnostic:
            body.append(Text(""))
            body.append(Text(diagnostic))
        self.console.print(Panel(Group(*body), border_style="red"))

    def render_record(self, record: PipelineRecord) -> Panel:
        table = Table(show_header=False, expand=True, box=None)
        table.add_column("Key", style="bold", min_width=14)
        table.add_column("Value")

        order = list(PipelineState)
        current = order.index(record.state)
        for definition in DEFAULT_STAGE_DEFINITIONS:
            done = order.index(definition.produces) <= current
            if record.aborted_stage == definition.stage_id:
                mark = "[bold red]aborted[/bold red]"
            elif done:
                mark = "[green]done[/green]"
            else:
                mark = "[dim]pending[/dim]"
            table.add_row(definition.display_name, mark)

        table.add_row("", "")
        table.add_row("State", record.state.value)
        if record.working_tree:
            table.add_row("Source", f"{record.working_tree.root} @ {record.working_tree.revision[:12]}")
        if record.credential:
            table.add_row("Credential", f"[yellow]provisioned for {record.credential.host_pattern}[/yellow]")
        if record.build_tree:
            table.add_row("Build", f"{record.build_tree.root} ({record.build_tree.status.value})")
        if record.staging_root:
            table.add_row(
                "Staging",
                f"{record.staging_root.root} ({len(record.staging_root.installed_files)} files)",
            )

        border = "red" if record.aborted_stage else "cyan"
        return Panel(table, title="[bold]Pipeline State[/bold]", border_style=border)
