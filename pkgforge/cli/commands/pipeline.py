"""``pkgforge prepare|build|check|package|run`` — the pipeline sub-commands.

Each sub-command resumes the run recorded under ``--workdir``, runs its
stages, prints the outcomes and exits with the first failing tool's exit
status unchanged (0 on success).
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from pkgforge.config import ForgeSettings
from pkgforge.core.errors import PipelineError
from pkgforge.core.orchestrator import Orchestrator
from pkgforge.models.config import BuildOptions, BuildType, TimeoutPolicy
from pkgforge.monitor.renderer import ResultRenderer

console = Console()

# Shared path options --------------------------------------------------------

WorkdirOption = typer.Option(
    None, "--workdir", "-w", help="Working root: checkout, key store and run state."
)
BuilddirOption = typer.Option(
    None, "--builddir", "-b", help="Out-of-source build directory [default: WORKDIR/build]."
)
DestdirOption = typer.Option(
    None, "--destdir", "-d", help="Staging root to install into [default: WORKDIR/pkg]."
)


def make_orchestrator(
    workdir: Path | None,
    builddir: Path | None,
    destdir: Path | None,
    **settings_overrides: Any,
) -> Orchestrator:
    """Resolve settings (env < CLI) and build an Orchestrator for the run."""
    overrides = {k: v for k, v in settings_overrides.items() if v is not None}
    try:
        settings = ForgeSettings(**overrides)
        config = settings.pipeline_config(
            work_root=workdir,
            build_root=builddir,
            staging_root=destdir,
        )
    except ValueError as exc:
        raise typer.BadParameter(_describe(exc)) from exc
    return Orchestrator(config, settings=settings)


def _describe(exc: ValueError) -> str:
    # Field names and messages only; input values may hold settings secrets.
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc)


def _check_timeout(value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            TimeoutPolicy.parse(value)
        except ValueError as exc:
            raise typer.BadParameter(_describe(exc)) from exc
    return value


def _check_prefix(value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            BuildOptions(prefix=value)
        except ValidationError as exc:
            raise typer.BadParameter(_describe(exc)) from exc
    return value


def _execute(orchestrator: Orchestrator, action: Callable[[], Any]) -> None:
    renderer = ResultRenderer(console=console)
    try:
        action()
    except PipelineError as exc:
        renderer.print_result(orchestrator.result)
        renderer.print_error(exc)
        raise typer.Exit(code=exc.exit_code)
    renderer.print_result(orchestrator.result)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def prepare_cmd(
    workdir: Optional[Path] = WorkdirOption,
    builddir: Optional[Path] = BuilddirOption,
    destdir: Optional[Path] = DestdirOption,
    repository_url: Optional[str] = typer.Option(
        None, "--repo", help="Repository to clone."
    ),
    revision: Optional[str] = typer.Option(
        None, "--revision", "-r", help="Pinned revision (tag or commit)."
    ),
    patch_files: Optional[list[Path]] = typer.Option(
        None, "--patch", "-p", help="Patch to apply; repeat for a patch set."
    ),
    token_endpoint: Optional[str] = typer.Option(
        None, "--endpoint", help="Credential endpoint URL (token comes from PKGFORGE_AUTH_TOKEN)."
    ),
) -> None:
    """Acquire and patch the source, then provision the deploy key."""
    orchestrator = make_orchestrator(
        workdir,
        builddir,
        destdir,
        repository_url=repository_url,
        revision=revision,
        patch_files=patch_files or None,
        token_endpoint=token_endpoint,
    )
    _execute(orchestrator, orchestrator.prepare)


def build_cmd(
    workdir: Optional[Path] = WorkdirOption,
    builddir: Optional[Path] = BuilddirOption,
    destdir: Optional[Path] = DestdirOption,
    prefix: Optional[str] = typer.Option(
        None, "--prefix", help="Install prefix.", callback=_check_prefix
    ),
    build_type: Optional[BuildType] = typer.Option(
        None, "--buildtype", help="meson build type."
    ),
    lto: Optional[bool] = typer.Option(None, "--lto/--no-lto", help="Link-time optimization."),
    pie: Optional[bool] = typer.Option(None, "--pie/--no-pie", help="Position-independent executables."),
    offline: Optional[bool] = typer.Option(
        None, "--offline/--online", help="Forbid network dependency fetches."
    ),
) -> None:
    """Configure the build tree and compile under an ssh-agent session."""
    orchestrator = make_orchestrator(
        workdir,
        builddir,
        destdir,
        prefix=prefix,
        build_type=build_type,
        lto=lto,
        pie=pie,
        offline=offline,
    )
    _execute(orchestrator, orchestrator.build)


def check_cmd(
    workdir: Optional[Path] = WorkdirOption,
    builddir: Optional[Path] = BuilddirOption,
    destdir: Optional[Path] = DestdirOption,
    timeout_multiplier: Optional[str] = typer.Option(
        None, "--timeout-multiplier", "-t", help="Per-test timeout multiplier, or 'unbounded'.",
        callback=_check_timeout,
    ),
    fatal: Optional[bool] = typer.Option(
        None, "--fatal/--non-fatal", help="Whether failing tests abort the pipeline."
    ),
    run_tests: Optional[bool] = typer.Option(
        None, "--run-tests/--skip-tests", help="Skip the test suite entirely."
    ),
) -> None:
    """Run the test suite."""
    orchestrator = make_orchestrator(
        workdir,
        builddir,
        destdir,
        test_timeout=timeout_multiplier,
        verification_fatal=fatal,
        run_tests=run_tests,
    )
    _execute(orchestrator, orchestrator.check)


def package_cmd(
    workdir: Optional[Path] = WorkdirOption,
    builddir: Optional[Path] = BuilddirOption,
    destdir: Optional[Path] = DestdirOption,
    license_file: Optional[Path] = typer.Option(
        None, "--license", help="License file [default: LICENSE in the checkout]."
    ),
) -> None:
    """Install into the staging root and add the license file."""
    orchestrator = make_orchestrator(
        workdir, builddir, destdir, license_file=license_file
    )
    _execute(orchestrator, orchestrator.package)


def run_cmd(
    workdir: Optional[Path] = WorkdirOption,
    builddir: Optional[Path] = BuilddirOption,
    destdir: Optional[Path] = DestdirOption,
    repository_url: Optional[str] = typer.Option(None, "--repo", help="Repository to clone."),
    revision: Optional[str] = typer.Option(None, "--revision", "-r", help="Pinned revision."),
    patch_files: Optional[list[Path]] = typer.Option(
        None, "--patch", "-p", help="Patch to apply; repeat for a patch set."
    ),
    pipeline_timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Overall pipeline time budget in seconds."
    ),
) -> None:
    """Run every stage, prepare through package, in one process."""
    orchestrator = make_orchestrator(
        workdir,
        builddir,
        destdir,
        repository_url=repository_url,
        revision=revision,
        patch_files=patch_files or None,
        pipeline_timeout=pipeline_timeout,
    )
    _execute(orchestrator, orchestrator.run)
