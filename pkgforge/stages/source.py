"""Source acquisition: clone at a pinned revision, then apply the patch set."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, ClassVar

from pkgforge.core.errors import SourceError
from pkgforge.core.runner import CommandRunner, tail
from pkgforge.models.artifacts import PatchStatus, WorkingTree
from pkgforge.models.config import PipelineConfig
from pkgforge.stages.base import BaseStage

logger = logging.getLogger(__name__)

# Forward-only: already-applied hunks are rejected instead of reversed.
PATCH_ARGS: tuple[str, ...] = ("--forward", "--strip=1", "--fuzz=2")


class SourceAcquirer(BaseStage):
    """Materializes the WorkingTree.

    Parameters
    ----------
    runner:
        Executes ``git`` and ``patch``.
    destination:
        Fresh directory the repository is cloned into. Must not exist
        or be empty.
    """

    error_type: ClassVar[type[SourceError]] = SourceError

    def __init__(self, runner: CommandRunner, destination: Path) -> None:
        self._runner = runner
        self._destination = Path(destination)

    @property
    def stage_id(self) -> str:
        return "acquire"

    @property
    def display_name(self) -> str:
        return "Source Acquisition"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["config"]
        if config.source is None:
            raise SourceError("no source repository configured")
        tree = self.acquire(
            config.source.repository_url,
            config.source.revision,
            config.source.patch_files,
        )
        return {
            "working_tree": tree,
            "_message": f"{tree.revision[:12]} patches {tree.patch_status.value}",
        }

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def acquire(
        self,
        repository_url: str,
        revision: str,
        patch_files: Sequence[Path] = (),
    ) -> WorkingTree:
        dest = self._destination
        if dest.exists() and any(dest.iterdir()):
            raise SourceError(f"checkout directory {dest} is not empty")
        dest.parent.mkdir(parents=True, exist_ok=True)

        self._git("clone", "--quiet", repository_url, str(dest))
        self._git("checkout", "--quiet", "--detach", revision, cwd=dest)
        resolved = self._git("rev-parse", "HEAD", cwd=dest).strip()
        logger.info("checked out %s at %s", repository_url, resolved)

        applied: list[str] = []
        for patch_file in patch_files:
            self._apply_patch(dest, Path(patch_file))
            applied.append(Path(patch_file).name)

        return WorkingTree(
            root=dest,
            revision=resolved,
            patch_status=PatchStatus.APPLIED if applied else PatchStatus.NONE,
            applied_patches=applied,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _git(self, *args: str, cwd: Path | None = None) -> str:
        result = self._runner.run(["git", *args], cwd=cwd)
        if not result.ok:
            raise SourceError(
                f"git {args[0]} failed:\n{tail(result.output)}",
                exit_code=result.returncode,
                output=result.output,
            )
        return result.stdout

    def _apply_patch(self, tree: Path, patch_file: Path) -> None:
        if not patch_file.is_file():
            raise SourceError(f"patch file {patch_file} does not exist")
        result = self._runner.run(
            ["patch", *PATCH_ARGS, f"--input={patch_file.resolve()}"],
            cwd=tree,
        )
        if not result.ok:
            raise SourceError(
                f"patch {patch_file.name} does not apply:\n{tail(result.output)}",
                exit_code=result.returncode,
                output=result.output,
            )
        logger.info("applied %s", patch_file.name)
