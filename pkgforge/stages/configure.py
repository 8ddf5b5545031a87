"""Build configuration: one ``meson setup`` into a fresh build directory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, ClassVar

from pkgforge.core.errors import ConfigurationError
from pkgforge.core.runner import CommandRunner, tail
from pkgforge.models.artifacts import BuildStatus, BuildTree, WorkingTree
from pkgforge.models.config import BuildOptions, PipelineConfig
from pkgforge.models.record import PipelineRecord
from pkgforge.stages.base import BaseStage

logger = logging.getLogger(__name__)


class BuildConfigurer(BaseStage):
    """Produces a configured BuildTree at *build_dir*."""

    error_type: ClassVar[type[ConfigurationError]] = ConfigurationError

    def __init__(self, runner: CommandRunner, build_dir: Path) -> None:
        self._runner = runner
        self._build_dir = Path(build_dir)

    @property
    def stage_id(self) -> str:
        return "configure"

    @property
    def display_name(self) -> str:
        return "Build Configuration"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["config"]
        record: PipelineRecord = run_context["record"]
        if record.working_tree is None:
            raise ConfigurationError("no working tree to configure")
        build_tree = self.configure(record.working_tree, config.build_options)
        return {
            "build_tree": build_tree,
            "_message": f"{config.build_options.build_type.value} build in {build_tree.root}",
        }

    def configure(self, working_tree: WorkingTree, options: BuildOptions) -> BuildTree:
        build_dir = self._build_dir
        # meson reconfigures an existing build dir silently; refuse instead.
        if build_dir.exists() and any(build_dir.iterdir()):
            raise ConfigurationError(
                f"build directory {build_dir} is not empty; "
                "configure only runs against a fresh directory"
            )
        build_dir.parent.mkdir(parents=True, exist_ok=True)

        result = self._runner.run(
            ["meson", "setup", *options.meson_arguments(), str(build_dir.resolve())],
            cwd=working_tree.root,
        )
        if not result.ok:
            raise ConfigurationError(
                f"meson setup failed:\n{tail(result.output)}",
                exit_code=result.returncode,
                output=result.output,
            )
        logger.info("configured %s with %s", build_dir, options.as_mapping())
        return BuildTree(
            root=build_dir,
            options=options.as_mapping(),
            status=BuildStatus.CONFIGURED,
        )
