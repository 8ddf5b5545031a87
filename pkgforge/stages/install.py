"""Staged install: ``meson install --destdir`` plus the license file."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Any, ClassVar

from pkgforge.core.errors import InstallError
from pkgforge.core.runner import CommandRunner, tail
from pkgforge.models.artifacts import BuildStatus, BuildTree, StagingRoot
from pkgforge.models.config import PipelineConfig
from pkgforge.models.record import PipelineRecord
from pkgforge.stages.base import BaseStage

logger = logging.getLogger(__name__)

LICENSE_MODE = 0o644


def license_destination(staging: Path, prefix: str, package_name: str) -> Path:
    return staging / prefix.lstrip("/") / "share" / "licenses" / package_name / "LICENSE"


class Installer(BaseStage):
    """Populates the StagingRoot. Terminal stage."""

    error_type: ClassVar[type[InstallError]] = InstallError

    def __init__(self, runner: CommandRunner, package_name: str) -> None:
        self._runner = runner
        self._package_name = package_name

    @property
    def stage_id(self) -> str:
        return "install"

    @property
    def display_name(self) -> str:
        return "Staged Install"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["config"]
        record: PipelineRecord = run_context["record"]
        if record.build_tree is None:
            raise InstallError("no build tree to install from")

        license_file = config.license_file
        if license_file is None:
            if record.working_tree is None:
                raise InstallError("no license file configured and no working tree")
            license_file = record.working_tree.license_file

        staging = StagingRoot(root=config.staging_dir)
        staging = self.install(record.build_tree, staging, license_file)
        return {
            "staging_root": staging,
            "_message": f"{len(staging.installed_files)} files in {staging.root}",
        }

    def install(
        self, build_tree: BuildTree, staging_root: StagingRoot, license_file: Path
    ) -> StagingRoot:
        license_file = Path(license_file)
        if not license_file.is_file():
            raise InstallError(f"license file {license_file} is missing")
        if build_tree.status not in (BuildStatus.COMPILED, BuildStatus.TESTED):
            raise InstallError(
                f"build tree is {build_tree.status.value}, nothing to install"
            )

        root = Path(staging_root.root)
        root.mkdir(parents=True, exist_ok=True)
        result = self._runner.run([
            "meson",
            "install",
            "-C",
            str(build_tree.root),
            "--no-rebuild",
            f"--destdir={root.resolve()}",
        ])
        if not result.ok:
            raise InstallError(
                f"meson install failed:\n{tail(result.output)}",
                exit_code=result.returncode,
                output=result.output,
            )

        prefix = build_tree.options.get("prefix", "/usr")
        target = license_destination(root, prefix, self._package_name)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(license_file, target)
        os.chmod(target, LICENSE_MODE)
        logger.info("installed license to %s", target)

        staging_root.installed_files = sorted(
            p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()
        )
        return staging_root
