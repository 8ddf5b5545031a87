"""Verification: run the project's test suite with ``meson test``."""

from __future__ import annotations

import logging
import time
from typing import Any, ClassVar

from pkgforge.core.errors import VerificationError
from pkgforge.core.runner import CommandRunner, tail
from pkgforge.models.artifacts import BuildStatus, BuildTree
from pkgforge.models.config import PipelineConfig, TimeoutPolicy
from pkgforge.models.record import PipelineRecord
from pkgforge.models.results import StageOutcome
from pkgforge.models.stages import OutcomeStatus
from pkgforge.stages.base import BaseStage

logger = logging.getLogger(__name__)


class Verifier(BaseStage):
    """Moves the BuildTree to ``tested``.

    Test infrastructure is outside this pipeline's control, so a failing
    suite can be waived (``verification_fatal=False``) and the suite can
    be skipped altogether (``run_tests=False``).
    """

    error_type: ClassVar[type[VerificationError]] = VerificationError

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    @property
    def stage_id(self) -> str:
        return "verify"

    @property
    def display_name(self) -> str:
        return "Verification"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["config"]
        record: PipelineRecord = run_context["record"]
        if record.build_tree is None:
            raise VerificationError("no compiled build tree")
        build_tree = record.build_tree

        if not config.run_tests:
            logger.warning("test suite disabled; skipping verification")
            build_tree.status = BuildStatus.TESTED
            return {
                "build_tree": build_tree,
                "_status": OutcomeStatus.SKIPPED,
                "_message": "tests disabled",
            }

        try:
            outcome = self.verify(build_tree, config.timeout_policy)
        except VerificationError as exc:
            if config.verification_fatal:
                raise
            logger.warning("test failures waived: %s", exc.message)
            build_tree.status = BuildStatus.TESTED
            return {
                "build_tree": build_tree,
                "_status": OutcomeStatus.WAIVED,
                "_exit_status": exc.exit_code,
                "_message": "test failures waived",
            }
        return {"build_tree": build_tree, "_message": outcome.message}

    def verify(self, build_tree: BuildTree, timeout_policy: TimeoutPolicy) -> StageOutcome:
        if build_tree.status != BuildStatus.COMPILED:
            raise VerificationError(
                f"build tree is {build_tree.status.value}, expected compiled"
            )
        started = time.monotonic()
        result = self._runner.run([
            "meson",
            "test",
            "-C",
            str(build_tree.root),
            "--print-errorlogs",
            f"--timeout-multiplier={timeout_policy.meson_argument()}",
        ])
        if not result.ok:
            raise VerificationError(
                f"test suite failed:\n{tail(result.output)}",
                exit_code=result.returncode,
                output=result.output,
            )
        build_tree.status = BuildStatus.TESTED
        policy = "unbounded" if timeout_policy.unbounded else f"x{timeout_policy.meson_argument()}"
        return StageOutcome(
            stage_id=self.stage_id,
            status=OutcomeStatus.PASSED,
            duration_seconds=time.monotonic() - started,
            message=f"tests passed (timeouts {policy})",
        )
