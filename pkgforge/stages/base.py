"""Abstract base stage with enforced lifecycle.

Every concrete stage implements its own contract method (``acquire``,
``provision``, ...) plus ``execute(run_context)``, which pulls inputs from
the run context and calls that contract. The ``run_stage()`` wrapper is
**not overridable**; it enforces the lifecycle:

    log start -> execute -> time -> record outcome -> log result

A failing stage records a FAILED outcome and re-raises, so the
orchestrator never has to reconstruct what happened.
"""

from __future__ import annotations

import abc
import logging
import time
from typing import Any, ClassVar, final

from pkgforge.core.errors import PipelineError
from pkgforge.models.results import PipelineResult, StageOutcome
from pkgforge.models.stages import OutcomeStatus

logger = logging.getLogger(__name__)


class BaseStage(abc.ABC):
    """Abstract base for all pkgforge pipeline stages.

    Subclasses **must** implement:
        * ``stage_id``      — e.g. ``"compile"``; matches a StageDefinition.
        * ``display_name``  — shown in the rendered result table.
        * ``error_type``    — the stage's ``PipelineError`` subclass.
        * ``execute(run_context)`` — returns the entities this stage
          produced, keyed by ``PipelineRecord`` field name. Keys starting
          with ``_`` (``_status``, ``_exit_status``, ``_message``) shape
          the recorded outcome instead.

    Subclasses **must not** override ``run_stage()``.
    """

    error_type: ClassVar[type[PipelineError]] = PipelineError

    @property
    @abc.abstractmethod
    def stage_id(self) -> str:
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        ...

    @abc.abstractmethod
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Run the stage.

        Parameters
        ----------
        run_context:
            ``config`` (PipelineConfig) and ``record`` (PipelineRecord)
            are always present.
        """
        ...

    @final
    def run_stage(
        self, run_context: dict[str, Any], result: PipelineResult
    ) -> dict[str, Any]:
        """Execute the full stage lifecycle.  **Do not override.**

        Returns the entity updates produced by ``execute()`` with the
        underscore keys stripped.
        """
        logger.info("%s [%s] starting", self.display_name, self.stage_id)
        started = time.monotonic()

        try:
            produced = self.execute(run_context)
        except PipelineError as exc:
            if exc.stage is None:
                exc.stage = self.stage_id
            self._record_failure(result, exc, started)
            raise
        except OSError as exc:
            # Filesystem trouble inside a stage is that stage's failure.
            error = self.error_type(
                f"{self.display_name} failed: {exc.strerror or exc}"
            )
            error.stage = self.stage_id
            self._record_failure(result, error, started)
            raise error from exc

        duration = time.monotonic() - started
        outcome = StageOutcome(
            stage_id=self.stage_id,
            status=produced.pop("_status", OutcomeStatus.PASSED),
            exit_status=produced.pop("_exit_status", 0),
            message=produced.pop("_message", ""),
            duration_seconds=duration,
        )
        result.add(outcome)
        logger.info(
            "%s [%s] %s in %.1fs",
            self.display_name,
            self.stage_id,
            outcome.status.value,
            duration,
        )
        return {k: v for k, v in produced.items() if not k.startswith("_")}

    @final
    def _record_failure(
        self, result: PipelineResult, exc: PipelineError, started: float
    ) -> None:
        duration = time.monotonic() - started
        result.add(
            StageOutcome(
                stage_id=self.stage_id,
                status=OutcomeStatus.FAILED,
                exit_status=exc.exit_code,
                message=exc.message,
                duration_seconds=duration,
            )
        )
        logger.error(
            "%s [%s] failed (exit %d): %s",
            self.display_name,
            self.stage_id,
            exc.exit_code,
            exc.message,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage_id={self.stage_id!r}>"
