"""Stage outcome records for a single pipeline invocation."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from pkgforge.models.stages import OutcomeStatus


class StageOutcome(BaseModel):
    """What happened when one stage ran."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    status: OutcomeStatus
    exit_status: int = 0
    duration_seconds: float = 0.0
    message: str = ""
    finished_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED


class PipelineResult(BaseModel):
    """Ordered record of stage outcomes.

    An outcome can only follow a non-failed outcome; the first failure
    is always the last entry.
    """

    outcomes: list[StageOutcome] = Field(default_factory=list)

    def add(self, outcome: StageOutcome) -> StageOutcome:
        if self.outcomes and self.outcomes[-1].failed:
            raise ValueError(
                f"Cannot record {outcome.stage_id}: pipeline already failed at "
                f"{self.outcomes[-1].stage_id}"
            )
        self.outcomes.append(outcome)
        return outcome

    @property
    def succeeded(self) -> bool:
        return not any(o.failed for o in self.outcomes)

    @property
    def failed_stage(self) -> str | None:
        for outcome in self.outcomes:
            if outcome.failed:
                return outcome.stage_id
        return None

    @property
    def exit_code(self) -> int:
        """0 on success, else the first failing stage's exit status."""
        for outcome in self.outcomes:
            if outcome.failed:
                return outcome.exit_status
        return 0

    @property
    def total_duration(self) -> float:
        return sum(o.duration_seconds for o in self.outcomes)
