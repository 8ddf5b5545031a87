"""Guarded pipeline state machine.

Enforces:
- A stage only starts from the state it requires (VALID_TRANSITIONS).
- Once any stage fails the run is aborted; every later stage is rejected.
- Every transition is persisted, so separate CLI invocations see the
  same run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pkgforge.core.errors import InvalidTransitionError
from pkgforge.models.record import PipelineRecord
from pkgforge.models.stages import (
    STAGE_DEFINITIONS_BY_ID,
    PipelineState,
    StageDefinition,
)

logger = logging.getLogger(__name__)


class StageMachine:
    """Tracks and persists where a pipeline run stands.

    Parameters
    ----------
    state_path:
        JSON file holding the ``PipelineRecord``. Created on first save.
    """

    def __init__(self, state_path: Path) -> None:
        self._state_path = Path(state_path)
        self.record = self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> PipelineRecord:
        if not self._state_path.exists():
            return PipelineRecord()
        return PipelineRecord.model_validate_json(
            self._state_path.read_text(encoding="utf-8")
        )

    def save(self) -> None:
        self.record.updated_at = datetime.now(timezone.utc)
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._state_path.with_suffix(".tmp")
        tmp.write_text(self.record.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(self._state_path)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self.record.state

    @staticmethod
    def definition(stage_id: str) -> StageDefinition:
        try:
            return STAGE_DEFINITIONS_BY_ID[stage_id]
        except KeyError:
            raise KeyError(
                f"Unknown stage_id {stage_id!r}. "
                f"Registered stages: {sorted(STAGE_DEFINITIONS_BY_ID)}"
            ) from None

    def can_start(self, stage_id: str) -> tuple[bool, list[str]]:
        """Check whether *stage_id* may run now.

        Returns (can_start, blocking_reasons).
        """
        definition = self.definition(stage_id)
        reasons: list[str] = []
        if self.record.aborted_stage is not None:
            reasons.append(
                f"pipeline aborted at {self.record.aborted_stage}; start a fresh run"
            )
        if self.record.state != definition.requires:
            reasons.append(
                f"{stage_id} requires state {definition.requires.value}, "
                f"run is {self.record.state.value}"
            )
        return not reasons, reasons

    def begin(self, stage_id: str) -> StageDefinition:
        """Validate that *stage_id* may run; raise if it may not."""
        ok, reasons = self.can_start(stage_id)
        if not ok:
            raise InvalidTransitionError(
                f"Cannot run {stage_id}: " + "; ".join(reasons),
                stage=stage_id,
            )
        return self.definition(stage_id)

    def complete(self, stage_id: str, **entities: Any) -> PipelineState:
        """Move to the state *stage_id* produces, storing its entity."""
        definition = self.definition(stage_id)
        if self.record.state != definition.requires:
            raise InvalidTransitionError(
                f"Cannot complete {stage_id} from {self.record.state.value}",
                stage=stage_id,
            )
        for name, value in entities.items():
            setattr(self.record, name, value)
        logger.debug(
            "state %s->%s", self.record.state.value, definition.produces.value
        )
        self.record.state = definition.produces
        self.save()
        return self.record.state

    def abort(self, stage_id: str) -> None:
        """Mark the run failed at *stage_id*. No later stage will start."""
        self.record.aborted_stage = stage_id
        self.save()
