"""Pipeline state machine models: states, stage outcomes and guarded transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class PipelineState(str, Enum):
    """Where a pipeline run currently stands.

    Each stage moves the run forward by exactly one state.
    """

    EMPTY = "empty"
    ACQUIRED = "acquired"
    PROVISIONED = "provisioned"
    CONFIGURED = "configured"
    COMPILED = "compiled"
    VERIFIED = "verified"
    INSTALLED = "installed"


class OutcomeStatus(str, Enum):
    """Result of a single stage invocation."""

    PASSED = "passed"
    FAILED = "failed"
    WAIVED = "waived"  # verification failed but configured non-fatal
    SKIPPED = "skipped"  # verification disabled


class StageDefinition(BaseModel):
    """Defines a pipeline stage and the transition it guards."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: int
    requires: PipelineState
    produces: PipelineState


# The standard pkgforge pipeline, in execution order.
DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id="acquire",
        display_name="Source Acquisition",
        ordinal=0,
        requires=PipelineState.EMPTY,
        produces=PipelineState.ACQUIRED,
    ),
    StageDefinition(
        stage_id="provision",
        display_name="Credential Provisioning",
        ordinal=1,
        requires=PipelineState.ACQUIRED,
        produces=PipelineState.PROVISIONED,
    ),
    StageDefinition(
        stage_id="configure",
        display_name="Build Configuration",
        ordinal=2,
        requires=PipelineState.PROVISIONED,
        produces=PipelineState.CONFIGURED,
    ),
    StageDefinition(
        stage_id="compile",
        display_name="Authenticated Compile",
        ordinal=3,
        requires=PipelineState.CONFIGURED,
        produces=PipelineState.COMPILED,
    ),
    StageDefinition(
        stage_id="verify",
        display_name="Verification",
        ordinal=4,
        requires=PipelineState.COMPILED,
        produces=PipelineState.VERIFIED,
    ),
    StageDefinition(
        stage_id="install",
        display_name="Staged Install",
        ordinal=5,
        requires=PipelineState.VERIFIED,
        produces=PipelineState.INSTALLED,
    ),
]

STAGE_DEFINITIONS_BY_ID: dict[str, StageDefinition] = {
    d.stage_id: d for d in DEFAULT_STAGE_DEFINITIONS
}

# Valid state transitions, derived from the stage table.
VALID_TRANSITIONS: dict[PipelineState, PipelineState] = {
    d.requires: d.produces for d in DEFAULT_STAGE_DEFINITIONS
}
