"""pkgforge data models — all Pydantic v2."""

from pkgforge.models.artifacts import (
    BuildStatus,
    BuildTree,
    CredentialBundle,
    PatchStatus,
    StagingRoot,
    WorkingTree,
)
from pkgforge.models.config import (
    BuildOptions,
    BuildType,
    PipelineConfig,
    SourceSpec,
    TimeoutPolicy,
    WrapMode,
)
from pkgforge.models.record import PipelineRecord
from pkgforge.models.results import PipelineResult, StageOutcome
from pkgforge.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    VALID_TRANSITIONS,
    OutcomeStatus,
    PipelineState,
    StageDefinition,
)

__all__ = [
    # artifacts
    "BuildStatus",
    "BuildTree",
    "CredentialBundle",
    "PatchStatus",
    "StagingRoot",
    "WorkingTree",
    # config
    "BuildOptions",
    "BuildType",
    "PipelineConfig",
    "SourceSpec",
    "TimeoutPolicy",
    "WrapMode",
    # record / results
    "PipelineRecord",
    "PipelineResult",
    "StageOutcome",
    # stages
    "DEFAULT_STAGE_DEFINITIONS",
    "VALID_TRANSITIONS",
    "OutcomeStatus",
    "PipelineState",
    "StageDefinition",
]
