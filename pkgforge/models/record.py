"""Persisted run record shared by the CLI sub-commands."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from pkgforge.models.artifacts import BuildTree, CredentialBundle, StagingRoot, WorkingTree
from pkgforge.models.stages import PipelineState


class PipelineRecord(BaseModel):
    """Current state of a pipeline run plus the entities produced so far.

    ``aborted_stage`` is set once any stage fails; after that no further
    transition is accepted.
    """

    state: PipelineState = PipelineState.EMPTY
    aborted_stage: str | None = None
    working_tree: WorkingTree | None = None
    credential: CredentialBundle | None = None
    build_tree: BuildTree | None = None
    staging_root: StagingRoot | None = None
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
