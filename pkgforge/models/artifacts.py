"""Entities produced by the pipeline stages.

Each stage produces or mutates exactly one of these:

    acquire   -> WorkingTree
    provision -> CredentialBundle
    configure -> BuildTree (configured)
    compile   -> BuildTree (compiled)
    verify    -> BuildTree (tested)
    install   -> StagingRoot
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class PatchStatus(str, Enum):
    NONE = "none"
    APPLIED = "applied"


class BuildStatus(str, Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    COMPILED = "compiled"
    TESTED = "tested"


class WorkingTree(BaseModel):
    """The checked-out, patched source directory."""

    model_config = ConfigDict(frozen=True)

    root: Path
    revision: str
    patch_status: PatchStatus = PatchStatus.NONE
    applied_patches: list[str] = []

    @property
    def license_file(self) -> Path:
        return self.root / "LICENSE"


class CredentialBundle(BaseModel):
    """Where the ephemeral key lives and how ssh should route to it.

    Holds paths and routing only. The key bytes themselves are never
    part of this model, so dumping it (to logs or the state file) is safe.
    """

    model_config = ConfigDict(frozen=True)

    key_path: Path
    config_path: Path
    host_pattern: str
    hostname: str
    user: str = "git"
    agent_registered: bool = False


class BuildTree(BaseModel):
    """Out-of-source meson build directory. Mutated in place by later stages."""

    model_config = ConfigDict(validate_assignment=True)

    root: Path
    options: dict[str, str] = Field(default_factory=dict)
    status: BuildStatus = BuildStatus.UNCONFIGURED


class StagingRoot(BaseModel):
    """Alternate filesystem root the package is installed into."""

    model_config = ConfigDict(validate_assignment=True)

    root: Path
    installed_files: list[str] = Field(default_factory=list)

    def contains(self, relative: str) -> bool:
        return relative.lstrip("/") in self.installed_files
