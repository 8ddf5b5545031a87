"""Error taxonomy: one terminal error per stage.

Every error carries the exit code the pipeline process should exit with.
When an external tool failed, that is the tool's own status, unchanged.
Errors with no underlying tool status fall back to the class default.
"""

from __future__ import annotations

from enum import Enum


def normalize_exit_code(returncode: int) -> int:
    """Map a subprocess return code onto a process exit status.

    Negative codes (killed by signal N) become 128+N, as a shell reports them.
    """
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


class PipelineError(RuntimeError):
    """Base class for every pipeline failure."""

    default_exit_code: int = 1
    stage: str | None = None

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        output: str = "",
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.output = output
        if stage is not None:
            self.stage = stage
        if exit_code is None or exit_code == 0:
            self.exit_code = self.default_exit_code
        else:
            self.exit_code = normalize_exit_code(exit_code)


class SourceError(PipelineError):
    default_exit_code = 10
    stage = "acquire"


class CredentialError(PipelineError):
    default_exit_code = 11
    stage = "provision"


class ConfigurationError(PipelineError):
    default_exit_code = 12
    stage = "configure"


class CompileFailureKind(str, Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    SOURCE = "source"


class CompileError(PipelineError):
    """Compile failed.

    ``kind`` separates transient network failures (a private dependency
    could not be fetched) from authentication and genuine source defects.
    Only network failures are marked ``retryable``; the pipeline itself
    never retries.
    """

    default_exit_code = 13
    stage = "compile"

    def __init__(
        self,
        message: str,
        *,
        kind: CompileFailureKind = CompileFailureKind.SOURCE,
        exit_code: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message, exit_code=exit_code, output=output)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind == CompileFailureKind.NETWORK


class VerificationError(PipelineError):
    default_exit_code = 14
    stage = "verify"


class InstallError(PipelineError):
    default_exit_code = 15
    stage = "install"


class InvalidTransitionError(PipelineError):
    """A stage was invoked out of order or after the pipeline aborted."""

    default_exit_code = 2


class PipelineTimeoutError(PipelineError):
    """The pipeline-level deadline expired during an external call."""

    default_exit_code = 124
