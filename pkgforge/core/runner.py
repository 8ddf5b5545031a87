"""External command execution.

Every stage talks to the outside world through a ``CommandRunner``. The
default ``SubprocessRunner`` blocks until the tool exits and captures its
output; tests substitute a scripted runner.

A ``Deadline`` carries the optional pipeline-wide time budget into every
call. Captured output is scrubbed of registered secrets before it is
logged or handed back to callers.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from pkgforge.core.errors import PipelineTimeoutError

logger = logging.getLogger(__name__)

_REDACTED = "***"


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of each secret in *text*."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, _REDACTED)
    return text


class RedactingFilter(logging.Filter):
    """Scrub secrets from every record passing through a handler.

    Third-party loggers (urllib3 logs full request lines) do not know which
    strings are secret, so the handler does it for them.
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        scrubbed = redact(message, self._secrets)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        if record.exc_text:
            record.exc_text = redact(record.exc_text, self._secrets)
        return True


def tail(text: str, lines: int = 40) -> str:
    """Last *lines* lines of tool output, for error messages."""
    return "\n".join(text.rstrip().splitlines()[-lines:])


class Deadline:
    """Optional wall-clock budget shared by all stages of one pipeline."""

    def __init__(self, seconds: float | None = None) -> None:
        self.seconds = seconds
        self._expires_at = (
            time.monotonic() + seconds if seconds is not None else None
        )

    def remaining(self) -> float | None:
        """Seconds left, ``None`` when unbounded. Raises once expired."""
        if self._expires_at is None:
            return None
        left = self._expires_at - time.monotonic()
        if left <= 0:
            raise PipelineTimeoutError(
                f"pipeline timeout of {self.seconds:g}s expired"
            )
        return left

    def bound(self, timeout: float | None) -> float | None:
        """The smaller of *timeout* and the time remaining."""
        left = self.remaining()
        if left is None:
            return timeout
        if timeout is None:
            return left
        return min(left, timeout)


class CommandResult(BaseModel):
    """Exit status and captured output of one external invocation."""

    model_config = ConfigDict(frozen=True)

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@runtime_checkable
class CommandRunner(Protocol):
    """Anything that can run an argv and report how it went.

    ``ignore_deadline`` is for cleanup commands (killing an agent) that
    must run even after the pipeline deadline has expired.
    """

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        ignore_deadline: bool = False,
    ) -> CommandResult:
        ...


class SubprocessRunner:
    """Blocking ``subprocess.run`` with captured output.

    Parameters
    ----------
    deadline:
        Pipeline-wide time budget. Each call is bounded by what is left.
    secrets:
        Strings scrubbed from captured output before logging and returning.
    """

    def __init__(
        self,
        deadline: Deadline | None = None,
        secrets: Iterable[str] = (),
    ) -> None:
        self.deadline = deadline or Deadline()
        self._secrets: list[str] = [s for s in secrets if s]

    def add_secret(self, secret: str) -> None:
        if secret:
            self._secrets.append(secret)

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        ignore_deadline: bool = False,
    ) -> CommandResult:
        argv = [str(a) for a in argv]
        full_env = dict(os.environ)
        if env:
            full_env.update(env)

        # Teardown calls must still run after the budget is spent.
        timeout = None if ignore_deadline else self.deadline.bound(None)
        logger.info("$ %s", " ".join(argv))
        started = time.monotonic()
        try:
            completed = subprocess.run(
                argv,
                cwd=str(cwd) if cwd else None,
                env=full_env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise PipelineTimeoutError(
                f"{argv[0]} did not finish before the pipeline timeout "
                f"({self.deadline.seconds:g}s)"
            ) from exc
        except FileNotFoundError as exc:
            # Same status a shell gives for a missing command.
            return CommandResult(
                argv=argv,
                returncode=127,
                stderr=f"{argv[0]}: command not found ({exc.strerror})",
            )
        duration = time.monotonic() - started

        result = CommandResult(
            argv=argv,
            returncode=completed.returncode,
            stdout=redact(completed.stdout or "", self._secrets),
            stderr=redact(completed.stderr or "", self._secrets),
            duration_seconds=duration,
        )
        logger.debug(
            "%s exited %d after %.1fs\n%s",
            argv[0],
            result.returncode,
            duration,
            tail(result.output),
        )
        return result
