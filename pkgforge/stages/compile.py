"""Authenticated compile: ``meson compile`` under a short-lived ssh-agent.

The compile step fetches private cargo dependencies over ssh, so it runs
with an agent holding the provisioned key. The agent is scoped to this
stage: it is started on entry and killed on every exit path, and the key
file is discarded from the key store when the stage ends, success or not.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from types import TracebackType
from typing import Any, ClassVar

from pkgforge.core.errors import CompileError, CompileFailureKind
from pkgforge.core.runner import CommandRunner, tail
from pkgforge.models.artifacts import BuildStatus, BuildTree, CredentialBundle
from pkgforge.models.record import PipelineRecord
from pkgforge.stages.base import BaseStage
from pkgforge.stages.credentials import KeyStore

logger = logging.getLogger(__name__)

_AGENT_VAR = re.compile(r"(SSH_AUTH_SOCK|SSH_AGENT_PID)=([^;\s]+)")

# Checked in order; authentication wins over the generic fetch failure
# cargo prints around it.
_FAILURE_PATTERNS: list[tuple[CompileFailureKind, re.Pattern[str]]] = [
    (
        CompileFailureKind.AUTHENTICATION,
        re.compile(
            r"Permission denied \(publickey|Host key verification failed"
            r"|failed to authenticate|authentication required",
            re.IGNORECASE,
        ),
    ),
    (
        CompileFailureKind.NETWORK,
        re.compile(
            r"Could not resolve host|Temporary failure in name resolution"
            r"|Connection (timed out|refused|reset)|Network is unreachable"
            r"|Operation timed out|spurious network error|failed to fetch",
            re.IGNORECASE,
        ),
    ),
]


def classify_failure(output: str) -> CompileFailureKind:
    """Tell transient fetch failures apart from auth and source errors."""
    for kind, pattern in _FAILURE_PATTERNS:
        if pattern.search(output):
            return kind
    return CompileFailureKind.SOURCE


class KeyAgentSession:
    """A private ssh-agent holding exactly one key.

    Use as a context manager::

        with KeyAgentSession(runner, bundle) as agent:
            runner.run(argv, env=agent.env)
        assert not agent.active
    """

    def __init__(self, runner: CommandRunner, bundle: CredentialBundle) -> None:
        self._runner = runner
        self._bundle = bundle
        self.auth_sock: str | None = None
        self.agent_pid: str | None = None

    @property
    def active(self) -> bool:
        return self.agent_pid is not None

    @property
    def bundle(self) -> CredentialBundle:
        return self._bundle

    @property
    def registered(self) -> bool:
        return self._bundle.agent_registered

    @property
    def env(self) -> dict[str, str]:
        """Environment for processes that should authenticate via this agent."""
        if not self.active:
            return {}
        return {
            "SSH_AUTH_SOCK": self.auth_sock or "",
            "SSH_AGENT_PID": self.agent_pid or "",
            "GIT_SSH_COMMAND": f"ssh -F {Path(self._bundle.config_path).resolve()}",
            "CARGO_NET_GIT_FETCH_WITH_CLI": "true",
        }

    def __enter__(self) -> "KeyAgentSession":
        self.start()
        try:
            self.register()
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close(raise_on_error=exc_type is None)

    def start(self) -> None:
        result = self._runner.run(["ssh-agent", "-s"])
        found = dict(_AGENT_VAR.findall(result.stdout))
        if not result.ok or "SSH_AGENT_PID" not in found:
            raise CompileError(
                f"could not start ssh-agent:\n{tail(result.output)}",
                kind=CompileFailureKind.AUTHENTICATION,
                exit_code=result.returncode,
                output=result.output,
            )
        self.auth_sock = found.get("SSH_AUTH_SOCK")
        self.agent_pid = found["SSH_AGENT_PID"]
        logger.info("started ssh-agent pid %s", self.agent_pid)

    def register(self) -> None:
        result = self._runner.run(
            ["ssh-add", str(self._bundle.key_path)], env=self.env
        )
        if not result.ok:
            raise CompileError(
                f"ssh-add rejected the provisioned key:\n{tail(result.output)}",
                kind=CompileFailureKind.AUTHENTICATION,
                exit_code=result.returncode,
                output=result.output,
            )
        self._bundle = self._bundle.model_copy(update={"agent_registered": True})

    def close(self, raise_on_error: bool = False) -> None:
        if not self.active:
            return
        result = self._runner.run(
            ["ssh-agent", "-k"], env=self.env, ignore_deadline=True
        )
        if not result.ok:
            logger.error(
                "ssh-agent pid %s did not stop (exit %d)",
                self.agent_pid,
                result.returncode,
            )
            if raise_on_error:
                raise CompileError(
                    f"could not stop ssh-agent pid {self.agent_pid}",
                    kind=CompileFailureKind.AUTHENTICATION,
                    exit_code=result.returncode,
                    output=result.output,
                )
            return
        logger.info("stopped ssh-agent pid %s", self.agent_pid)
        self.agent_pid = None
        self.auth_sock = None
        self._bundle = self._bundle.model_copy(update={"agent_registered": False})


class AuthenticatedCompiler(BaseStage):
    """Moves the BuildTree to ``compiled``.

    Parameters
    ----------
    runner:
        Executes ``ssh-agent``, ``ssh-add`` and ``meson compile``.
    key_store:
        Store the credential came from; its key is discarded when the
        stage exits.
    """

    error_type: ClassVar[type[CompileError]] = CompileError

    def __init__(self, runner: CommandRunner, key_store: KeyStore) -> None:
        self._runner = runner
        self._key_store = key_store
        self.last_session: KeyAgentSession | None = None

    @property
    def stage_id(self) -> str:
        return "compile"

    @property
    def display_name(self) -> str:
        return "Authenticated Compile"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        record: PipelineRecord = run_context["record"]
        if record.build_tree is None:
            raise CompileError("no configured build tree")
        try:
            build_tree = self.compile(record.build_tree, record.credential)
        finally:
            # The credential is spent whatever happened.
            record.credential = None
        return {"build_tree": build_tree, "credential": None}

    def compile(
        self, build_tree: BuildTree, credential_bundle: CredentialBundle | None
    ) -> BuildTree:
        if build_tree.status != BuildStatus.CONFIGURED:
            raise CompileError(
                f"build tree is {build_tree.status.value}, expected configured"
            )
        if credential_bundle is None:
            raise CompileError(
                "no credential provisioned",
                kind=CompileFailureKind.AUTHENTICATION,
            )

        try:
            if not Path(credential_bundle.key_path).is_file():
                raise CompileError(
                    f"provisioned key {credential_bundle.key_path} is missing",
                    kind=CompileFailureKind.AUTHENTICATION,
                )
            session = KeyAgentSession(self._runner, credential_bundle)
            self.last_session = session
            with session:
                result = self._runner.run(
                    ["meson", "compile", "-C", str(build_tree.root)],
                    env=session.env,
                )
        finally:
            self._key_store.discard(credential_bundle)

        if not result.ok:
            kind = classify_failure(result.output)
            raise CompileError(
                f"meson compile failed ({kind.value}):\n{tail(result.output)}",
                kind=kind,
                exit_code=result.returncode,
                output=result.output,
            )
        build_tree.status = BuildStatus.COMPILED
        return build_tree
