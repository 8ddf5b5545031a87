"""Pipeline orchestrator — the central coordinator for pkgforge runs.

The Orchestrator wires the StageMachine, the command runner, the key
transport and key store into the six stages and runs them strictly in
order. Any stage failure aborts the run: the failure is recorded, the run
is marked aborted so no later stage can start, and any provisioned key
material is discarded before the error propagates.
"""

from __future__ import annotations

import logging

from pkgforge.config import ForgeSettings
from pkgforge.core.errors import PipelineError
from pkgforge.core.runner import CommandRunner, Deadline, SubprocessRunner
from pkgforge.core.stage_machine import StageMachine
from pkgforge.models.config import PipelineConfig
from pkgforge.models.record import PipelineRecord
from pkgforge.models.results import PipelineResult
from pkgforge.models.stages import PipelineState
from pkgforge.stages import (
    STAGE_ORDER,
    AuthenticatedCompiler,
    BaseStage,
    BuildConfigurer,
    CredentialProvisioner,
    FileKeyStore,
    HttpKeyTransport,
    Installer,
    KeyStore,
    KeyTransport,
    SourceAcquirer,
    Verifier,
)

logger = logging.getLogger(__name__)

# CLI sub-command -> stages it runs, in order.
COMMAND_STAGES: dict[str, list[str]] = {
    "prepare": ["acquire", "provision"],
    "build": ["configure", "compile"],
    "check": ["verify"],
    "package": ["install"],
}


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    config:
        Resolved pipeline configuration.
    settings:
        Source of the credential endpoint and token. Defaults to the
        environment.
    runner / transport / key_store:
        Collaborators; real implementations are built when omitted.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        settings: ForgeSettings | None = None,
        runner: CommandRunner | None = None,
        transport: KeyTransport | None = None,
        key_store: KeyStore | None = None,
    ) -> None:
        self.config = config
        self._settings = settings or ForgeSettings()
        auth_token = self._settings.auth_token.get_secret_value()

        self.deadline = Deadline(config.pipeline_timeout)
        self.runner = runner or SubprocessRunner(self.deadline, secrets=[auth_token])
        self.transport = transport or HttpKeyTransport(
            token_param=self._settings.token_param
        )
        self.key_store = key_store or FileKeyStore(config.key_store_path)
        self.stage_machine = StageMachine(config.state_path)
        self.result = PipelineResult()

        self.stages: dict[str, BaseStage] = {
            "acquire": SourceAcquirer(self.runner, config.source_dir),
            "provision": CredentialProvisioner(
                self.transport,
                self.key_store,
                token_endpoint=self._settings.token_endpoint,
                auth_token=auth_token,
                host_pattern=config.ssh_host,
                hostname=self._settings.ssh_hostname,
                user=config.ssh_user,
                require_https=self._settings.enforce_https,
                deadline=self.deadline,
            ),
            "configure": BuildConfigurer(self.runner, config.build_dir),
            "compile": AuthenticatedCompiler(self.runner, self.key_store),
            "verify": Verifier(self.runner),
            "install": Installer(self.runner, config.package_name),
        }

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    @property
    def record(self) -> PipelineRecord:
        return self.stage_machine.record

    @property
    def state(self) -> PipelineState:
        return self.stage_machine.state

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def execute_stage(self, stage_id: str) -> PipelineState:
        """Run one stage through its guarded transition.

        Raises ``InvalidTransitionError`` when invoked out of order, or
        the stage's own ``PipelineError`` after aborting the run.
        """
        self.stage_machine.begin(stage_id)
        stage = self.stages[stage_id]
        run_context = {"config": self.config, "record": self.record}

        try:
            produced = stage.run_stage(run_context, self.result)
        except PipelineError:
            self._abort(stage_id)
            raise
        except BaseException:
            # Interrupted or crashed: still never leave a key behind.
            self.discard_credentials()
            raise

        return self.stage_machine.complete(stage_id, **produced)

    def run_command(self, command: str) -> PipelineResult:
        """Run the stages behind a CLI sub-command (prepare/build/check/package)."""
        for stage_id in COMMAND_STAGES[command]:
            self.execute_stage(stage_id)
        return self.result

    def prepare(self) -> PipelineResult:
        return self.run_command("prepare")

    def build(self) -> PipelineResult:
        return self.run_command("build")

    def check(self) -> PipelineResult:
        return self.run_command("check")

    def package(self) -> PipelineResult:
        return self.run_command("package")

    def run(self) -> PipelineResult:
        """Every stage, in one process."""
        for stage_id in STAGE_ORDER:
            self.execute_stage(stage_id)
        logger.info(
            "pipeline finished in %.1fs", self.result.total_duration
        )
        return self.result

    # ------------------------------------------------------------------
    # Credential lifecycle
    # ------------------------------------------------------------------

    def discard_credentials(self) -> bool:
        """Discard any provisioned key material. Returns True if some existed."""
        bundle = self.record.credential
        if bundle is None:
            return False
        self.key_store.discard(bundle)
        self.record.credential = None
        self.stage_machine.save()
        return True

    def _abort(self, stage_id: str) -> None:
        logger.error("pipeline aborted at %s", stage_id)
        self.stage_machine.abort(stage_id)
        self.discard_credentials()
