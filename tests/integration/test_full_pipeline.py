"""Integration tests: the whole pipeline against scripted tools.

Covers the end-to-end happy path, fail-fast behavior with no later side
effects, and sub-commands split across separate Orchestrator instances
the way separate CLI invocations would run them.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import FakeRunner, FakeTransport
from pkgforge.core.errors import CredentialError, InvalidTransitionError, PipelineError
from pkgforge.models.artifacts import BuildStatus, PatchStatus
from pkgforge.models.stages import OutcomeStatus, PipelineState


class TestHappyPath:
    def test_end_to_end(self, orchestrator, pipeline_config, fake_runner: FakeRunner):
        result = orchestrator.run()

        assert result.succeeded
        assert result.exit_code == 0
        assert [o.stage_id for o in result.outcomes] == [
            "acquire", "provision", "configure", "compile", "verify", "install",
        ]
        assert orchestrator.state == PipelineState.INSTALLED

        record = orchestrator.record
        assert record.working_tree.patch_status == PatchStatus.APPLIED
        assert record.build_tree.status == BuildStatus.TESTED
        assert record.staging_root.contains("usr/bin/spot")
        assert record.staging_root.contains("usr/share/licenses/spot/LICENSE")
        assert record.credential is None

        staging = pipeline_config.staging_dir
        assert (staging / "usr" / "bin" / "spot").is_file()
        assert (staging / "usr" / "share" / "licenses" / "spot" / "LICENSE").is_file()

        # No key material survives the run.
        key_dir = pipeline_config.key_store_path
        assert not any(p.name.startswith("id_") for p in key_dir.iterdir())

        tools = [argv[:2] for argv in fake_runner.commands]
        assert tools.index(["meson", "setup"]) < tools.index(["meson", "compile"])
        assert tools.index(["meson", "compile"]) < tools.index(["meson", "test"])
        assert tools.index(["meson", "test"]) < tools.index(["meson", "install"])

    def test_sub_commands_across_invocations(self, make_orchestrator, pipeline_config):
        for step in ("prepare", "build", "check", "package"):
            orchestrator = make_orchestrator()
            getattr(orchestrator, step)()

        final = make_orchestrator()
        assert final.state == PipelineState.INSTALLED
        assert (pipeline_config.staging_dir / "usr" / "share" / "licenses" / "spot" / "LICENSE").is_file()

    def test_waived_tests_still_package(self, make_orchestrator, fake_runner: FakeRunner):
        fake_runner.script("meson", "test", returncode=1, stdout="Fail: 1")
        orchestrator = make_orchestrator(config={"verification_fatal": False})
        result = orchestrator.run()
        assert result.succeeded
        statuses = {o.stage_id: o.status for o in result.outcomes}
        assert statuses["verify"] == OutcomeStatus.WAIVED
        assert orchestrator.state == PipelineState.INSTALLED


class TestFailFast:
    def test_empty_credential_aborts_at_provision(self, make_orchestrator, pipeline_config, fake_runner):
        orchestrator = make_orchestrator(transport=FakeTransport(key=b""))
        with pytest.raises(CredentialError) as info:
            orchestrator.run()

        assert info.value.exit_code == 11
        assert orchestrator.result.failed_stage == "provision"
        assert orchestrator.record.build_tree is None
        assert not pipeline_config.build_dir.exists()
        assert not fake_runner.ran("meson")

    @pytest.mark.parametrize(
        ("prefix", "code", "failed_stage", "not_run"),
        [
            (("git", "clone"), 128, "acquire", ("meson",)),
            (("meson", "setup"), 1, "configure", ("ssh-agent",)),
            (("meson", "compile"), 101, "compile", ("meson", "test")),
            (("meson", "test"), 3, "verify", ("meson", "install")),
        ],
    )
    def test_first_failure_wins(self, orchestrator, fake_runner: FakeRunner, prefix, code, failed_stage, not_run):
        fake_runner.script(*prefix, returncode=code)
        with pytest.raises(PipelineError) as info:
            orchestrator.run()

        assert info.value.exit_code == code
        assert orchestrator.result.exit_code == code
        assert orchestrator.result.failed_stage == failed_stage
        assert orchestrator.result.outcomes[-1].stage_id == failed_stage
        assert not fake_runner.ran(*not_run)
        assert orchestrator.record.staging_root is None

    def test_aborted_run_rejects_later_invocations(self, make_orchestrator, fake_runner: FakeRunner):
        fake_runner.script("meson", "setup", returncode=1)
        first = make_orchestrator()
        first.prepare()
        with pytest.raises(PipelineError):
            first.build()

        later = make_orchestrator()
        with pytest.raises(InvalidTransitionError, match="aborted at configure") as info:
            later.check()
        assert info.value.exit_code == 2

    def test_out_of_order_sub_command(self, orchestrator, fake_runner: FakeRunner):
        with pytest.raises(InvalidTransitionError) as info:
            orchestrator.build()
        assert info.value.exit_code == 2
        assert fake_runner.calls == []

    def test_failed_compile_leaves_no_key(self, orchestrator, pipeline_config, fake_runner: FakeRunner):
        fake_runner.script("meson", "compile", returncode=101, stderr="Permission denied (publickey)")
        with pytest.raises(PipelineError):
            orchestrator.run()
        key_dir: Path = pipeline_config.key_store_path
        assert not any(p.name.startswith("id_") for p in key_dir.iterdir())
        assert fake_runner.ran("ssh-agent", "-k")
