"""Tests for the StageMachine: guarded transitions, abort, persistence."""

from __future__ import annotations

from pathlib import Path

import pytest

from pkgforge.core.errors import InvalidTransitionError
from pkgforge.core.stage_machine import StageMachine
from pkgforge.models.artifacts import WorkingTree
from pkgforge.models.stages import PipelineState


@pytest.fixture
def machine(tmp_path: Path) -> StageMachine:
    return StageMachine(tmp_path / "state.json")


class TestStageMachine:
    def test_new_run_is_empty(self, machine: StageMachine):
        assert machine.state == PipelineState.EMPTY
        assert machine.record.aborted_stage is None

    def test_first_stage_can_start(self, machine: StageMachine):
        can, reasons = machine.can_start("acquire")
        assert can is True
        assert reasons == []

    def test_out_of_order_rejected(self, machine: StageMachine):
        with pytest.raises(InvalidTransitionError, match="requires state configured"):
            machine.begin("compile")

    def test_out_of_order_reports_reason(self, machine: StageMachine):
        can, reasons = machine.can_start("install")
        assert can is False
        assert "run is empty" in reasons[0]

    def test_complete_advances_and_stores_entity(self, machine: StageMachine, tmp_path: Path):
        tree = WorkingTree(root=tmp_path / "src", revision="abc")
        machine.begin("acquire")
        assert machine.complete("acquire", working_tree=tree) == PipelineState.ACQUIRED
        assert machine.record.working_tree == tree

    def test_complete_from_wrong_state_rejected(self, machine: StageMachine):
        with pytest.raises(InvalidTransitionError):
            machine.complete("provision")

    def test_abort_blocks_everything(self, machine: StageMachine):
        machine.begin("acquire")
        machine.complete("acquire")
        machine.abort("provision")
        with pytest.raises(InvalidTransitionError, match="aborted at provision"):
            machine.begin("provision")

    def test_state_survives_reload(self, tmp_path: Path):
        path = tmp_path / "state.json"
        first = StageMachine(path)
        first.begin("acquire")
        first.complete(
            "acquire", working_tree=WorkingTree(root=tmp_path / "src", revision="abc")
        )

        second = StageMachine(path)
        assert second.state == PipelineState.ACQUIRED
        assert second.record.working_tree.revision == "abc"

    def test_unknown_stage(self, machine: StageMachine):
        with pytest.raises(KeyError, match="Unknown stage_id"):
            machine.begin("deploy")
