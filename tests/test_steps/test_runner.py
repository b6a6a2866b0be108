"""Tests for the step runner."""

import pytest
from unittest.mock import Mock

from pvelxc.exceptions import BuildCancelledError, MissingStateError, PvelxcError, StateConflictError
from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction
from pvelxc.steps.runner import StepRunner


class RecordingStep(Step):
    """Step that records run/cleanup calls into a shared journal."""
    
    def __init__(self, name, journal, action=StepAction.CONTINUE, error=None, cleanup_error=None, on_run=None):
        self.name = name
        self.journal = journal
        self.action = action
        self.error = error
        self.cleanup_error = cleanup_error
        self.on_run = on_run
        
    async def run(self, state):
        self.journal.append(f"run:{self.name}")
        if self.on_run:
            self.on_run(state)
        if self.error:
            raise self.error
        if self.action is StepAction.HALT:
            return self.halt(state, PvelxcError(f"{self.name} failed"))
        return self.action
        
    async def cleanup(self, state):
        self.journal.append(f"cleanup:{self.name}")
        if self.cleanup_error:
            raise self.cleanup_error


@pytest.fixture
def state():
    return BuildState(ui=Mock())


@pytest.mark.asyncio
class TestStepRunner:
    """Test StepRunner ordering and unwinding."""
    
    async def test_runs_all_steps_then_cleans_up_in_reverse(self, state):
        journal = []
        steps = [RecordingStep(n, journal) for n in ("a", "b", "c")]
        
        await StepRunner(steps).run(state)
        
        assert journal == [
            "run:a", "run:b", "run:c",
            "cleanup:c", "cleanup:b", "cleanup:a",
        ]
        assert state.error is None
        
    async def test_halt_stops_and_unwinds_including_halting_step(self, state):
        journal = []
        steps = [
            RecordingStep("a", journal),
            RecordingStep("b", journal, action=StepAction.HALT),
            RecordingStep("c", journal),
        ]
        
        with pytest.raises(PvelxcError, match="b failed"):
            await StepRunner(steps).run(state)
            
        assert journal == ["run:a", "run:b", "cleanup:b", "cleanup:a"]
        state.ui.error.assert_called_once_with("b failed")
        
    async def test_step_exception_is_recorded_as_halt(self, state):
        journal = []
        boom = RuntimeError("boom")
        steps = [RecordingStep("a", journal), RecordingStep("b", journal, error=boom), RecordingStep("c", journal)]
        
        with pytest.raises(RuntimeError, match="boom"):
            await StepRunner(steps).run(state)
            
        assert state.error is boom
        assert journal == ["run:a", "run:b", "cleanup:b", "cleanup:a"]
        
    async def test_cleanup_failure_does_not_stop_unwind(self, state):
        journal = []
        steps = [
            RecordingStep("a", journal),
            RecordingStep("b", journal, cleanup_error=RuntimeError("cleanup broke")),
            RecordingStep("c", journal, action=StepAction.HALT),
        ]
        
        with pytest.raises(PvelxcError, match="c failed"):
            await StepRunner(steps).run(state)
            
        assert journal == ["run:a", "run:b", "run:c", "cleanup:c", "cleanup:b", "cleanup:a"]
        state.ui.error.assert_any_call("Cleanup of b failed: cleanup broke")
        
    async def test_first_error_wins(self, state):
        journal = []
        
        def record_earlier_error(s):
            s.record_error(PvelxcError("first"))
            
        steps = [RecordingStep("a", journal, action=StepAction.HALT, on_run=record_earlier_error)]
        
        with pytest.raises(PvelxcError, match="first"):
            await StepRunner(steps).run(state)
            
    async def test_cancel_action(self, state):
        journal = []
        steps = [RecordingStep("a", journal, action=StepAction.CANCEL), RecordingStep("b", journal)]
        
        with pytest.raises(BuildCancelledError):
            await StepRunner(steps).run(state)
            
        assert state.cancelled is True
        assert journal == ["run:a", "cleanup:a"]
        
    async def test_external_cancellation_checked_between_steps(self, state):
        journal = []
        steps = [
            RecordingStep("a", journal, on_run=lambda s: s.cancel()),
            RecordingStep("b", journal),
        ]
        
        with pytest.raises(BuildCancelledError):
            await StepRunner(steps).run(state)
            
        # The running step completes; the next one never starts
        assert journal == ["run:a", "cleanup:a"]
        
    async def test_halt_without_error_records_one(self, state):
        class SilentHalt(Step):
            name = "silent"
            
            async def run(self, state):
                return StepAction.HALT
                
        with pytest.raises(PvelxcError, match="step silent halted without an error"):
            await StepRunner([SilentHalt()]).run(state)


class TestBuildState:
    """Test BuildState deposit rules."""
    
    def test_deposit_and_require(self):
        state = BuildState()
        state.deposit(container_ip="10.0.0.5")
        
        assert state.require("container_ip") == "10.0.0.5"
        
    def test_deposit_refuses_overwrite(self):
        state = BuildState()
        state.deposit(container_ip="10.0.0.5")
        
        with pytest.raises(StateConflictError):
            state.deposit(container_ip="10.0.0.6")
            
    def test_require_missing(self):
        with pytest.raises(MissingStateError):
            BuildState().require("vm_ref")
            
    def test_unknown_field(self):
        with pytest.raises(AttributeError):
            BuildState().deposit(bogus=1)
