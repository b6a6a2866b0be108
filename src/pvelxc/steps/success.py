"""Final step of a build."""

from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction


class StepSuccess(Step):
    """Mark the build as succeeded so earlier cleanups keep the container."""
    
    name = "success"
    
    async def run(self, state: BuildState) -> StepAction:
        state.mark_success()
        return StepAction.CONTINUE
