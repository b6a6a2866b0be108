"""Sequential step runner with reverse-order cleanup."""

import logging
from typing import List, Sequence

from pvelxc.exceptions import BuildCancelledError, PvelxcError
from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction


logger = logging.getLogger(__name__)


class StepRunner:
    """Runs steps in order against one build state.

    Every step that was entered is pushed on a stack. When the run ends,
    whether by success, halt or cancellation, the stack is popped and each
    step's cleanup is called, most recent first. A failing cleanup is reported
    and the unwind carries on.
    """
    
    def __init__(self, steps: Sequence[Step]):
        """Initialize step runner."""
        self.steps = list(steps)
        
    async def run(self, state: BuildState) -> None:
        """Run all steps.

        Raises the first recorded error if a step halted, or
        ``BuildCancelledError`` if the build was cancelled.
        """
        entered: List[Step] = []
        cancelled = False
        
        try:
            for step in self.steps:
                if state.cancelled:
                    logger.info(f"Build cancelled, skipping {step.name} and remaining steps")
                    cancelled = True
                    break
                    
                entered.append(step)
                logger.debug(f"Running step: {step.name}")
                
                try:
                    action = await step.run(state)
                except Exception as e:
                    logger.error(f"Step {step.name} failed: {e}", exc_info=True)
                    if state.ui:
                        state.ui.error(str(e))
                    state.record_error(e)
                    action = StepAction.HALT
                    
                if action is StepAction.HALT:
                    if state.error is None:
                        state.record_error(PvelxcError(f"step {step.name} halted without an error"))
                    logger.debug(f"Step {step.name} halted the build")
                    break
                    
                if action is StepAction.CANCEL:
                    state.cancel()
                    cancelled = True
                    logger.debug(f"Step {step.name} cancelled the build")
                    break
        finally:
            await self._unwind(entered, state)
            
        if state.error is not None:
            raise state.error
        if cancelled:
            raise BuildCancelledError()
            
    async def _unwind(self, entered: List[Step], state: BuildState) -> None:
        """Call cleanup on entered steps, most recent first."""
        while entered:
            step = entered.pop()
            logger.debug(f"Cleaning up step: {step.name}")
            try:
                await step.cleanup(state)
            except Exception as e:
                logger.error(f"Cleanup of step {step.name} failed: {e}", exc_info=True)
                if state.ui:
                    state.ui.error(f"Cleanup of {step.name} failed: {e}")
