"""Base step interface."""

import logging
from abc import ABC, abstractmethod
from enum import Enum

from pvelxc.state import BuildState


logger = logging.getLogger(__name__)


class StepAction(Enum):
    """What the runner should do after a step."""
    CONTINUE = "continue"
    HALT = "halt"
    CANCEL = "cancel"


class Step(ABC):
    """One stage of a build. All steps must implement ``run``."""
    
    name = "step"
    
    @abstractmethod
    async def run(self, state: BuildState) -> StepAction:
        """Do the step's work, reading and depositing values on ``state``."""
        pass
        
    async def cleanup(self, state: BuildState) -> None:
        """Undo the step's work. Called in reverse order once the run ends."""
        pass
        
    def halt(self, state: BuildState, error: BaseException) -> StepAction:
        """Record ``error``, report it and stop the build."""
        logger.debug(f"Step {self.name} halting: {error}")
        state.record_error(error)
        if state.ui:
            state.ui.error(str(error))
        return StepAction.HALT
        
    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
