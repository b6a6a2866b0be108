"""Step that boots the container when it was not started on creation."""

import logging

from pvelxc.exceptions import ClusterError
from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction


logger = logging.getLogger(__name__)


class StepStartContainer(Step):
    
    name = "start"
    
    async def run(self, state: BuildState) -> StepAction:
        config = state.require("config")
        vm_ref = state.require("vm_ref")
        
        if config.start:
            logger.debug(f"Container {vm_ref.vmid} was started on creation")
            return StepAction.CONTINUE
            
        state.ui.say(f"Starting container {vm_ref.vmid}")
        try:
            await state.client.start_vm(vm_ref)
        except ClusterError as e:
            return self.halt(state, ClusterError(f"error starting VM: {e}"))
            
        return StepAction.CONTINUE
