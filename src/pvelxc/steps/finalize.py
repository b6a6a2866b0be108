"""Step that turns the provisioned container into a template."""

import logging

from pvelxc.exceptions import ClusterError
from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction


logger = logging.getLogger(__name__)


class StepFinalize(Step):
    
    name = "finalize"
    
    async def run(self, state: BuildState) -> StepAction:
        config = state.require("config")
        vm_ref = state.require("vm_ref")
        client = state.client
        ui = state.ui
        
        if not config.template:
            logger.info(f"Keeping container {vm_ref.vmid} as a regular container")
            return StepAction.CONTINUE
            
        ui.say(f"Stopping container {vm_ref.vmid}")
        try:
            await client.stop_vm(vm_ref)
        except ClusterError as e:
            return self.halt(state, ClusterError(f"error stopping VM: {e}"))
            
        ui.say(f"Converting container {vm_ref.vmid} to a template")
        try:
            await client.convert_to_template(vm_ref)
        except ClusterError as e:
            return self.halt(state, ClusterError(f"error converting VM to template: {e}"))
            
        return StepAction.CONTINUE
