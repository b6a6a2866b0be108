"""Step that hands the container to the provisioning hook."""

import logging
import uuid
from typing import Any, Dict

from pvelxc.hooks import ProvisionSurface
from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction


logger = logging.getLogger(__name__)

CONN_TYPE = "pct"


def generated_data(state: BuildState) -> Dict[str, Any]:
    """Metadata describing the build container, passed to the hook."""
    vm_ref = state.vm_ref
    return {
        "ID": vm_ref.vmid,
        "Node": vm_ref.node,
        "Host": state.container_ip or "",
        "Hostname": state.config.hostname,
        "ConnType": CONN_TYPE,
        "BuildUUID": str(uuid.uuid4()),
    }


class StepProvision(Step):
    
    name = "provision"
    
    async def run(self, state: BuildState) -> StepAction:
        channel = state.require("channel")
        vm_ref = state.require("vm_ref")
        hook = state.require("hook")
        
        surface = ProvisionSurface(vm_ref, channel, state.tunnel)
        data = generated_data(state)
        
        state.ui.say("Running provisioners")
        try:
            await hook.run(surface, data)
        except Exception as e:
            return self.halt(state, e)
            
        state.deposit(generated_data=data)
        return StepAction.CONTINUE
