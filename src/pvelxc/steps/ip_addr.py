"""Step that discovers the container's network address."""

import asyncio
import io
import logging

from pvelxc.communicator.base import RemoteCmd
from pvelxc.exceptions import RemoteCommandError
from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction


logger = logging.getLogger(__name__)

IP_ADDR_ATTEMPTS = 5
IP_ADDR_DELAY = 1.0


class StepGetContainerIpAddr(Step):
    """Poll ``lxc-info`` on the node until the container reports an address."""
    
    name = "ip_addr"
    
    async def run(self, state: BuildState) -> StepAction:
        channel = state.require("channel")
        vm_ref = state.require("vm_ref")
        ui = state.ui
        
        ui.say("Getting container IP address")
        command = f"lxc-info -n {vm_ref.vmid} -i -H"
        
        for attempt in range(1, IP_ADDR_ATTEMPTS + 1):
            stdout = io.BytesIO()
            cmd = RemoteCmd(command, stdout=stdout)
            try:
                await channel.execute(cmd, sync=True)
            except (RemoteCommandError, OSError) as e:
                return self.halt(state, RemoteCommandError(f"error getting IP address: {e}"))
                
            output = stdout.getvalue().decode("utf-8", errors="replace").rstrip()
            if output:
                ip_addr = output.splitlines()[0].strip()
                state.deposit(container_ip=ip_addr)
                ui.message(f"Container IP address: {ip_addr}")
                return StepAction.CONTINUE
                
            logger.debug(f"No IP address yet (attempt {attempt}/{IP_ADDR_ATTEMPTS})")
            if attempt < IP_ADDR_ATTEMPTS:
                await asyncio.sleep(IP_ADDR_DELAY)
                
        return self.halt(
            state, RemoteCommandError(f"failed to get IP address after {IP_ADDR_ATTEMPTS} retries")
        )
