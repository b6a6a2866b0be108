"""Step that opens the command channel into the container."""

import asyncio
import logging
from urllib.parse import urlparse

from pvelxc.communicator.pct import PctCommunicator
from pvelxc.communicator.ssh import SSHCommunicator
from pvelxc.exceptions import RemoteCommandError
from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction


logger = logging.getLogger(__name__)

CHECK_INIT_ATTEMPTS = 10
CHECK_INIT_DELAY = 1.0


class StepConnect(Step):
    """Build the ``pct`` channel, tunnelled over SSH when an ``ssh`` block is configured.

    Without one, ``pct`` runs on this machine, which must be the Proxmox node.
    """
    
    name = "connect"
    
    async def run(self, state: BuildState) -> StepAction:
        config = state.require("config")
        vm_ref = state.require("vm_ref")
        ui = state.ui
        
        tunnel = None
        if config.ssh is not None:
            host = config.ssh.host or urlparse(config.cluster.proxmox_url).hostname
            ui.say(f"Connecting to Proxmox node {host} over SSH")
            tunnel = SSHCommunicator(host, config.ssh)
            try:
                await tunnel.connect()
            except RemoteCommandError as e:
                return self.halt(state, e)
            state.deposit(tunnel=tunnel)
            
            try:
                await tunnel.run_checked("command -v pct")
            except RemoteCommandError as e:
                return self.halt(state, RemoteCommandError(f"pct is not available on {host}: {e}"))
        else:
            logger.debug("No ssh block configured, running pct locally")
            
        channel = PctCommunicator(vm_ref, tunnel)
        state.deposit(channel=channel)
        
        ui.say("Waiting for container init")
        for attempt in range(1, CHECK_INIT_ATTEMPTS + 1):
            try:
                await channel.check_init()
                break
            except RemoteCommandError as e:
                # runlevel reports "unknown" until init is up
                if e.exit_status is None or attempt == CHECK_INIT_ATTEMPTS:
                    return self.halt(state, e)
                logger.debug(f"Container init not ready (attempt {attempt}): {e}")
                await asyncio.sleep(CHECK_INIT_DELAY)
                
        return StepAction.CONTINUE
        
    async def cleanup(self, state: BuildState) -> None:
        if state.tunnel is not None:
            logger.debug("Closing SSH tunnel")
            await state.tunnel.close()
