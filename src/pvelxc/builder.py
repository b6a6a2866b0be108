"""Build orchestration."""

import asyncio
import logging
import signal
from typing import List, Optional

from pvelxc.artifact import Artifact
from pvelxc.cluster.base import ClusterClient
from pvelxc.cluster.proxmox import ProxmoxClient
from pvelxc.hooks import ProvisionerChain, ProvisionHook
from pvelxc.models.config import BuildConfig
from pvelxc.state import BuildState
from pvelxc.steps import (
    Step,
    StepConnect,
    StepCreateContainer,
    StepFinalize,
    StepGetContainerIpAddr,
    StepProvision,
    StepRunner,
    StepStartContainer,
    StepSuccess,
)
from pvelxc.ui import BuildUi


logger = logging.getLogger(__name__)

BUILDER_ID = "pvelxc.proxmox-lxc"


class Builder:
    """Builds one LXC container from configuration."""
    
    def __init__(
        self,
        config: BuildConfig,
        client: Optional[ClusterClient] = None,
        hook: Optional[ProvisionHook] = None,
        ui: Optional[BuildUi] = None,
    ):
        """Initialize the builder.

        ``client`` defaults to a ``ProxmoxClient`` for the configured cluster,
        ``hook`` to the configured provisioners.
        """
        self.config = config
        self.client = client
        self.ui = ui or BuildUi(config.hostname)
        self.hook = hook or ProvisionerChain.from_config(config.provisioners, ui=self.ui)
        
    def steps(self) -> List[Step]:
        """Steps of a build, in order."""
        return [
            StepCreateContainer(),
            StepStartContainer(),
            StepConnect(),
            StepGetContainerIpAddr(),
            StepProvision(),
            StepFinalize(),
            StepSuccess(),
        ]
        
    async def _connect(self) -> ClusterClient:
        if self.client is None:
            client = ProxmoxClient.from_config(self.config.cluster)
            try:
                await client.login()
            except Exception:
                await client.close()
                raise
            self.client = client
        return self.client
        
    async def run(self, force: bool = False) -> Artifact:
        """Run the build and return its artifact.

        Raises the step error that halted the build, or
        ``BuildCancelledError`` on SIGINT/SIGTERM.
        """
        client = await self._connect()
        state = BuildState(
            config=self.config,
            client=client,
            ui=self.ui,
            hook=self.hook,
            force=force,
        )
        
        loop = asyncio.get_running_loop()
        
        def _cancel():
            logger.info("Cancellation requested, stopping after the current step")
            state.cancel()
            
        installed = []
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, _cancel)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install handler for {sig.name}")
                
        try:
            await StepRunner(self.steps()).run(state)
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await client.close()
            
        self.ui.say(f"Build finished, container {state.vm_ref.vmid} kept")
        return Artifact(
            builder_id=BUILDER_ID,
            vm_ref=state.vm_ref,
            generated_data=state.generated_data or {},
        )
