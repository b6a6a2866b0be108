"""Step that creates the build container."""

import logging
from typing import Optional

from pvelxc.cluster.base import ClusterClient, VmRef
from pvelxc.exceptions import (
    AmbiguousTargetError,
    ClusterError,
    ConfigurationError,
    NotFoundError,
    is_duplicate_id_error,
)
from pvelxc.models.config import BuildConfig
from pvelxc.models.container import build_container_spec
from pvelxc.state import BuildState
from pvelxc.steps.base import Step, StepAction


logger = logging.getLogger(__name__)

MAX_DUPLICATE_ID_RETRIES = 3


async def get_existing_instance(config: BuildConfig, client: ClusterClient) -> Optional[VmRef]:
    """Find an existing instance matching the configured vm_id or hostname.

    Returns ``None`` when nothing matches. Raises ``AmbiguousTargetError``
    when more than one instance carries the hostname.
    """
    if config.vm_id:
        logger.info(f"looking up VM with ID {config.vm_id}")
        try:
            vm_ref = await client.get_vm_ref_by_id(config.vm_id)
        except NotFoundError as e:
            logger.info(str(e))
            return None
        logger.info(f"found VM with ID {vm_ref.vmid}")
    else:
        logger.info(f"looking up VMs with name '{config.hostname}'")
        try:
            vm_refs = await client.get_vm_refs_by_name(config.hostname)
        except NotFoundError as e:
            logger.info(str(e))
            return None
        if len(vm_refs) > 1:
            raise AmbiguousTargetError(config.hostname, [r.vmid for r in vm_refs])
        vm_ref = vm_refs[0]
        logger.info(f"found VM with name '{config.hostname}' (ID: {vm_ref.vmid})")
        
    vm_config = await client.get_vm_config(vm_ref)
    if not vm_config.get("template"):
        logger.warning(
            f"found matching VM (ID: {vm_ref.vmid}, name: {vm_config.get('hostname')}), "
            "but it is not a template, will continue either way"
        )
    return vm_ref


class StepCreateContainer(Step):
    """Resolve a vmid, optionally replace an existing artifact, and create the container."""
    
    name = "create"
    
    async def run(self, state: BuildState) -> StepAction:
        ui = state.require("ui")
        client: ClusterClient = state.require("client")
        config: BuildConfig = state.require("config")
        
        ui.say("Creating LXC container")
        
        try:
            spec = build_container_spec(config)
        except ConfigurationError as e:
            return self.halt(state, e)
            
        if config.force or state.force:
            ui.say("Force set, checking for existing artifact on PVE cluster")
            action = await self._replace_existing(state, client, config)
            if action is not None:
                return action
                
        ui.say("Checking VM id")
        last_error = None
        for attempt in range(1, MAX_DUPLICATE_ID_RETRIES + 1):
            vmid = config.vm_id
            if vmid is None:
                ui.say("No VM ID given, getting next free from Proxmox")
                try:
                    vmid = await client.get_next_id()
                except ClusterError as e:
                    return self.halt(state, e)
                    
            vm_ref = VmRef(vmid=vmid, node=config.cluster.node, pool=config.pool)
            try:
                await client.create_container(vm_ref, spec.with_vmid(vmid))
            except ClusterError as e:
                # Someone else may have claimed the id we were just handed
                if config.vm_id is None and is_duplicate_id_error(e):
                    ui.say(f"Generated VM ID {vmid} was already allocated (attempt {attempt}/{MAX_DUPLICATE_ID_RETRIES})")
                    last_error = e
                    continue
                return self.halt(state, ClusterError(f"error creating VM: {e}"))
                
            state.deposit(vm_ref=vm_ref)
            ui.say(f"Created container {vmid} on node {vm_ref.node}")
            return StepAction.CONTINUE
            
        return self.halt(state, ClusterError(f"error creating VM: {last_error}"))
        
    async def _replace_existing(
        self, state: BuildState, client: ClusterClient, config: BuildConfig
    ) -> Optional[StepAction]:
        """Stop and delete a previous artifact. Returns an action only to halt."""
        ui = state.ui
        try:
            vm_ref = await get_existing_instance(config, client)
        except (ConfigurationError, ClusterError) as e:
            return self.halt(state, e)
            
        if vm_ref is None:
            ui.say("No existing artifact found")
            return None
            
        ui.say(f"found existing VM template with ID {vm_ref.vmid} on PVE node {vm_ref.node}, deleting it")
        try:
            await client.stop_vm(vm_ref)
        except ClusterError as e:
            # Stopping an already stopped container fails; deletion decides
            ui.error(f"error stopping VM: {e}")
            
        try:
            await client.delete_vm(vm_ref)
        except ClusterError as e:
            return self.halt(state, ClusterError(f"error deleting VM template: {e}"))
            
        ui.say(f"Successfully deleted VM template {vm_ref.vmid}")
        return None
        
    async def cleanup(self, state: BuildState) -> None:
        """Destroy the container unless the build succeeded."""
        vm_ref = state.vm_ref
        # Not created, or the container is now the finished template
        if vm_ref is None or state.success:
            return
            
        client = state.client
        ui = state.ui
        
        ui.say("Stopping container")
        try:
            await client.stop_vm(vm_ref)
        except Exception as e:
            ui.error(f"Error stopping VM {vm_ref.vmid}: {e}")
            
        ui.say("Deleting container")
        try:
            await client.delete_vm(vm_ref)
        except Exception as e:
            ui.error(f"Error deleting VM {vm_ref.vmid}. Please delete it manually: {e}")
