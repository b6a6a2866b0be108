"""Proxmox VE API client."""

import asyncio
import logging
import re
import urllib.parse
from typing import Any, Dict, List, Optional

import httpx

from pvelxc.cluster.base import ClusterClient, VmRef
from pvelxc.exceptions import ClusterError, ConfigurationError, NotFoundError, TaskFailedError
from pvelxc.models.config import ClusterConfig
from pvelxc.models.container import ContainerSpec, Device


logger = logging.getLogger(__name__)

SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([KMGT]?)B?$", re.IGNORECASE)
SIZE_UNITS_GIB = {"": 1.0, "K": 1.0 / (1024 * 1024), "M": 1.0 / 1024, "G": 1.0, "T": 1024.0}


def _flag(value: Any) -> Any:
    """Proxmox expects booleans as 0/1."""
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def size_to_gib(size: str) -> str:
    """Convert a size like ``8G`` or ``512M`` to the GiB number Proxmox allocates."""
    match = SIZE_RE.match(size.strip())
    if not match:
        raise ConfigurationError(f"invalid disk size: {size}")
    gib = float(match.group(1)) * SIZE_UNITS_GIB[match.group(2).upper()]
    return f"{gib:g}"


def format_disk(dev: Device, default_storage: str = "") -> str:
    """Serialize a mount point device into a Proxmox rootfs/mpN option string."""
    volume = dev.get("volume")
    if not volume:
        storage = dev.get("storage") or default_storage
        if not storage or not dev.get("size"):
            raise ConfigurationError("mount point needs either a volume or a storage id and disk size")
        volume = f"{storage}:{size_to_gib(dev['size'])}"
        
    parts = [volume]
    for key, value in dev.items():
        if key in ("storage", "volume"):
            continue
        if key == "size" and not dev.get("volume"):
            continue
        if key == "mountoptions":
            value = ";".join(sorted(k for k, enabled in value.items() if enabled))
            if not value:
                continue
        parts.append(f"{key}={_flag(value)}")
    return ",".join(parts)


def format_net(dev: Device) -> str:
    """Serialize a network device into a Proxmox netN option string."""
    return ",".join(f"{key}={_flag(value)}" for key, value in dev.items())


def container_params(spec: ContainerSpec, vmid: int) -> Dict[str, Any]:
    """Build the form parameters for ``POST /nodes/{node}/lxc``.

    The template flag is not sent: Proxmox cannot start a template, so the
    conversion happens after provisioning.
    """
    params: Dict[str, Any] = {
        "vmid": vmid,
        "ostemplate": spec.ostemplate,
        "arch": spec.arch,
        "hostname": spec.hostname,
        "memory": spec.memory,
        "swap": spec.swap,
        "cores": spec.cores,
        "cpuunits": spec.cpu_units,
        "cmode": spec.cmode,
        "console": _flag(spec.console),
        "tty": spec.tty,
        "start": _flag(spec.start),
        "protection": _flag(spec.protection),
        "onboot": _flag(spec.on_boot),
        "unprivileged": _flag(spec.unprivileged),
        "rootfs": format_disk(spec.rootfs, spec.storage),
    }
    optional = {
        "cpulimit": spec.cpu_limit,
        "bwlimit": spec.bw_limit,
        "pool": spec.pool,
        "storage": spec.storage,
        "description": spec.description,
        "features": spec.features,
        "hookscript": spec.hookscript,
        "nameserver": spec.nameserver,
        "ostype": spec.os_type,
        "password": spec.password,
        "searchdomain": spec.search_domain,
        "ssh-public-keys": spec.ssh_public_keys,
        "startup": spec.startup,
        "tags": ",".join(spec.tags),
        "timezone": spec.timezone,
    }
    params.update({k: v for k, v in optional.items() if v})
    
    # Only meaningful when set
    if spec.restore:
        params["restore"] = 1
    if spec.unique:
        params["unique"] = 1
    if spec.ignore_unpack_errors:
        params["ignore-unpack-errors"] = 1
        
    for idx, dev in spec.mount_points.items():
        params[f"mp{idx}"] = format_disk(dev, spec.storage)
    for idx, dev in spec.networks.items():
        params[f"net{idx}"] = format_net(dev)
        
    return params


class ProxmoxClient(ClusterClient):
    """Async Proxmox VE REST client."""
    
    def __init__(
        self,
        base_url: str,
        node: str,
        username: str,
        password: Optional[str] = None,
        token: Optional[str] = None,
        verify: bool = True,
        task_timeout: float = 60.0,
        poll_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Proxmox client."""
        self.base_url = base_url.strip().rstrip("/")
        self.node = node
        self.username = username
        self.password = password
        self.token = token
        self.task_timeout = task_timeout
        self.poll_interval = poll_interval
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            verify=verify,
            timeout=30.0,
            transport=transport,
        )
        
    @classmethod
    def from_config(cls, config: ClusterConfig, **kwargs: Any) -> "ProxmoxClient":
        """Create a client from cluster configuration."""
        logger.info(f"Connecting to Proxmox URL: {config.proxmox_url}")
        return cls(
            base_url=config.proxmox_url,
            node=config.node,
            username=config.username,
            password=config.password,
            token=config.token,
            verify=not config.insecure_skip_tls_verify,
            task_timeout=config.task_timeout,
            **kwargs,
        )
        
    async def login(self) -> None:
        """Authenticate with an API token, or fall back to a password ticket."""
        if self.token:
            logger.debug("using token auth")
            self._client.headers["Authorization"] = f"PVEAPIToken={self.username}={self.token}"
            return
            
        logger.debug("using password auth")
        data = await self._request(
            "POST",
            "/access/ticket",
            data={"username": self.username, "password": self.password},
        )
        self._client.cookies.set("PVEAuthCookie", data["ticket"])
        self._client.headers["CSRFPreventionToken"] = data["CSRFPreventionToken"]
        
    async def close(self) -> None:
        """Close the HTTP session."""
        await self._client.aclose()
        
    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make an API request and unwrap the ``data`` member."""
        try:
            response = await self._client.request(method, path, data=data, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            # Proxmox puts the actual error in the reason phrase
            raise ClusterError(
                f"API error {e.response.status_code}: {e.response.reason_phrase} {e.response.text}".strip()
            ) from e
        except httpx.RequestError as e:
            raise ClusterError(f"Connection error: {e}") from e
            
        try:
            body = response.json()
        except ValueError as e:
            raise ClusterError(f"Invalid API response from {path}: {e}") from e
        if not isinstance(body, dict):
            raise ClusterError(f"Invalid API response from {path}: expected a JSON object")
        return body.get("data")
        
    async def _wait_for_task(self, upid: Any, node: str) -> None:
        """Wait for an asynchronous task to stop, raising if it did not succeed."""
        if not isinstance(upid, str) or not upid.startswith("UPID:"):
            return
            
        encoded = urllib.parse.quote(upid, safe="")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.task_timeout
        while True:
            status = await self._request("GET", f"/nodes/{node}/tasks/{encoded}/status") or {}
            if status.get("status") == "stopped":
                exitstatus = status.get("exitstatus", "")
                if exitstatus != "OK":
                    raise TaskFailedError(f"task {upid} failed: {exitstatus}")
                return
            if loop.time() >= deadline:
                raise TaskFailedError(f"task {upid} timed out after {self.task_timeout}s")
            await asyncio.sleep(self.poll_interval)
            
    def _vm_path(self, vm_ref: VmRef) -> str:
        return f"/nodes/{vm_ref.node or self.node}/{vm_ref.vm_type}/{vm_ref.vmid}"
        
    async def _list_resources(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/cluster/resources", params={"type": "vm"}) or []
        
    @staticmethod
    def _to_vm_ref(resource: Dict[str, Any]) -> VmRef:
        return VmRef(
            vmid=int(resource["vmid"]),
            node=resource.get("node", ""),
            pool=resource.get("pool", ""),
            vm_type=resource.get("type", "lxc"),
        )
        
    async def create_container(self, vm_ref: VmRef, spec: ContainerSpec) -> None:
        """Create the container and wait for the task to finish."""
        node = vm_ref.node or self.node
        logger.debug(f"Creating container {vm_ref.vmid} on node {node}")
        upid = await self._request("POST", f"/nodes/{node}/lxc", data=container_params(spec, vm_ref.vmid))
        await self._wait_for_task(upid, node)
        
    async def get_vm_ref_by_id(self, vmid: int) -> VmRef:
        for resource in await self._list_resources():
            if int(resource.get("vmid", 0)) == vmid:
                return self._to_vm_ref(resource)
        raise NotFoundError(f"vm '{vmid}' not found")
        
    async def get_vm_refs_by_name(self, name: str) -> List[VmRef]:
        refs = [
            self._to_vm_ref(resource)
            for resource in await self._list_resources()
            if resource.get("name") == name
        ]
        if not refs:
            raise NotFoundError(f"vm '{name}' not found")
        return refs
        
    async def get_vm_config(self, vm_ref: VmRef) -> Dict[str, Any]:
        return await self._request("GET", f"{self._vm_path(vm_ref)}/config") or {}
        
    async def get_next_id(self, hint: Optional[int] = None) -> int:
        params = {"vmid": hint} if hint else None
        return int(await self._request("GET", "/cluster/nextid", params=params))
        
    async def start_vm(self, vm_ref: VmRef) -> None:
        upid = await self._request("POST", f"{self._vm_path(vm_ref)}/status/start")
        await self._wait_for_task(upid, vm_ref.node or self.node)
        
    async def stop_vm(self, vm_ref: VmRef) -> None:
        upid = await self._request("POST", f"{self._vm_path(vm_ref)}/status/stop")
        await self._wait_for_task(upid, vm_ref.node or self.node)
        
    async def delete_vm(self, vm_ref: VmRef) -> None:
        upid = await self._request("DELETE", self._vm_path(vm_ref))
        await self._wait_for_task(upid, vm_ref.node or self.node)
        
    async def convert_to_template(self, vm_ref: VmRef) -> None:
        upid = await self._request("POST", f"{self._vm_path(vm_ref)}/template")
        await self._wait_for_task(upid, vm_ref.node or self.node)
