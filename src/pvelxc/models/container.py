"""Container specification models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pvelxc.exceptions import ConfigurationError
from pvelxc.models.config import BuildConfig, MountPointConfig, NetworkInterfaceConfig


Device = Dict[str, Any]


class ContainerSpec(BaseModel):
    """Cluster-facing description of the container to create.

    Built once per creation attempt. Only ``vmid`` changes between attempts,
    through :meth:`with_vmid`.
    """
    model_config = ConfigDict(frozen=True)
    
    vmid: Optional[int] = None
    ostemplate: str
    arch: str = "amd64"
    hostname: str
    memory: int = 512
    swap: int = 512
    cores: int = 1
    cpu_limit: Optional[int] = None
    cpu_units: int = 1024
    pool: str = ""
    storage: str = ""
    rootfs: Device
    mount_points: Dict[int, Device] = Field(default_factory=dict)
    networks: Dict[int, Device] = Field(default_factory=dict)
    
    # Lifecycle flags
    start: bool = False
    template: bool = False
    protection: bool = False
    on_boot: bool = False
    
    bw_limit: Optional[int] = None
    cmode: str = "tty"
    console: bool = True
    description: str = ""
    features: str = ""
    hookscript: str = ""
    ignore_unpack_errors: bool = False
    nameserver: str = ""
    os_type: str = ""
    password: str = ""
    restore: bool = False
    search_domain: str = ""
    ssh_public_keys: str = ""
    startup: str = ""
    tags: List[str] = Field(default_factory=list)
    timezone: str = ""
    tty: int = 2
    unique: bool = False
    unprivileged: bool = False
    
    def with_vmid(self, vmid: int) -> "ContainerSpec":
        """Return a copy of this spec targeting another vmid."""
        return self.model_copy(update={"vmid": vmid})


def _set_if_defined(dev: Device, key: str, value: Any) -> None:
    """Only emit values that were actually configured."""
    if value is None:
        return
    if isinstance(value, (str, list, dict)) and not value:
        return
    dev[key] = value


def generate_mount_points(disks: List[MountPointConfig], is_rootfs: bool = False) -> Dict[int, Device]:
    """Convert mount point configs into device parameter maps keyed by index."""
    devs: Dict[int, Device] = {}
    for idx, disk in enumerate(disks):
        dev: Device = {}
        _set_if_defined(dev, "storage", disk.storage_id)
        _set_if_defined(dev, "volume", disk.volume)
        _set_if_defined(dev, "size", disk.disk_size)
        _set_if_defined(dev, "mp", disk.path)
        _set_if_defined(dev, "mountoptions", disk.mount_options)
        _set_if_defined(dev, "acl", disk.acl)
        _set_if_defined(dev, "quota", disk.quota)
        _set_if_defined(dev, "replicate", disk.replicate)
        _set_if_defined(dev, "ro", disk.readonly)
        _set_if_defined(dev, "shared", disk.shared)
        if not is_rootfs:
            _set_if_defined(dev, "backup", disk.backup)
        devs[idx] = dev
    return devs


def generate_network_interfaces(nics: List[NetworkInterfaceConfig]) -> Dict[int, Device]:
    """Convert network interface configs into device parameter maps keyed by index."""
    devs: Dict[int, Device] = {}
    for idx, nic in enumerate(nics):
        dev: Device = {}
        _set_if_defined(dev, "name", nic.name)
        _set_if_defined(dev, "bridge", nic.bridge)
        _set_if_defined(dev, "firewall", nic.firewall)
        _set_if_defined(dev, "gw", nic.gateway_ipv4)
        _set_if_defined(dev, "gw6", nic.gateway_ipv6)
        _set_if_defined(dev, "hwaddr", nic.mac_address)
        _set_if_defined(dev, "ip", nic.ipv4_address)
        _set_if_defined(dev, "ip6", nic.ipv6_address)
        _set_if_defined(dev, "link_down", nic.link_down)
        _set_if_defined(dev, "mtu", nic.mtu)
        _set_if_defined(dev, "rate", nic.rate_mbps)
        _set_if_defined(dev, "tag", nic.tag)
        _set_if_defined(dev, "trunks", ";".join(nic.trunks))
        _set_if_defined(dev, "type", nic.type)
        devs[idx] = dev
    return devs


def build_container_spec(config: BuildConfig) -> ContainerSpec:
    """Build the cluster-facing spec from a validated configuration."""
    if config.rootfs is None:
        raise ConfigurationError("rootfs block must be specified")
        
    return ContainerSpec(
        vmid=config.vm_id,
        ostemplate=config.os_template,
        arch=config.arch,
        hostname=config.hostname,
        memory=config.memory,
        swap=config.swap,
        cores=config.cores,
        cpu_limit=config.cpu_limit,
        cpu_units=config.cpu_units,
        pool=config.pool,
        storage=config.storage,
        rootfs=generate_mount_points([config.rootfs], is_rootfs=True)[0],
        mount_points=generate_mount_points(config.mount_points),
        networks=generate_network_interfaces(config.network_interfaces),
        start=config.start,
        template=config.template,
        protection=config.protection,
        on_boot=config.on_boot,
        bw_limit=config.bw_limit,
        cmode=config.cmode,
        console=config.console,
        description=config.description,
        features=config.features,
        hookscript=config.hookscript,
        ignore_unpack_errors=config.ignore_unpack_errors,
        nameserver=config.nameserver,
        os_type=config.os_type,
        password=config.user_password,
        restore=config.restore,
        search_domain=config.search_domain,
        ssh_public_keys=config.ssh_public_keys,
        startup=config.startup,
        tags=config.tags,
        timezone=config.timezone,
        tty=config.tty,
        unique=config.unique,
        unprivileged=config.unprivileged,
    )
