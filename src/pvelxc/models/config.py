"""Configuration models."""

import logging
import os
import re
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


logger = logging.getLogger(__name__)

DNS_NAME_RE = re.compile(
    r"^(?:(?:(?:[a-zA-Z0-9](?:[a-zA-Z0-9\-]*[a-zA-Z0-9])?)\.)*"
    r"(?:[A-Za-z0-9](?:[A-Za-z0-9\-]*[A-Za-z0-9])?))$"
)

# Proxmox vmids are limited to this range
MIN_VMID = 100
MAX_VMID = 999999999

CMODES = ("shell", "tty", "console")


class ClusterConfig(BaseModel):
    """Proxmox API connection settings."""
    model_config = ConfigDict(extra="ignore")
    
    proxmox_url: str = Field(..., description="Proxmox API URL, e.g. https://pve:8006/api2/json")
    username: str = Field(..., description="user@realm, or user@realm!tokenid with token auth")
    password: Optional[str] = None
    token: Optional[str] = None
    node: str = Field(..., description="Node the container is created on")
    insecure_skip_tls_verify: bool = Field(default=False)
    task_timeout: float = Field(default=60.0, description="Seconds to wait for cluster tasks")
    
    @model_validator(mode="before")
    @classmethod
    def apply_environment(cls, data: Any) -> Any:
        """Fill unset connection settings from PROXMOX_* environment variables."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for field_name, env_name in (
            ("proxmox_url", "PROXMOX_URL"),
            ("username", "PROXMOX_USERNAME"),
            ("password", "PROXMOX_PASSWORD"),
            ("token", "PROXMOX_TOKEN"),
        ):
            if not data.get(field_name) and os.environ.get(env_name):
                data[field_name] = os.environ[env_name]
        return data
        
    @field_validator("task_timeout")
    @classmethod
    def default_task_timeout(cls, v):
        """Zero or negative timeouts fall back to one minute."""
        return v if v > 0 else 60.0
        
    @model_validator(mode="after")
    def check_credentials(self):
        """Require either a password or an API token."""
        if not self.password and not self.token:
            raise ValueError("password or token must be specified")
        return self


class SSHConfig(BaseModel):
    """SSH session to the Proxmox node, used as a command tunnel."""
    model_config = ConfigDict(extra="forbid")
    
    host: Optional[str] = Field(None, description="Defaults to the host of proxmox_url")
    port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(default="root")
    password: Optional[str] = None
    private_key_file: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0)


class MountPointConfig(BaseModel):
    """Root filesystem or secondary mount point.

    Flags are tri-state: ``None`` leaves the cluster default in place.
    """
    model_config = ConfigDict(extra="forbid")
    
    storage_id: str = ""
    volume: str = ""
    path: str = ""
    disk_size: str = ""
    mount_options: Dict[str, Any] = Field(default_factory=dict)
    acl: Optional[bool] = None
    backup: Optional[bool] = None
    quota: Optional[bool] = None
    replicate: Optional[bool] = None
    readonly: Optional[bool] = None
    shared: Optional[bool] = None


class NetworkInterfaceConfig(BaseModel):
    """Container network interface."""
    model_config = ConfigDict(extra="forbid")
    
    name: str = Field(..., description="Interface name inside the container, e.g. eth0")
    bridge: str = ""
    firewall: Optional[bool] = None
    gateway_ipv4: str = ""
    gateway_ipv6: str = ""
    mac_address: str = ""
    ipv4_address: str = ""
    ipv6_address: str = ""
    link_down: Optional[bool] = None
    mtu: Optional[int] = None
    rate_mbps: Optional[float] = None
    tag: Optional[int] = None
    trunks: List[str] = Field(default_factory=list)
    type: str = "veth"


class ProvisionerConfig(BaseModel):
    """A single provisioner run against the container."""
    model_config = ConfigDict(extra="forbid")
    
    type: Literal["shell", "file"]
    inline: List[str] = Field(default_factory=list)
    environment_vars: Dict[str, str] = Field(default_factory=dict)
    source: Optional[str] = None
    destination: Optional[str] = None
    exclude: List[str] = Field(default_factory=list)
    
    @model_validator(mode="after")
    def check_required_fields(self):
        """Check the fields each provisioner type needs."""
        if self.type == "shell" and not self.inline:
            raise ValueError("shell provisioner requires inline commands")
        if self.type == "file" and (not self.source or not self.destination):
            raise ValueError("file provisioner requires source and destination")
        return self


class BuildConfig(BaseModel):
    """Validated, defaulted configuration for one container build."""
    model_config = ConfigDict(extra="ignore")
    
    cluster: ClusterConfig
    ssh: Optional[SSHConfig] = None
    log_level: str = Field(default="INFO")
    
    # Required
    os_template: str = Field(..., description="e.g. local:vztmpl/debian-12-standard_12.2-1_amd64.tar.zst")
    vm_id: Optional[int] = None
    rootfs: Optional[MountPointConfig] = None
    
    # Optional
    arch: str = "amd64"
    bw_limit: Optional[int] = None
    cmode: str = "tty"
    console: bool = True
    cores: int = 1
    cpu_limit: Optional[int] = None
    cpu_units: int = 1024
    description: str = ""
    features: str = ""
    force: bool = False
    hookscript: str = ""
    hostname: str = Field(default="", validate_default=True)
    ignore_unpack_errors: bool = False
    memory: int = 512
    mount_points: List[MountPointConfig] = Field(default_factory=list)
    nameserver: str = ""
    network_interfaces: List[NetworkInterfaceConfig] = Field(default_factory=list)
    on_boot: bool = False
    os_type: str = ""
    user_password: str = ""
    pool: str = ""
    protection: bool = False
    restore: bool = False
    search_domain: str = ""
    ssh_public_keys: str = ""
    start: bool = False
    startup: str = ""
    storage: str = ""
    swap: int = 512
    tags: List[str] = Field(default_factory=list)
    template: bool = True
    timezone: str = ""
    tty: int = 2
    unique: bool = False
    unprivileged: bool = False
    provisioners: List[ProvisionerConfig] = Field(default_factory=list)
    
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()
        
    @field_validator("arch")
    @classmethod
    def default_arch(cls, v):
        return v or "amd64"
        
    @field_validator("memory")
    @classmethod
    def default_memory(cls, v):
        if v < 16:
            logger.info(f"Memory {v} is too small, using default: 512")
            return 512
        return v
        
    @field_validator("cores")
    @classmethod
    def default_cores(cls, v):
        if v < 1:
            logger.info(f"Number of cores {v} is too small, using default: 1")
            return 1
        return v
        
    @field_validator("swap")
    @classmethod
    def default_swap(cls, v):
        if v < 0:
            logger.info(f"Swap size {v} is too small, using default: 512")
            return 512
        return v
        
    @field_validator("cmode")
    @classmethod
    def default_cmode(cls, v):
        if v not in CMODES:
            logger.info(f"Invalid console mode specified ({v}), using default: tty")
            return "tty"
        return v
        
    @field_validator("tty")
    @classmethod
    def default_tty(cls, v):
        if v <= 0 or v > 6:
            logger.info(f"Invalid TTY size specified ({v}), using default: 2")
            return 2
        return v
        
    @field_validator("cpu_units")
    @classmethod
    def default_cpu_units(cls, v):
        return v if v >= 8 else 1024
        
    @field_validator("vm_id")
    @classmethod
    def validate_vm_id(cls, v):
        """Zero means auto-allocate; anything else must be a valid Proxmox vmid."""
        if not v:
            return None
        if v < MIN_VMID or v > MAX_VMID:
            raise ValueError(f"vm_id must be in range {MIN_VMID}-{MAX_VMID}")
        return v
        
    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v):
        """Generate a unique hostname when unset, otherwise require a DNS name."""
        if not v:
            return f"pvelxc-{uuid.uuid1()}"
        if not DNS_NAME_RE.match(v):
            raise ValueError("hostname must be a valid DNS name")
        return v
        
    @model_validator(mode="after")
    def check_rootfs(self):
        """Exactly one root mount must be configured."""
        if self.rootfs is None:
            raise ValueError("rootfs block must be specified")
        return self
