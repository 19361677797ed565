"""
Data models for ESXi cloning operations.

This module defines the data structures used throughout the ESXi cloning system.
Everything here is transient: values are resolved once at the start of a clone
and are not mutated afterwards.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Tuple
from datetime import datetime
from enum import Enum


VMFS_ROOT = "/vmfs/volumes"

# Small configuration files copied verbatim before any patching happens
CONFIG_EXTENSIONS: Tuple[str, ...] = ("vmx", "nvram", "vmsd", "vmxf", "vmdk")

# Identity lines removed from the copied .vmx so the host regenerates them
VOLATILE_KEYS: Tuple[str, ...] = (
    "ethernet0.generatedAddress",
    "uuid.location",
    "uuid.bios",
    "vc.uuid",
    "sched.swap.derivedName",
)

DNS_NOT_FOUND = "NXDOMAIN"


class CopyDirection(Enum):
    """Direction of a direct host-to-host disk copy."""

    PULL = "pull"  # destination host runs scp, reading from source
    PUSH = "push"  # source host runs scp, writing to destination


class PowerState(Enum):
    """VM power states as reported by vim-cmd."""

    POWERED_ON = "on"
    POWERED_OFF = "off"
    SUSPENDED = "suspended"
    UNKNOWN = "unknown"


class CloneStep(Enum):
    """Steps of a clone operation, in execution order."""

    RESOLVE = "resolve"
    PRECONDITIONS = "preconditions"
    COPY_CONFIGS = "copy_configs"
    PATCH_CONFIGS = "patch_configs"
    COPY_DISK = "copy_disk"
    CONVERT_DISK = "convert_disk"
    OVF_PARAMS = "ovf_params"
    REGISTER = "register"
    POWER_ON = "power_on"


@dataclass(frozen=True)
class SourceDescriptor:
    """Where the VM is cloned from."""

    server: str  # inventory name
    host: str  # network address of server
    name: str
    datastore: str

    @property
    def path(self) -> str:
        return f"{VMFS_ROOT}/{self.datastore}"

    @property
    def vm_dir(self) -> str:
        return f"{self.path}/{self.name}"

    def file_path(self, suffix: str) -> str:
        """Path of ``<name><suffix>`` inside the VM directory."""
        return f"{self.vm_dir}/{self.name}{suffix}"


@dataclass(frozen=True)
class DestinationDescriptor:
    """Where the clone is written and registered."""

    server: str
    host: str
    name: str
    description: str
    datastore: str
    network: str

    @property
    def path(self) -> str:
        return f"{VMFS_ROOT}/{self.datastore}"

    @property
    def vm_dir(self) -> str:
        return f"{self.path}/{self.name}"

    def file_path(self, suffix: str) -> str:
        return f"{self.vm_dir}/{self.name}{suffix}"


@dataclass(frozen=True)
class NetworkConfig:
    """Guest network identity handed to the first-boot customization agent."""

    hostname: str
    domain: str
    ip: str
    gateway: str
    dns_servers: Tuple[str, ...] = ()

    @property
    def dns(self) -> str:
        return ",".join(self.dns_servers)

    @property
    def ntp(self) -> str:
        return f"ntp.{self.domain}"

    @property
    def relay(self) -> str:
        return f"smtp.{self.domain}"

    @property
    def syslog(self) -> str:
        return f"log.{self.domain}"


@dataclass(frozen=True)
class OperationFlags:
    """Switches controlling how the clone is carried out."""

    direct_scp: bool = False
    push_scp: bool = False
    convert_to_thin: bool = True
    do_ovf_params: bool = True
    do_register: bool = True
    do_power_on: bool = False
    dry_run: bool = False
    allow_running_source: bool = False

    @property
    def copy_direction(self) -> CopyDirection:
        return CopyDirection.PUSH if self.push_scp else CopyDirection.PULL


@dataclass(frozen=True)
class HostFacts:
    """Facts gathered from a host before anything is resolved."""

    kernel: str
    hostname: str
    dns_domain: Optional[str] = None
    dns_servers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ClonePlan:
    """Everything a clone needs, resolved up front."""

    source: SourceDescriptor
    destination: DestinationDescriptor
    network: NetworkConfig
    flags: OperationFlags = field(default_factory=OperationFlags)


@dataclass
class RemoteStat:
    """Result of a remote stat call."""

    path: str
    exists: bool
    is_dir: bool = False
    size: int = 0


@dataclass
class RegisteredVM:
    """One row of ``vim-cmd vmsvc/getallvms``."""

    vm_id: str
    name: str
    datastore_path: str


@dataclass
class ValidationResult:
    """Result of precondition validation."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class CloneResult:
    """Result of clone operation."""

    operation_id: str
    success: bool
    vm_name: str
    new_vm_name: str
    source_host: str
    dest_host: str
    duration: float  # seconds
    bytes_transferred: int
    vm_id: Optional[str] = None
    completed_steps: List[CloneStep] = field(default_factory=list)
    failed_step: Optional[CloneStep] = None
    error: Optional[str] = None
    error_code: int = 0
    warnings: List[str] = field(default_factory=list)
    validation: Optional[ValidationResult] = None


@dataclass
class TransferStats:
    """Transfer statistics."""

    bytes_transferred: int = 0
    files_transferred: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    average_speed: float = 0.0  # bytes/sec
