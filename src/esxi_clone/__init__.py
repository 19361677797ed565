"""ESXi Clone - A utility for cloning VMware VMs between ESXi hosts over SSH."""

__version__ = "0.1.0"
__description__ = "ESXi VM cloning utility"

# Import main classes for easy access
from .client import EsxiCloneClient
from .models import (
    CloneResult,
    ClonePlan,
    CloneStep,
    DestinationDescriptor,
    NetworkConfig,
    OperationFlags,
    SourceDescriptor,
)
from .resolver import CloneOverrides, FlagOverrides, load_vars_file
from .inventory import Inventory
from .exceptions import (
    EsxiCloneError,
    ConfigurationError,
    ConnectionError,
    PreconditionError,
    TransferError,
    PatchError,
    VendorCommandError,
    ValidationError,
)
from .security import SecurityValidator, CommandBuilder, SSHSecurity

__all__ = [
    "__version__",
    "__description__",
    "EsxiCloneClient",
    "CloneResult",
    "ClonePlan",
    "CloneStep",
    "DestinationDescriptor",
    "NetworkConfig",
    "OperationFlags",
    "SourceDescriptor",
    "CloneOverrides",
    "FlagOverrides",
    "load_vars_file",
    "Inventory",
    "EsxiCloneError",
    "ConfigurationError",
    "ConnectionError",
    "PreconditionError",
    "TransferError",
    "PatchError",
    "VendorCommandError",
    "ValidationError",
    "SecurityValidator",
    "CommandBuilder",
    "SSHSecurity",
]
