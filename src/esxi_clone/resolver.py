"""
Resolution of clone parameters.

Every field is resolved from an ordered list of candidates, the first defined
one winning: explicit override, then the per-host default from the inventory,
then the configured constant.
"""

import dataclasses
from typing import Any, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from .config import AppConfig, load_yaml_mapping
from .exceptions import ConfigurationError
from .inventory import HostEntry, Inventory
from .logging import logger
from .models import DestinationDescriptor, HostFacts, OperationFlags, SourceDescriptor
from .security import SecurityValidator


class CloneOverrides(BaseModel):
    """Explicit per-run overrides, from the command line or a vars file."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    src_vm_server: Optional[str] = None
    src_vm_name: Optional[str] = None
    src_vm_vol: Optional[str] = None
    dst_vm_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("dst_vm_name", "vm_name")
    )
    dst_vm_desc: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("dst_vm_desc", "vm_desc")
    )
    dst_vm_vol: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("dst_vm_vol", "vm_vol")
    )
    dst_vm_net: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("dst_vm_net", "vm_net")
    )
    dst_vm_ip: Optional[str] = None
    dst_vm_gw: Optional[str] = None

    def merged_with(self, other: "CloneOverrides") -> "CloneOverrides":
        """Return a copy where every field set in ``other`` wins."""
        data = self.model_dump()
        data.update(other.model_dump(exclude_none=True))
        return CloneOverrides.model_validate(data)


class FlagOverrides(BaseModel):
    """Operation switches from a vars file; unset switches keep their default."""

    model_config = ConfigDict(extra="forbid")

    direct_scp: Optional[bool] = None
    push_scp: Optional[bool] = None
    convert_to_thin: Optional[bool] = None
    do_ovf_params: Optional[bool] = None
    do_register: Optional[bool] = None
    do_power_on: Optional[bool] = None
    dry_run: Optional[bool] = None
    allow_running_source: Optional[bool] = None

    def applied_to(self, flags: OperationFlags) -> OperationFlags:
        return dataclasses.replace(flags, **self.model_dump(exclude_none=True))


def load_vars_file(path: str) -> Tuple[CloneOverrides, FlagOverrides]:
    """Load a YAML vars file holding overrides and operation switches side by side."""
    data = load_yaml_mapping(path)
    switches = {key: data.pop(key) for key in list(data) if key in FlagOverrides.model_fields}
    try:
        return CloneOverrides.model_validate(data), FlagOverrides.model_validate(switches)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid vars file {path}: {e}")


def first_defined(*candidates: Any) -> Any:
    """Return the first candidate that is not None."""
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


class ConfigResolver:
    """Builds source and destination descriptors from layered settings."""

    def __init__(self, config: AppConfig, inventory: Inventory) -> None:
        self.config = config
        self.inventory = inventory

    def resolve_source(
        self, overrides: CloneOverrides, dest: HostEntry
    ) -> SourceDescriptor:
        """Resolve the VM being cloned. Host defaults come from the destination's vars."""
        host_vars = dest.vars
        server = first_defined(
            overrides.src_vm_server, host_vars.src_vm_server, self.config.default_src_server
        )
        name = first_defined(
            overrides.src_vm_name, host_vars.src_vm_name, self.config.default_src_name
        )
        datastore = first_defined(
            overrides.src_vm_vol, host_vars.src_vm_vol, self.config.default_src_datastore
        )

        source_entry = self.inventory.get(server)

        return SourceDescriptor(
            server=server,
            host=source_entry.host,
            name=SecurityValidator.validate_vm_name(name),
            datastore=SecurityValidator.validate_datastore_name(datastore),
        )

    def resolve_destination(
        self,
        overrides: CloneOverrides,
        dest: HostEntry,
        facts: HostFacts,
        source: SourceDescriptor,
    ) -> DestinationDescriptor:
        """Resolve where the clone goes and what it is called."""
        host_vars = dest.vars
        name = first_defined(overrides.dst_vm_name, host_vars.dst_vm_name, source.name)
        description = first_defined(
            overrides.dst_vm_desc, host_vars.dst_vm_desc, f"clone of {source.name}"
        )
        network = first_defined(
            overrides.dst_vm_net, host_vars.dst_vm_net, self.config.default_dst_network
        )
        datastore = first_defined(overrides.dst_vm_vol, host_vars.dst_vm_vol)
        if datastore is None:
            datastore = self.default_datastore(dest, facts)

        return DestinationDescriptor(
            server=dest.name,
            host=dest.host,
            name=SecurityValidator.validate_vm_name(name),
            description=description,
            datastore=SecurityValidator.validate_datastore_name(datastore),
            network=network,
        )

    @staticmethod
    def default_datastore(dest: HostEntry, facts: HostFacts) -> str:
        """
        First local datastore by key order, or ``<hostname>-sys``.

        The hostname fallback applies only when ``local_datastores`` is not
        defined for the host at all; a defined but empty mapping is an error.
        """
        local_datastores = dest.vars.local_datastores
        if local_datastores is None:
            return f"{facts.hostname}-sys"

        if not local_datastores:
            raise ConfigurationError(
                f"No destination datastore for {dest.name}: no override, "
                "no dst_vm_vol default and local_datastores is empty"
            )

        first_key = sorted(local_datastores)[0]
        logger.debug(
            f"Using first local datastore '{local_datastores[first_key]}' on {dest.name}",
            host=dest.name,
            datastore_key=first_key,
        )
        return local_datastores[first_key]
