"""
Host inventory for ESXi cloning operations.

The inventory names every ESXi host the tool may talk to, how to reach it over
SSH, and the per-host defaults used when resolving a clone. A minimal file::

    hosts:
      cage7:
        address: 10.1.1.7
        vars:
          local_datastores: {sys: cage7-sys, data: infra.data}
      nest-test:
        address: 10.1.10.20
        vars:
          dst_vm_vol: nest-test-sys
    groups:
      nests: [nest-test]
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from .config import load_yaml_mapping
from .exceptions import ConfigurationError
from .logging import logger


class HostVars(BaseModel):
    """Per-host defaults. Every field is optional; unset means "fall through"."""

    model_config = ConfigDict(extra="allow")

    src_vm_server: Optional[str] = None
    src_vm_name: Optional[str] = None
    src_vm_vol: Optional[str] = None
    dst_vm_name: Optional[str] = None
    dst_vm_desc: Optional[str] = None
    dst_vm_vol: Optional[str] = None
    dst_vm_net: Optional[str] = None
    # None means "not defined", which is different from an empty mapping
    local_datastores: Optional[Dict[str, str]] = None
    dns_domain: Optional[str] = None
    dns_servers: Optional[List[str]] = None


class HostEntry(BaseModel):
    """One ESXi host."""

    model_config = ConfigDict(extra="forbid")

    name: str
    address: Optional[str] = None
    user: str = "root"
    port: int = Field(default=22, gt=0, le=65535)
    vars: HostVars = Field(default_factory=HostVars)

    @property
    def host(self) -> str:
        """Network address used to reach the host."""
        return self.address or self.name


class Inventory:
    """Named hosts and groups of hosts."""

    def __init__(
        self,
        hosts: Optional[Dict[str, HostEntry]] = None,
        groups: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        self.hosts: Dict[str, HostEntry] = dict(hosts or {})
        self.groups: Dict[str, List[str]] = dict(groups or {})

        for group, members in self.groups.items():
            unknown = [m for m in members if m not in self.hosts]
            if unknown:
                raise ConfigurationError(
                    f"Group '{group}' references unknown hosts: {', '.join(unknown)}"
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_port: int = 22) -> "Inventory":
        """
        Build an inventory from its parsed YAML form.

        Hosts without their own ``port`` get ``default_port``.
        """
        raw_hosts = data.get("hosts") or {}
        raw_groups = data.get("groups") or {}
        if not isinstance(raw_hosts, dict) or not isinstance(raw_groups, dict):
            raise ConfigurationError("Inventory 'hosts' and 'groups' must be mappings")

        hosts = {}
        try:
            for name, entry in raw_hosts.items():
                hosts[name] = HostEntry(name=name, **{"port": default_port, **(entry or {})})
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid inventory host entry: {e}")

        groups = {name: list(members or []) for name, members in raw_groups.items()}
        return cls(hosts, groups)

    @classmethod
    def load(cls, path: str, default_port: int = 22) -> "Inventory":
        """Load an inventory YAML file."""
        logger.debug(f"Loading inventory from {path}", path=path)
        return cls.from_dict(load_yaml_mapping(path), default_port=default_port)

    def get(self, name: str) -> HostEntry:
        """Look up a single host by inventory name."""
        try:
            return self.hosts[name]
        except KeyError:
            raise ConfigurationError(f"Host '{name}' is not in the inventory")

    def select(self, pattern: str) -> List[HostEntry]:
        """
        Resolve a comma-separated list of host and group names.

        ``all`` selects every host. Order is preserved and duplicates dropped.
        """
        selected: List[HostEntry] = []
        seen = set()

        for token in (t.strip() for t in pattern.split(",")):
            if not token:
                continue
            if token == "all":
                names = list(self.hosts)
            elif token in self.groups:
                names = self.groups[token]
            elif token in self.hosts:
                names = [token]
            else:
                raise ConfigurationError(
                    f"'{token}' matches no host or group in the inventory"
                )

            for name in names:
                if name not in seen:
                    seen.add(name)
                    selected.append(self.hosts[name])

        return selected
