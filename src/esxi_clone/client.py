"""
Main client class for ESXi cloning operations.

This module implements the primary interface for cloning a VM between ESXi
hosts over SSH connections.
"""

from pathlib import Path
from typing import Optional, Dict, List

from .config import AppConfig
from .exceptions import ConfigurationError, EsxiCloneError
from .inventory import Inventory
from .logging import logger
from .models import CloneResult, OperationFlags, RegisteredVM
from .network import NetworkIdentityResolver
from .cloner import VMCloner
from .resolver import CloneOverrides
from .transport import SSHTransport
from .vmware import EsxiHost


class EsxiCloneClient:
    """
    Main client for ESXi cloning operations.

    Args:
        config (Optional[AppConfig]): Application configuration
        inventory (Optional[Inventory]): Host inventory; loaded from
            ``config.inventory_path`` when omitted
        transport (Optional[SSHTransport]): SSH transport; built from config when omitted
        network_resolver (Optional[NetworkIdentityResolver]): DNS lookup strategy

    Raises:
        ConfigurationError: If no inventory is given or configured
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        inventory: Optional[Inventory] = None,
        transport: Optional[SSHTransport] = None,
        network_resolver: Optional[NetworkIdentityResolver] = None,
    ) -> None:
        """Initialize the ESXi clone client."""
        self.config = config or AppConfig()
        self.inventory = inventory or self._load_inventory()

        self.transport = transport or SSHTransport(
            key_path=self.config.ssh_key_path,
            timeout=self.config.default_timeout,
            command_timeout=self.config.command_timeout,
            host_key_policy=self.config.host_key_policy,
            known_hosts_file=self.config.known_hosts_file,
        )
        self.cloner = VMCloner(
            self.transport,
            self.config,
            self.inventory,
            network_resolver=network_resolver,
            staging_root=self._staging_root(),
        )

    def _load_inventory(self) -> Inventory:
        if not self.config.inventory_path:
            raise ConfigurationError(
                "No inventory configured; pass --inventory or set inventory_path"
            )
        return Inventory.load(self.config.inventory_path, default_port=self.config.ssh_port)

    def _staging_root(self) -> str:
        """Configured staging dir, else ``tmp`` next to the inventory file."""
        if self.config.staging_dir:
            return self.config.staging_dir
        if self.config.inventory_path:
            return str(Path(self.config.inventory_path).expanduser().parent / "tmp")
        return "./tmp"

    async def clone_vm(
        self,
        target: str,
        *,
        overrides: Optional[CloneOverrides] = None,
        flags: Optional[OperationFlags] = None,
    ) -> CloneResult:
        """
        Clone a virtual machine onto the host selected by ``target``.

        Args:
            target: Inventory host or group pattern (must select one host)
            overrides: Explicit per-run values
            flags: Operation switches

        Returns:
            CloneResult: Result of the clone operation
        """
        return await self.cloner.clone(target, overrides=overrides, flags=flags)

    async def list_vms(self, pattern: str = "all") -> Dict[str, List[RegisteredVM]]:
        """
        List registered VMs on every host matching ``pattern``.

        Hosts that cannot be reached map to an empty list.
        """
        results: Dict[str, List[RegisteredVM]] = {}

        for entry in self.inventory.select(pattern):
            try:
                async with self.transport.connect(entry.host, entry.port, entry.user) as conn:
                    results[entry.name] = await EsxiHost(conn, entry.name).list_vms()
            except EsxiCloneError as e:
                logger.error(f"Failed to list VMs on {entry.name}: {e}", host=entry.name)
                results[entry.name] = []

        return results

    async def __aenter__(self) -> "EsxiCloneClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.transport.close_all()
