"""
Edits applied to the copied VM configuration on the destination host.

All edits are made on the destination copies, never on the source, and each
converges: applying it again leaves the files unchanged.
"""

from typing import Callable, Dict

from .exceptions import PatchError, SSHError
from .logging import logger
from .models import VOLATILE_KEYS, DestinationDescriptor, NetworkConfig, SourceDescriptor
from .ovf import OVF_ENV_KEY, build_ovf_environment
from .transport import SSHConnection
from .vmx import VmxDocument, decode_config, rename_vmxf


class ConfigPatcher:
    """Rewrites the destination ``.vmx``, ``.vmxf`` and ``.vmdk`` files."""

    def __init__(self, conn: SSHConnection, destination: DestinationDescriptor) -> None:
        self.conn = conn
        self.destination = destination

    async def _edit(self, path: str, edit: Callable[[str], str]) -> bool:
        """Read ``path``, apply ``edit``, write back in the file's encoding if changed."""
        try:
            raw = await self.conn.read_bytes(path)
        except SSHError as e:
            raise PatchError(str(e), path) from e

        original, encoding = decode_config(raw)
        updated = edit(original)
        if updated == original:
            return False

        try:
            data = updated.encode(encoding)
        except UnicodeEncodeError as e:
            raise PatchError(f"edited text is not representable in {encoding}: {e}", path) from e

        try:
            await self.conn.write_bytes(path, data)
        except SSHError as e:
            raise PatchError(str(e), path) from e
        return True

    async def _edit_vmx(self, path: str, edit: Callable[[VmxDocument], None]) -> bool:
        def apply(text: str) -> str:
            doc = VmxDocument.parse(text)
            edit(doc)
            return doc.dumps()

        return await self._edit(path, apply)

    async def rename(self, source: SourceDescriptor) -> None:
        """Point every name reference at the destination name."""
        old, new = source.name, self.destination.name
        vmx_path = self.destination.file_path(".vmx")

        def rename_vmx(doc: VmxDocument) -> None:
            doc.rename_references(old, new)
            if not doc.references(new):
                raise PatchError(f"no reference to '{old}' or '{new}' found", vmx_path)

        await self._edit_vmx(vmx_path, rename_vmx)
        await self._edit_vmx(
            self.destination.file_path(".vmdk"),
            lambda doc: doc.rename_references(old, new),
        )
        await self._edit(
            self.destination.file_path(".vmxf"),
            lambda text: rename_vmxf(text, old, new),
        )
        logger.info(f"Renamed references {old} -> {new}", old_name=old, new_name=new)

    async def strip_volatile(self) -> None:
        """Drop host-specific identity lines so ESXi regenerates them."""

        def strip(doc: VmxDocument) -> None:
            for key in VOLATILE_KEYS:
                doc.remove(key)

        await self._edit_vmx(self.destination.file_path(".vmx"), strip)

    def settings(self) -> Dict[str, str]:
        return {
            "ethernet0.addressType": "generated",
            "annotation": self.destination.description,
            "ethernet0.networkName": self.destination.network,
        }

    async def apply_settings(self) -> None:
        """Set address type, annotation and network name."""
        settings = self.settings()

        def apply(doc: VmxDocument) -> None:
            for key, value in settings.items():
                doc.set(key, value)

        await self._edit_vmx(self.destination.file_path(".vmx"), apply)

    async def patch(self, source: SourceDescriptor) -> None:
        """Rename, strip, then set, in that order."""
        await self.rename(source)
        await self.strip_volatile()
        await self.apply_settings()

    async def set_ovf_environment(self, network: NetworkConfig) -> None:
        """Write the guest's OVF environment properties into the ``.vmx``."""
        blob = build_ovf_environment(network)
        await self._edit_vmx(
            self.destination.file_path(".vmx"),
            lambda doc: doc.set(OVF_ENV_KEY, blob),
        )
        logger.info(
            f"Set OVF environment for {network.hostname}",
            hostname=network.hostname,
            ip=network.ip,
            gateway=network.gateway,
        )
