"""
ESXi host operations.

This module wraps the vendor CLI tools (``vmkfstools``, ``vim-cmd``) and the
few host facts the clone needs, all invoked over an SSH connection.
"""

import re
from typing import List, Optional

from .exceptions import SSHError, VendorCommandError
from .logging import logger
from .models import HostFacts, PowerState, RegisteredVM
from .network import parse_resolv_conf
from .security import CommandBuilder, SecurityValidator
from .transport import SSHConnection

_GETALLVMS_ROW = re.compile(r"^(?P<id>\d+)\s+(?P<name>.*?)\s+(?P<file>\[[^\]]+\]\s+.*?\.vmx)(?:\s|$)")

_POWER_STATES = {
    "powered on": PowerState.POWERED_ON,
    "powered off": PowerState.POWERED_OFF,
    "suspended": PowerState.SUSPENDED,
}


def parse_getallvms(output: str) -> List[RegisteredVM]:
    """Parse the table printed by ``vim-cmd vmsvc/getallvms``."""
    vms = []
    for line in output.splitlines():
        match = _GETALLVMS_ROW.match(line.strip())
        if match:
            vms.append(
                RegisteredVM(
                    vm_id=match.group("id"),
                    name=match.group("name"),
                    datastore_path=match.group("file"),
                )
            )
    return vms


def parse_power_state(output: str) -> PowerState:
    """Map ``vim-cmd vmsvc/power.getstate`` output to a PowerState."""
    for line in reversed(output.strip().splitlines()):
        state = _POWER_STATES.get(line.strip().lower())
        if state:
            return state
    return PowerState.UNKNOWN


class EsxiHost:
    """Vendor CLI operations against one ESXi host."""

    def __init__(self, conn: SSHConnection, name: Optional[str] = None) -> None:
        self.conn = conn
        self.name = name or conn.host

    async def run(self, command: str) -> str:
        """Run a command, returning stdout; non-zero exit raises VendorCommandError."""
        stdout, stderr, exit_code = await self.conn.execute_command(command)
        if exit_code != 0:
            logger.error(
                f"Command failed on {self.name}: {command}",
                host=self.name,
                command=command,
                exit_code=exit_code,
                stderr=stderr.strip(),
            )
            raise VendorCommandError(command, exit_code, stderr, self.name)
        return stdout

    async def gather_facts(self) -> HostFacts:
        """Collect kernel name, short hostname and resolver settings."""
        kernel = (await self.run("uname -s")).strip()
        hostname = (await self.run("uname -n")).strip().split(".")[0]

        domain, servers = None, ()
        try:
            domain, servers = parse_resolv_conf(await self.conn.read_text("/etc/resolv.conf"))
        except SSHError as e:
            logger.warning(f"Could not read resolv.conf on {self.name}: {e}", host=self.name)

        facts = HostFacts(kernel=kernel, hostname=hostname, dns_domain=domain, dns_servers=servers)
        logger.debug(f"Gathered facts from {self.name}", host=self.name, facts=facts)
        return facts

    async def path_exists(self, path: str) -> bool:
        return (await self.conn.stat(path)).exists

    async def is_directory(self, path: str) -> bool:
        result = await self.conn.stat(path)
        return result.exists and result.is_dir

    async def list_vms(self) -> List[RegisteredVM]:
        return parse_getallvms(await self.run(CommandBuilder.build_vim_cmd("vmsvc/getallvms")))

    async def find_vm_id(self, vm_name: str) -> Optional[str]:
        """Id of the registered VM called ``vm_name``, if any."""
        for vm in await self.list_vms():
            if vm.name == vm_name:
                return vm.vm_id
        return None

    async def power_state(self, vm_id: str) -> PowerState:
        command = CommandBuilder.build_vim_cmd(
            "vmsvc/power.getstate", SecurityValidator.validate_vm_id(vm_id)
        )
        return parse_power_state(await self.run(command))

    async def convert_to_thin(self, descriptor_path: str) -> None:
        """Punch zeroed blocks out of the disk behind ``descriptor_path``."""
        logger.info(f"Converting {descriptor_path} to thin", host=self.name, path=descriptor_path)
        await self.run(CommandBuilder.build_vmkfstools_thin(descriptor_path))

    async def register(self, vmx_path: str, vm_name: str) -> str:
        """Register ``vmx_path`` as ``vm_name`` and return the new VM id."""
        command = CommandBuilder.build_vim_cmd("solo/registervm", vmx_path, vm_name)
        output = await self.run(command)
        vm_id = output.strip().splitlines()[-1].strip() if output.strip() else ""
        if not SecurityValidator.VM_ID_PATTERN.match(vm_id):
            raise VendorCommandError(
                command, 0, f"unexpected registervm output: {output!r}", self.name
            )
        logger.info(f"Registered {vm_name} as VM {vm_id}", host=self.name, vm_id=vm_id)
        return vm_id

    async def power_on(self, vm_id: str) -> None:
        command = CommandBuilder.build_vim_cmd(
            "vmsvc/power.on", SecurityValidator.validate_vm_id(vm_id)
        )
        await self.run(command)
        logger.info(f"Powered on VM {vm_id}", host=self.name, vm_id=vm_id)
