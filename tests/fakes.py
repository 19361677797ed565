"""In-memory stand-ins for ESXi hosts reached over SSH."""

import shlex
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple, Union

from esxi_clone.exceptions import ConnectionError, SSHError
from esxi_clone.models import RemoteStat, TransferStats


def _as_bytes(content: Union[str, bytes]) -> bytes:
    return content if isinstance(content, bytes) else content.encode("utf-8")


def _as_stored(data: bytes) -> Union[str, bytes]:
    """Keep UTF-8 content as text so tests can inspect it directly."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data


class FakeVM:
    def __init__(self, vm_id: str, name: str, vmx_path: str, state: str = "Powered off"):
        self.vm_id = vm_id
        self.name = name
        self.vmx_path = vmx_path
        self.state = state


class FakeEsxiHost:
    """
    Quacks like ``SSHConnection`` for a single ESXi host.

    Files live in ``files`` keyed by absolute path, directories in ``dirs``.
    Every command run is appended to ``commands`` as ``(command, forward_agent)``.
    """

    def __init__(
        self,
        address: str,
        hostname: str,
        kernel: str = "VMkernel",
        resolv_conf: str = "domain example.org\nnameserver 10.1.0.53\nnameserver 10.1.0.54\n",
    ) -> None:
        self.host = address
        self.port = 22
        self.username = "root"
        self.hostname = hostname
        self.kernel = kernel
        self.files: Dict[str, Union[str, bytes]] = {}
        self.dirs: Set[str] = {"/", "/vmfs", "/vmfs/volumes", "/etc"}
        if resolv_conf is not None:
            self.files["/etc/resolv.conf"] = resolv_conf
        self.vms: List[FakeVM] = []
        self.commands: List[Tuple[str, bool]] = []
        self.failures: Dict[str, Tuple[int, str]] = {}
        self.network: Optional["FakeTransport"] = None
        self.closed = False
        self._next_id = 10

    # fixture helpers

    def add_datastore(self, name: str) -> str:
        path = f"/vmfs/volumes/{name}"
        self.dirs.add(path)
        return path

    def add_file(self, path: str, content: Union[str, bytes]) -> None:
        self.dirs.add(str(Path(path).parent))
        self.files[path] = content

    def add_vm(self, name: str, vmx_path: str, state: str = "Powered off") -> FakeVM:
        vm = FakeVM(str(self._next_id), name, vmx_path, state)
        self._next_id += 1
        self.vms.append(vm)
        return vm

    def fail(self, command_prefix: str, exit_code: int = 1, stderr: str = "failed") -> None:
        """Make every command starting with ``command_prefix`` exit non-zero."""
        self.failures[command_prefix] = (exit_code, stderr)

    def ran(self, prefix: str) -> List[str]:
        return [cmd for cmd, _ in self.commands if cmd.startswith(prefix)]

    # SSHConnection interface

    async def execute_command(
        self, command: str, timeout: Optional[int] = None, forward_agent: bool = False
    ) -> Tuple[str, str, int]:
        self.commands.append((command, forward_agent))

        for prefix, (code, stderr) in self.failures.items():
            if command.startswith(prefix):
                return "", stderr, code

        argv = shlex.split(command)
        if argv == ["uname", "-s"]:
            return f"{self.kernel}\n", "", 0
        if argv == ["uname", "-n"]:
            return f"{self.hostname}.example.org\n", "", 0
        if argv[:2] == ["vim-cmd", "vmsvc/getallvms"]:
            return self._getallvms(), "", 0
        if argv[:2] == ["vim-cmd", "vmsvc/power.getstate"]:
            vm = self._vm(argv[2])
            if vm is None:
                return "", f"vim.fault.NotFound: {argv[2]}", 1
            return f"Retrieved runtime info\n{vm.state}\n", "", 0
        if argv[:2] == ["vim-cmd", "vmsvc/power.on"]:
            vm = self._vm(argv[2])
            if vm is None:
                return "", f"vim.fault.NotFound: {argv[2]}", 1
            vm.state = "Powered on"
            return "Powering on VM:\n", "", 0
        if argv[:2] == ["vim-cmd", "solo/registervm"]:
            if argv[2] not in self.files:
                return "", f"vim.fault.NotFound: {argv[2]}", 1
            vm = self.add_vm(argv[3], argv[2])
            return f"{vm.vm_id}\n", "", 0
        if argv[:2] == ["vmkfstools", "-K"]:
            if argv[2] not in self.files:
                return "", f"No such file: {argv[2]}", 1
            return "Hole Punching: 100% done.\n", "", 0
        if argv[0] == "scp":
            return self._scp(argv[3:], forward_agent)

        return "", f"sh: {argv[0]}: not found", 127

    async def stat(self, remote_path: str) -> RemoteStat:
        if remote_path in self.dirs:
            return RemoteStat(path=remote_path, exists=True, is_dir=True)
        if remote_path in self.files:
            return RemoteStat(
                path=remote_path, exists=True, size=len(_as_bytes(self.files[remote_path]))
            )
        return RemoteStat(path=remote_path, exists=False)

    async def mkdir(self, remote_path: str) -> None:
        if remote_path in self.dirs or remote_path in self.files:
            raise SSHError(f"{remote_path}: exists", self.host, "mkdir")
        if str(Path(remote_path).parent) not in self.dirs:
            raise SSHError(f"{remote_path}: no such parent", self.host, "mkdir")
        self.dirs.add(remote_path)

    async def read_bytes(self, remote_path: str) -> bytes:
        if remote_path not in self.files:
            raise SSHError(f"{remote_path}: No such file", self.host, "read")
        return _as_bytes(self.files[remote_path])

    async def write_bytes(self, remote_path: str, data: bytes) -> None:
        if str(Path(remote_path).parent) not in self.dirs:
            raise SSHError(f"{remote_path}: No such file", self.host, "write")
        self.files[remote_path] = _as_stored(data)

    async def read_text(self, remote_path: str, encoding: str = "utf-8") -> str:
        data = await self.read_bytes(remote_path)
        try:
            return data.decode(encoding)
        except UnicodeDecodeError as e:
            raise SSHError(f"{remote_path}: {e}", self.host, "read")

    async def write_text(self, remote_path: str, content: str, encoding: str = "utf-8") -> None:
        await self.write_bytes(remote_path, content.encode(encoding))

    async def fetch_file(self, remote_path: str, local_path: str, progress_callback=None) -> TransferStats:
        if remote_path not in self.files:
            raise SSHError(f"{remote_path}: No such file", self.host, "file_fetch")
        local = Path(local_path)
        local.parent.mkdir(parents=True, exist_ok=True)
        local.write_bytes(_as_bytes(self.files[remote_path]))
        return TransferStats(bytes_transferred=local.stat().st_size, files_transferred=1)

    async def transfer_file(self, local_path: str, remote_path: str, progress_callback=None) -> TransferStats:
        local = Path(local_path)
        if not local.exists():
            raise SSHError(f"Local file not found: {local_path}", self.host, "file_transfer")
        await self.write_bytes(remote_path, local.read_bytes())
        return TransferStats(bytes_transferred=local.stat().st_size, files_transferred=1)

    async def close(self) -> None:
        self.closed = True

    # internals

    def _vm(self, vm_id: str) -> Optional[FakeVM]:
        return next((vm for vm in self.vms if vm.vm_id == vm_id), None)

    def _getallvms(self) -> str:
        lines = ["Vmid   Name          File                                   Guest OS      Version   Annotation"]
        for vm in self.vms:
            parts = vm.vmx_path.split("/")
            datastore_path = f"[{parts[3]}] {'/'.join(parts[4:])}"
            lines.append(f"{vm.vm_id}     {vm.name}     {datastore_path}   otherGuest64   vmx-13")
        return "\n".join(lines) + "\n"

    def _scp(self, args: List[str], forward_agent: bool) -> Tuple[str, str, int]:
        if not forward_agent:
            return "", "Permission denied (publickey).", 1
        source, dest = args
        if "@" in source:
            peer = self.network.peer(source)
            path = shlex.split(source.split(":", 1)[1])[0]  # as the peer shell sees it
            if path not in peer.files:
                return "", f"scp: {path}: No such file or directory", 1
            self.files[dest] = peer.files[path]
        else:
            peer = self.network.peer(dest)
            path = shlex.split(dest.split(":", 1)[1])[0]
            if source not in self.files:
                return "", f"scp: {source}: No such file or directory", 1
            peer.files[path] = self.files[source]
        return "", "", 0


class FakeTransport:
    """Hands out FakeEsxiHost connections by address, like ``SSHTransport``."""

    def __init__(self, *hosts: FakeEsxiHost) -> None:
        self.hosts: Dict[str, FakeEsxiHost] = {}
        self.connects: List[Tuple[str, int, Optional[str]]] = []
        self.closed = False
        for host in hosts:
            self.add(host)

    def add(self, host: FakeEsxiHost) -> None:
        host.network = self
        self.hosts[host.host] = host

    def peer(self, login: str) -> FakeEsxiHost:
        address = login.split("@", 1)[1].split(":", 1)[0]
        return self.hosts[address]

    @asynccontextmanager
    async def connect(
        self, host: str, port: int = 22, username: Optional[str] = None
    ) -> AsyncIterator[FakeEsxiHost]:
        self.connects.append((host, port, username))
        if host not in self.hosts:
            raise ConnectionError("Network is unreachable", host)
        yield self.hosts[host]

    async def close_all(self) -> None:
        self.closed = True
