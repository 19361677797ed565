"""
SSH transport layer for ESXi cloning operations.

This module handles SSH connections, remote command execution and SFTP file
movement between this machine and the ESXi hosts.
"""

import asyncio
import os
import stat as stat_module
from datetime import datetime
from typing import Any, Optional, Dict, Callable, AsyncIterator
from pathlib import Path
import paramiko
from paramiko.agent import AgentRequestHandler
from contextlib import asynccontextmanager

from .logging import logger

from .models import RemoteStat, TransferStats
from .exceptions import SSHError, AuthenticationError, ConnectionError, TimeoutError, ValidationError
from .security import SSHSecurity


class SSHConnection:
    """Represents a single SSH connection."""

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: Optional[str] = None,
        key_path: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        command_timeout: Optional[int] = None,
        host_key_policy: str = "strict",
        known_hosts_file: Optional[str] = None,
    ):
        """Initialize SSH connection.

        Args:
            host: Hostname to connect to
            port: SSH port (default: 22, can be overridden by SSH config)
            username: SSH username (default: auto-detect from environment)
            key_path: Path to SSH private key (default: use SSH agent if available)
            timeout: Connection timeout in seconds
            max_retries: Maximum number of connection retry attempts
            command_timeout: Remote command timeout; None waits for completion
            host_key_policy: strict, warn or accept
            known_hosts_file: Extra known_hosts file to load
        """
        self.host = host
        self.port = port
        self.username = username
        self.key_path = key_path
        self.timeout = timeout
        self.max_retries = max_retries
        self.command_timeout = command_timeout
        self.host_key_policy = host_key_policy
        self.known_hosts_file = known_hosts_file
        self.client: Optional[paramiko.SSHClient] = None
        self.sftp: Optional[paramiko.SFTPClient] = None

        self._ssh_config = self._load_ssh_config()

    def _load_ssh_config(self) -> Optional[Dict[str, Any]]:
        """Load SSH configuration for the host from ~/.ssh/config."""
        try:
            ssh_config_path = Path.home() / ".ssh" / "config"
            if not ssh_config_path.exists():
                return None

            ssh_config = paramiko.SSHConfig()
            with open(ssh_config_path) as f:
                ssh_config.parse(f)

            return ssh_config.lookup(self.host)
        except (OSError, paramiko.SSHException) as e:
            logger.debug(f"Could not load SSH config: {e}")
            return None

    def _get_username(self) -> str:
        """Get username from config, SSH config, or environment."""
        if self.username:
            return self.username

        if self._ssh_config and 'user' in self._ssh_config:
            return self._ssh_config['user']

        username = os.getenv('USER') or os.getenv('USERNAME')
        if username:
            logger.debug(f"Auto-detected username: {username}")
            return username

        import getpass
        return getpass.getuser()

    def _get_port(self) -> int:
        """Get port from SSH config or use default."""
        if self._ssh_config and 'port' in self._ssh_config:
            try:
                return int(self._ssh_config['port'])
            except (ValueError, TypeError):
                pass
        return self.port

    def _get_hostname(self) -> str:
        """Get actual hostname from SSH config (handles aliases)."""
        if self._ssh_config and 'hostname' in self._ssh_config:
            return self._ssh_config['hostname']
        return self.host

    async def connect(self) -> None:
        """Establish SSH connection with retry logic and better error handling."""
        last_error: Optional[Exception] = None
        actual_hostname = self._get_hostname()
        actual_port = self._get_port()
        username = self._get_username()

        for attempt in range(self.max_retries):
            try:
                self.client = paramiko.SSHClient()
                self.client.set_missing_host_key_policy(
                    SSHSecurity.get_known_hosts_policy(self.host_key_policy)
                )

                try:
                    self.client.load_system_host_keys()
                    if self.known_hosts_file:
                        self.client.load_host_keys(os.path.expanduser(self.known_hosts_file))
                except (OSError, paramiko.SSHException) as e:
                    logger.debug(f"Could not load host keys: {e}")

                connect_kwargs: Dict[str, Any] = {
                    "hostname": actual_hostname,
                    "port": actual_port,
                    "username": username,
                    "timeout": self.timeout,
                    "allow_agent": True,
                    "look_for_keys": True,
                }

                if self.key_path:
                    try:
                        validated_key_path = SSHSecurity.validate_ssh_key_path(self.key_path)
                        connect_kwargs["key_filename"] = validated_key_path
                        logger.debug(f"Using SSH key: {validated_key_path}")
                    except ValidationError as key_error:
                        # Agent or default keys may still work
                        logger.warning(f"SSH key validation failed, will try other methods: {key_error}")

                if self._ssh_config and 'identityfile' in self._ssh_config:
                    identity_files = self._ssh_config['identityfile']
                    if isinstance(identity_files, list):
                        connect_kwargs["key_filename"] = [str(Path(f).expanduser()) for f in identity_files]
                    else:
                        connect_kwargs["key_filename"] = str(Path(identity_files).expanduser())

                loop = asyncio.get_event_loop()
                await loop.run_in_executor(
                    None,
                    lambda: self.client.connect(**connect_kwargs),  # type: ignore[union-attr]
                )

                self.sftp = self.client.open_sftp()

                logger.info(
                    f"SSH connection established to {actual_hostname}:{actual_port} as {username}",
                    host=actual_hostname,
                    port=actual_port,
                    username=username,
                    attempt=attempt + 1,
                )
                return

            except paramiko.AuthenticationException as e:
                last_error = e
                error_msg = self._format_auth_error(username, actual_hostname)
                logger.error(error_msg, host=actual_hostname)
                # Auth errors will not succeed on retry
                raise AuthenticationError(error_msg, actual_hostname)

            except paramiko.SSHException as e:
                last_error = e
                error_str = str(e).lower()

                if "not found in known_hosts" in error_str or "no hostkey" in error_str:
                    error_msg = self._format_hostkey_error(actual_hostname)
                    logger.error(error_msg, host=actual_hostname)
                    raise SSHError(error_msg, actual_hostname, "hostkey_verification")

                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt  # 1s, 2s, 4s
                    logger.warning(
                        f"SSH error connecting to {actual_hostname}: {e}, retrying in {wait_time}s",
                        host=actual_hostname,
                    )
                    await asyncio.sleep(wait_time)
                    continue
                error_msg = f"SSH error connecting to {actual_hostname}: {e}"
                logger.error(error_msg, host=actual_hostname, exc_info=True)
                raise SSHError(error_msg, actual_hostname, "connection")

            except OSError as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(
                        f"Network error connecting to {actual_hostname}: {e}, retrying in {wait_time}s (attempt {attempt + 1}/{self.max_retries})",
                        host=actual_hostname
                    )
                    await asyncio.sleep(wait_time)
                    continue

                error_msg = f"Network error connecting to {actual_hostname}:{actual_port}: {e}. " \
                           f"Please check network connectivity and hostname."
                logger.error(error_msg, host=actual_hostname)
                raise ConnectionError(error_msg, actual_hostname)

        error_msg = f"Failed to connect to {actual_hostname} after {self.max_retries} attempts. Last error: {last_error}"
        logger.error(error_msg, host=actual_hostname)
        raise ConnectionError(error_msg, actual_hostname)

    def _format_auth_error(self, username: str, hostname: str) -> str:
        """Format a helpful authentication error message."""
        suggestions = [
            f"Authentication failed for {username}@{hostname}",
            "",
            "Possible solutions:",
            "1. Add your public key to the ESXi host's authorized keys:",
            f"   /etc/ssh/keys-{username}/authorized_keys",
        ]

        if self.key_path:
            suggestions.extend([
                "",
                "2. Check that your SSH key exists and has correct permissions:",
                f"   ls -l {self.key_path}",
                f"   chmod 600 {self.key_path}",
            ])
        else:
            suggestions.extend([
                "",
                "2. Make sure SSH agent is running with your key loaded:",
                "   ssh-add -l",
                "",
                "3. Or specify a key explicitly:",
                "   --ssh-key ~/.ssh/id_rsa",
            ])

        return "\n".join(suggestions)

    def _format_hostkey_error(self, hostname: str) -> str:
        """Format a helpful host key verification error message."""
        return f"""Host key verification failed for {hostname}.

Possible solutions:
1. Add the host to your known_hosts file by connecting manually:
   ssh {hostname}

2. For testing only (NOT recommended for production):
   Set environment variable: ESXI_CLONE_SSH_HOST_KEY_POLICY=warn"""

    def _require_client(self, operation: str) -> paramiko.SSHClient:
        if not self.client:
            raise SSHError("Not connected", self.host, operation)
        return self.client

    def _require_sftp(self, operation: str) -> paramiko.SFTPClient:
        if not self.sftp:
            raise SSHError("SFTP not available", self.host, operation)
        return self.sftp

    def _run_command(self, command: str, forward_agent: bool) -> tuple[str, str, int]:
        client = self._require_client("command_execution")
        transport = client.get_transport()
        if transport is None:
            raise SSHError("Transport closed", self.host, "command_execution")

        channel = transport.open_session()
        if forward_agent:
            # lets a command on this host authenticate to a third host with our agent
            AgentRequestHandler(channel)
        channel.exec_command(command)

        stdout = channel.makefile("rb").read()
        stderr = channel.makefile_stderr("rb").read()
        exit_code = channel.recv_exit_status()
        channel.close()

        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            exit_code,
        )

    async def execute_command(
        self,
        command: str,
        timeout: Optional[int] = None,
        forward_agent: bool = False,
    ) -> tuple[str, str, int]:
        """Execute a command over SSH and return (stdout, stderr, exit code)."""
        cmd_timeout = timeout or self.command_timeout
        loop = asyncio.get_event_loop()

        logger.debug(f"Executing on {self.host}: {command}", host=self.host, command=command)

        try:
            future = loop.run_in_executor(None, self._run_command, command, forward_agent)
            if cmd_timeout:
                return await asyncio.wait_for(future, timeout=cmd_timeout)
            return await future

        except asyncio.TimeoutError:
            logger.error(
                f"Command execution timed out on {self.host}",
                host=self.host,
                command=command,
                timeout=cmd_timeout,
            )
            raise TimeoutError(
                "Command execution timed out", "command_execution", cmd_timeout
            )
        except SSHError:
            raise
        except (OSError, paramiko.SSHException) as e:
            logger.error(
                f"Command execution failed on {self.host}: {e}",
                host=self.host,
                command=command,
                exc_info=True,
            )
            raise SSHError(str(e), self.host, "command_execution")

    async def stat(self, remote_path: str) -> RemoteStat:
        """Stat a remote path; a missing path is reported, not raised."""
        sftp = self._require_sftp("stat")
        loop = asyncio.get_event_loop()

        try:
            attrs = await loop.run_in_executor(None, sftp.stat, remote_path)
        except FileNotFoundError:
            return RemoteStat(path=remote_path, exists=False)
        except (OSError, paramiko.SSHException) as e:
            raise SSHError(str(e), self.host, "stat")

        return RemoteStat(
            path=remote_path,
            exists=True,
            is_dir=stat_module.S_ISDIR(attrs.st_mode or 0),
            size=attrs.st_size or 0,
        )

    async def mkdir(self, remote_path: str) -> None:
        """Create a remote directory."""
        sftp = self._require_sftp("mkdir")
        loop = asyncio.get_event_loop()

        try:
            await loop.run_in_executor(None, sftp.mkdir, remote_path)
        except (OSError, paramiko.SSHException) as e:
            raise SSHError(f"{remote_path}: {e}", self.host, "mkdir")

    async def read_bytes(self, remote_path: str) -> bytes:
        """Read a small remote file."""
        sftp = self._require_sftp("read")

        def _read() -> bytes:
            with sftp.open(remote_path, "r") as f:
                return f.read()

        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, _read)
        except (OSError, paramiko.SSHException) as e:
            raise SSHError(f"{remote_path}: {e}", self.host, "read")

    async def write_bytes(self, remote_path: str, data: bytes) -> None:
        """Replace a small remote file."""
        sftp = self._require_sftp("write")

        def _write() -> None:
            with sftp.open(remote_path, "w") as f:
                f.write(data)

        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, _write)
        except (OSError, paramiko.SSHException) as e:
            raise SSHError(f"{remote_path}: {e}", self.host, "write")

    async def read_text(self, remote_path: str, encoding: str = "utf-8") -> str:
        """Read a small remote text file."""
        data = await self.read_bytes(remote_path)
        try:
            return data.decode(encoding)
        except UnicodeDecodeError as e:
            raise SSHError(f"{remote_path}: not valid {encoding}: {e}", self.host, "read")

    async def write_text(self, remote_path: str, content: str, encoding: str = "utf-8") -> None:
        """Replace a small remote text file."""
        try:
            data = content.encode(encoding)
        except UnicodeEncodeError as e:
            raise SSHError(f"{remote_path}: not representable in {encoding}: {e}", self.host, "write")
        await self.write_bytes(remote_path, data)

    async def fetch_file(
        self,
        remote_path: str,
        local_path: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> TransferStats:
        """Copy a file from the remote host to a local path."""
        sftp = self._require_sftp("file_fetch")
        loop = asyncio.get_event_loop()
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)

        stats = TransferStats(start_time=datetime.now())
        try:
            await loop.run_in_executor(
                None, sftp.get, remote_path, local_path, progress_callback
            )
        except (OSError, paramiko.SSHException) as e:
            logger.error(
                f"File fetch failed from {self.host}: {e}",
                host=self.host,
                remote_path=remote_path,
                local_path=local_path,
            )
            raise SSHError(f"{remote_path}: {e}", self.host, "file_fetch")

        return self._finish_stats(stats, Path(local_path).stat().st_size)

    async def transfer_file(
        self,
        local_path: str,
        remote_path: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> TransferStats:
        """Transfer a file to the remote host."""
        sftp = self._require_sftp("file_transfer")
        loop = asyncio.get_event_loop()

        local_file = Path(local_path)
        if not local_file.exists():
            raise SSHError(
                f"Local file not found: {local_path}", self.host, "file_transfer"
            )

        stats = TransferStats(start_time=datetime.now())
        try:
            await loop.run_in_executor(
                None, sftp.put, local_path, remote_path, progress_callback
            )
        except (OSError, paramiko.SSHException) as e:
            logger.error(
                f"File transfer failed to {self.host}: {e}",
                host=self.host,
                local_path=local_path,
                remote_path=remote_path,
            )
            raise SSHError(f"{remote_path}: {e}", self.host, "file_transfer")

        return self._finish_stats(stats, local_file.stat().st_size)

    @staticmethod
    def _finish_stats(stats: TransferStats, size: int) -> TransferStats:
        stats.end_time = datetime.now()
        stats.bytes_transferred = size
        stats.files_transferred = 1
        if stats.start_time:
            duration = (stats.end_time - stats.start_time).total_seconds()
            if duration > 0:
                stats.average_speed = size / duration
        return stats

    async def close(self) -> None:
        """Close SSH connection."""
        if self.sftp:
            self.sftp.close()
            self.sftp = None

        if self.client:
            self.client.close()
            self.client = None

        logger.info(f"SSH connection closed to {self.host}", host=self.host)


class SSHTransport:
    """SSH transport manager for multiple connections."""

    def __init__(
        self,
        key_path: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        command_timeout: Optional[int] = None,
        host_key_policy: str = "strict",
        known_hosts_file: Optional[str] = None,
    ):
        """Initialize SSH transport.

        Args:
            key_path: Path to SSH private key (optional, will use agent/auto-detect)
            timeout: Connection timeout in seconds
            max_retries: Maximum number of connection retry attempts
            command_timeout: Remote command timeout; None waits for completion
            host_key_policy: strict, warn or accept
            known_hosts_file: Extra known_hosts file to load
        """
        self.key_path = key_path
        self.timeout = timeout
        self.max_retries = max_retries
        self.command_timeout = command_timeout
        self.host_key_policy = host_key_policy
        self.known_hosts_file = known_hosts_file
        self.connections: Dict[str, SSHConnection] = {}

    @asynccontextmanager
    async def connect(
        self, host: str, port: int = 22, username: Optional[str] = None
    ) -> AsyncIterator[SSHConnection]:
        """Create a managed SSH connection, reused for the transport's lifetime."""
        connection_key = f"{host}:{port}"

        if connection_key in self.connections:
            yield self.connections[connection_key]
            return

        connection = SSHConnection(
            host=host,
            port=port,
            username=username,
            key_path=self.key_path,
            timeout=self.timeout,
            max_retries=self.max_retries,
            command_timeout=self.command_timeout,
            host_key_policy=self.host_key_policy,
            known_hosts_file=self.known_hosts_file,
        )

        await connection.connect()
        self.connections[connection_key] = connection
        yield connection

    async def close_all(self) -> None:
        """Close all SSH connections."""
        for connection in self.connections.values():
            await connection.close()
        self.connections.clear()
        logger.debug("All SSH connections closed")
