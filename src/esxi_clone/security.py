"""
Security utilities for ESXi cloning operations.

This module provides input validation, command sanitization, and path security
functions to prevent common security vulnerabilities.
"""

import ipaddress
import re
import shlex
from pathlib import Path
from typing import Optional, Any

from .exceptions import ValidationError


class SecurityValidator:
    """Security validation utilities."""

    # VM names: no path separator, vmx quote or escape, datastore path brackets
    VM_NAME_FORBIDDEN = re.compile(r'[\x00-\x1f\x7f/"|\[\]]')
    HOSTNAME_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+$")
    DATASTORE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")
    VM_ID_PATTERN = re.compile(r"^\d+$")

    @staticmethod
    def validate_vm_name(name: str) -> str:
        """
        Validate a VM name.

        Names become directory and file names on the datastore and quoted
        values in the ``.vmx``, so spaces, parentheses and ``+`` are fine.
        Shell use is quoted by :class:`CommandBuilder`.

        Args:
            name: VM name to validate

        Returns:
            str: Validated VM name

        Raises:
            ValidationError: If VM name is invalid
        """
        if not name or not isinstance(name, str):
            raise ValidationError("VM name must be a non-empty string", "vm_name")

        if len(name) > 80:
            raise ValidationError("VM name must be 80 characters or less", "vm_name")

        if name in (".", "..") or name != name.strip():
            raise ValidationError(
                f"VM name '{name}' must not be '.', '..' or start or end with whitespace",
                "vm_name",
            )

        if SecurityValidator.VM_NAME_FORBIDDEN.search(name):
            raise ValidationError(
                f"VM name {name!r} must not contain control characters "
                "or any of / \" | [ ]",
                "vm_name",
            )

        return name

    @staticmethod
    def validate_hostname(hostname: str) -> str:
        """
        Validate and sanitize hostname.

        Raises:
            ValidationError: If hostname is invalid
        """
        if not hostname or not isinstance(hostname, str):
            raise ValidationError("Hostname must be a non-empty string", "hostname")

        if len(hostname) > 253:
            raise ValidationError("Hostname must be 253 characters or less", "hostname")

        if not SecurityValidator.HOSTNAME_PATTERN.match(hostname):
            raise ValidationError(
                f"Hostname '{hostname}' can only contain letters, numbers, dots, and hyphens",
                "hostname",
            )

        return hostname

    @staticmethod
    def validate_datastore_name(name: str) -> str:
        """Validate a datastore (VMFS volume) name."""
        if not name or not isinstance(name, str):
            raise ValidationError("Datastore name must be a non-empty string", "datastore")

        if name in (".", "..") or not SecurityValidator.DATASTORE_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Datastore name '{name}' can only contain letters, numbers, dots, "
                "underscores, and hyphens",
                "datastore",
            )

        return name

    @staticmethod
    def is_valid_ipv4(address: str) -> bool:
        """Return True if ``address`` is a dotted-quad IPv4 address."""
        try:
            ipaddress.IPv4Address(address)
        except (ValueError, ipaddress.AddressValueError):
            return False
        return True

    @staticmethod
    def validate_vm_id(vm_id: str) -> str:
        """Validate a vim-cmd VM identifier (a decimal number)."""
        vm_id = (vm_id or "").strip()
        if not SecurityValidator.VM_ID_PATTERN.match(vm_id):
            raise ValidationError(f"Invalid VM id: {vm_id!r}", "vm_id")
        return vm_id

    @staticmethod
    def sanitize_path(path: str, base_dir: Optional[str] = None) -> str:
        """
        Sanitize and validate a local file path to prevent path traversal.

        Args:
            path: File path to sanitize
            base_dir: Base directory to restrict access to

        Returns:
            str: Sanitized path

        Raises:
            ValidationError: If path is invalid or attempts traversal
        """
        if not path or not isinstance(path, str):
            raise ValidationError("Path must be a non-empty string", "path")

        path_obj = Path(path)

        if base_dir:
            base_path = Path(base_dir).resolve()
            try:
                resolved_path = (base_path / path_obj).resolve()
                if resolved_path != base_path and base_path not in resolved_path.parents:
                    raise ValidationError(f"Path traversal detected: {path}", "path")
                return str(resolved_path)
            except (OSError, ValueError) as e:
                raise ValidationError(f"Invalid path: {path}", "path") from e

        try:
            return str(path_obj.resolve())
        except (OSError, ValueError) as e:
            raise ValidationError(f"Invalid path: {path}", "path") from e


class CommandBuilder:
    """Secure command building utilities."""

    @staticmethod
    def build_safe_command(template: str, **kwargs: Any) -> str:
        """
        Build a safe shell command with properly quoted parameters.

        Args:
            template: Command template with {param} placeholders
            **kwargs: Parameters to substitute in template

        Returns:
            str: Safe command with quoted parameters
        """
        quoted_kwargs = {}
        for key, value in kwargs.items():
            if value is not None:
                quoted_kwargs[key] = shlex.quote(str(value))
            else:
                quoted_kwargs[key] = ""

        return template.format(**quoted_kwargs)

    @staticmethod
    def build_scp_command(
        source: str,
        dest: str,
        source_login: Optional[str] = None,
        dest_login: Optional[str] = None,
    ) -> str:
        """
        Build an scp command with host key checking disabled.

        ``source_login``/``dest_login`` are ``user@host`` strings for the remote
        side; the other side is a path local to the host running scp. The
        remote path is quoted a second time for the shell scp starts on the peer.
        """
        if source_login and dest_login:
            raise ValidationError("scp needs one local side", "scp")

        def target(login: Optional[str], path: str) -> str:
            if login:
                return shlex.quote(f"{login}:{shlex.quote(path)}")
            return shlex.quote(path)

        return " ".join(
            [
                "scp",
                "-o",
                "StrictHostKeyChecking=no",
                target(source_login, source),
                target(dest_login, dest),
            ]
        )

    @staticmethod
    def build_vmkfstools_thin(descriptor_path: str) -> str:
        """Punch zeroed blocks out of a disk, making it thin."""
        return CommandBuilder.build_safe_command("vmkfstools -K {path}", path=descriptor_path)

    @staticmethod
    def build_vim_cmd(action: str, *args: Any) -> str:
        """
        Build a safe vim-cmd command.

        Args:
            action: vim-cmd action (e.g., "solo/registervm")
            *args: Additional arguments

        Returns:
            str: Safe vim-cmd command
        """
        valid_actions = {
            "solo/registervm",
            "vmsvc/getallvms",
            "vmsvc/power.on",
            "vmsvc/power.getstate",
        }

        if action not in valid_actions:
            raise ValidationError(f"Invalid vim-cmd action: {action}", "vim_cmd")

        cmd_parts = ["vim-cmd", action]
        for arg in args:
            if arg is not None:
                cmd_parts.append(shlex.quote(str(arg)))

        return " ".join(cmd_parts)


class SSHSecurity:
    """SSH security utilities."""

    @staticmethod
    def get_known_hosts_policy(policy: str = "strict") -> Any:
        """
        Get the paramiko host key policy matching a configured policy name.

        ``strict`` rejects unknown hosts, ``warn`` logs and accepts them,
        ``accept`` adds them silently.
        """
        import paramiko

        if policy == "accept":
            return paramiko.AutoAddPolicy()
        if policy == "warn":
            return paramiko.WarningPolicy()
        return paramiko.RejectPolicy()

    @staticmethod
    def validate_ssh_key_path(key_path: str) -> str:
        """
        Validate SSH private key path.

        Raises:
            ValidationError: If key path is invalid
        """
        if not key_path:
            raise ValidationError("SSH key path cannot be empty", "ssh_key")

        key_file = Path(key_path).expanduser()

        if not key_file.exists():
            raise ValidationError(f"SSH key file not found: {key_path}", "ssh_key")

        if not key_file.is_file():
            raise ValidationError(f"SSH key path is not a file: {key_path}", "ssh_key")

        # Key must be readable only by owner
        stat_info = key_file.stat()
        if stat_info.st_mode & 0o077:
            raise ValidationError(
                f"SSH key file has insecure permissions: {key_path}. "
                "Key files should be readable only by the owner (chmod 600).",
                "ssh_key",
            )

        return str(key_file)
