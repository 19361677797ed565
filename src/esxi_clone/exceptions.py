"""
Custom exceptions for ESXi cloning operations.

This module defines all custom exceptions used throughout the ESXi cloning system.
"""

from typing import List, Optional


def exit_status(error_code: Optional[int]) -> int:
    """Process exit status for an error code.

    Codes 1001..1255 map to 1..255 so they survive the 8-bit exit status.
    Anything else, including a missing code, exits 1.
    """
    if error_code is not None and 1000 < error_code < 1256:
        return error_code - 1000
    return 1


class EsxiCloneError(Exception):
    """Base exception for ESXi clone operations."""

    def __init__(self, message: str, error_code: int = 1000) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message

    @property
    def exit_status(self) -> int:
        return exit_status(self.error_code)


class ConfigurationError(EsxiCloneError):
    """Configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code=1001)


class ConnectionError(EsxiCloneError):
    """Connection-related errors."""

    def __init__(self, message: str, host: str) -> None:
        super().__init__(f"Connection error to {host}: {message}", error_code=1002)
        self.host = host


class PreconditionError(EsxiCloneError):
    """One or more clone preconditions failed."""

    def __init__(self, failures: List[str]) -> None:
        super().__init__(
            f"Precondition failed: {'; '.join(failures)}", error_code=1003
        )
        self.failures = list(failures)


class TransferError(EsxiCloneError):
    """Data transfer errors."""

    def __init__(self, message: str, source: str, destination: str) -> None:
        super().__init__(
            f"Transfer error from {source} to {destination}: {message}", error_code=1006
        )
        self.source = source
        self.destination = destination


class ValidationError(EsxiCloneError):
    """Validation errors."""

    def __init__(self, message: str, validation_type: str = "general") -> None:
        super().__init__(
            f"Validation error ({validation_type}): {message}", error_code=1007
        )
        self.validation_type = validation_type


class VendorCommandError(EsxiCloneError):
    """A hypervisor CLI command (vmkfstools, vim-cmd) exited non-zero."""

    def __init__(
        self, command: str, exit_code: int, stderr: str, host: str
    ) -> None:
        super().__init__(
            f"Command '{command}' failed on {host} with exit code {exit_code}: "
            f"{stderr.strip()}",
            error_code=1008,
        )
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        self.host = host


class SSHError(EsxiCloneError):
    """SSH-related errors."""

    def __init__(self, message: str, host: str, operation: str = "connection") -> None:
        super().__init__(
            f"SSH error on {host} during {operation}: {message}", error_code=1009
        )
        self.host = host
        self.operation = operation


class AuthenticationError(EsxiCloneError):
    """Authentication errors."""

    def __init__(self, message: str, host: str, auth_method: str = "key") -> None:
        super().__init__(
            f"Authentication failed for {host} using {auth_method}: {message}",
            error_code=1010,
        )
        self.host = host
        self.auth_method = auth_method


class PatchError(EsxiCloneError):
    """Editing a copied VM configuration file failed."""

    def __init__(self, message: str, file_path: str) -> None:
        super().__init__(f"Failed to patch {file_path}: {message}", error_code=1011)
        self.file_path = file_path


class TimeoutError(EsxiCloneError):
    """Timeout errors."""

    def __init__(self, message: str, operation: str, timeout: Optional[int]) -> None:
        super().__init__(
            f"Timeout during {operation} after {timeout}s: {message}", error_code=1012
        )
        self.operation = operation
        self.timeout = timeout
