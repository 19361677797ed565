"""
Precondition checks run before any remote state is touched.

Every check runs and contributes to a single ValidationResult so the operator
sees all problems at once; the cloner refuses to continue if any failed.
"""

from typing import List

from .config import AppConfig
from .exceptions import EsxiCloneError, PreconditionError
from .inventory import HostEntry
from .logging import logger
from .models import DNS_NOT_FOUND, ClonePlan, HostFacts, PowerState, ValidationResult
from .security import SecurityValidator
from .vmware import EsxiHost


class PreconditionChecker:
    """Validates that a clone can safely start."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config

    def check_targets(self, targets: List[HostEntry]) -> HostEntry:
        """Exactly one destination host may be targeted."""
        if len(targets) != 1:
            names = ", ".join(t.name for t in targets) or "none"
            raise PreconditionError(
                [f"exactly one destination host must be targeted, got {len(targets)} ({names})"]
            )
        return targets[0]

    async def validate(
        self,
        plan: ClonePlan,
        facts: HostFacts,
        source_host: EsxiHost,
        dest_host: EsxiHost,
    ) -> ValidationResult:
        """
        Run the precondition battery.

        Args:
            plan: Resolved clone parameters
            facts: Facts gathered from the destination host
            source_host: Source host operations
            dest_host: Destination host operations

        Returns:
            ValidationResult: All failures and warnings found
        """
        errors: List[str] = []
        warnings: List[str] = []
        source, destination = plan.source, plan.destination

        if facts.kernel != self.config.expected_kernel:
            errors.append(
                f"destination {destination.server} runs '{facts.kernel}', "
                f"expected '{self.config.expected_kernel}'"
            )

        ip = plan.network.ip
        if ip == DNS_NOT_FOUND or not SecurityValidator.is_valid_ipv4(ip):
            errors.append(
                f"destination IP '{ip}' is not valid; check that "
                f"{destination.name}.{plan.network.domain} is present in DNS"
            )

        try:
            if not await source_host.is_directory(source.vm_dir):
                errors.append(
                    f"source VM directory {source.vm_dir} does not exist on {source.server}"
                )

            if not await dest_host.path_exists(destination.path):
                errors.append(
                    f"destination datastore {destination.path} does not exist on {destination.server}"
                )

            if await dest_host.path_exists(destination.vm_dir):
                errors.append(
                    f"destination VM directory {destination.vm_dir} already exists on {destination.server}"
                )

            source_id = await source_host.find_vm_id(source.name)
            if source_id is not None:
                state = await source_host.power_state(source_id)
                if state == PowerState.POWERED_ON:
                    message = f"source VM {source.name} is powered on; its disk may be inconsistent"
                    if plan.flags.allow_running_source:
                        warnings.append(message)
                    else:
                        errors.append(message)

            if await dest_host.find_vm_id(destination.name) is not None:
                errors.append(
                    f"a VM named {destination.name} is already registered on {destination.server}"
                )

        except EsxiCloneError as e:
            errors.append(f"could not complete checks: {e}")

        for warning in warnings:
            logger.warning(warning, source=source.server, destination=destination.server)

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)
