"""
VM cloning operations.

This module runs the clone from start to finish: resolve parameters, check
preconditions, copy and patch configs, copy and convert the disk, inject OVF
properties, register and optionally power on. Steps run strictly in order and
the first failure stops the run; nothing is rolled back.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from .config import AppConfig
from .exceptions import EsxiCloneError, PreconditionError, ValidationError
from .inventory import HostEntry, Inventory
from .logging import logger
from .models import (
    ClonePlan,
    CloneResult,
    CloneStep,
    HostFacts,
    OperationFlags,
    ValidationResult,
)
from .network import NetworkIdentityResolver
from .patcher import ConfigPatcher
from .preconditions import PreconditionChecker
from .resolver import CloneOverrides, ConfigResolver
from .transfer import FileTransferor
from .transport import SSHTransport
from .vmware import EsxiHost


class CloneRun:
    """Bookkeeping for one clone: which step is running and what finished."""

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        self.log = logger.bind(operation_id=operation_id)
        self.current: Optional[CloneStep] = None
        self.completed: List[CloneStep] = []

    def start(self, step: CloneStep) -> None:
        self.current = step
        self.log.info(f"Step {step.value} started", step=step.value)

    def done(self) -> None:
        if self.current is not None:
            self.completed.append(self.current)
            self.current = None

    def skip(self, step: CloneStep, reason: str) -> None:
        self.log.info(f"Step {step.value} skipped: {reason}", step=step.value)


class VMCloner:
    """Handles VM cloning operations."""

    def __init__(
        self,
        transport: SSHTransport,
        config: AppConfig,
        inventory: Inventory,
        network_resolver: Optional[NetworkIdentityResolver] = None,
        staging_root: Optional[str] = None,
    ):
        """Initialize VM cloner."""
        self.transport = transport
        self.config = config
        self.inventory = inventory
        self.resolver = ConfigResolver(config, inventory)
        self.network_resolver = network_resolver or NetworkIdentityResolver()
        self.checker = PreconditionChecker(config)
        self.transferor = FileTransferor(staging_root or config.staging_dir or "./tmp")

    async def clone(
        self,
        target: str,
        overrides: Optional[CloneOverrides] = None,
        flags: Optional[OperationFlags] = None,
    ) -> CloneResult:
        """
        Clone a virtual machine onto the host selected by ``target``.

        Args:
            target: Inventory host or group pattern; must select exactly one host
            overrides: Explicit values that win over host defaults and constants
            flags: Operation switches

        Returns:
            CloneResult: Result of the clone operation
        """
        overrides = overrides or CloneOverrides()
        flags = flags or OperationFlags()
        operation_id = str(uuid.uuid4())
        start_time = datetime.now()
        run = CloneRun(operation_id)
        plan: Optional[ClonePlan] = None
        validation: Optional[ValidationResult] = None
        bytes_transferred = 0
        vm_id: Optional[str] = None

        run.log.info(
            f"Starting clone operation {operation_id} onto {target}",
            target=target,
            dry_run=flags.dry_run,
        )

        try:
            run.start(CloneStep.RESOLVE)
            if flags.dry_run and flags.direct_scp:
                raise ValidationError("direct scp does not support dry run", "dry_run")
            dst_entry = self.checker.check_targets(self.inventory.select(target))

            async with self.transport.connect(
                dst_entry.host, dst_entry.port, dst_entry.user
            ) as dst_conn:
                dest_host = EsxiHost(dst_conn, dst_entry.name)
                facts = await dest_host.gather_facts()
                plan = await self.resolve_plan(overrides, flags, dst_entry, facts)
                src_entry = self.inventory.get(plan.source.server)
                run.done()

                run.start(CloneStep.PRECONDITIONS)
                async with self.transport.connect(
                    src_entry.host, src_entry.port, src_entry.user
                ) as src_conn:
                    source_host = EsxiHost(src_conn, src_entry.name)

                    validation = await self.checker.validate(plan, facts, source_host, dest_host)
                    if not validation.valid:
                        raise PreconditionError(validation.errors)
                    run.done()

                    run.start(CloneStep.COPY_CONFIGS)
                    bytes_transferred += await self.transferor.copy_configs(
                        plan, src_conn, dst_conn
                    )
                    run.done()

                    if flags.dry_run:
                        steps = list(CloneStep)
                        for step in steps[steps.index(CloneStep.COPY_CONFIGS) + 1:]:
                            run.skip(step, "dry run")
                    else:
                        patcher = ConfigPatcher(dst_conn, plan.destination)

                        run.start(CloneStep.PATCH_CONFIGS)
                        await patcher.patch(plan.source)
                        run.done()

                        run.start(CloneStep.COPY_DISK)
                        bytes_transferred += await self.transferor.copy_disk(
                            plan, src_conn, dst_conn, src_entry, dst_entry
                        )
                        run.done()

                        vm_id = await self._finish_on_destination(run, plan, dest_host, patcher)

            duration = (datetime.now() - start_time).total_seconds()
            run.log.info(
                f"Clone operation {operation_id} completed successfully",
                duration=duration,
                vm_id=vm_id,
            )

            return CloneResult(
                operation_id=operation_id,
                success=True,
                vm_name=plan.source.name,
                new_vm_name=plan.destination.name,
                source_host=plan.source.server,
                dest_host=plan.destination.server,
                duration=duration,
                bytes_transferred=bytes_transferred,
                vm_id=vm_id,
                completed_steps=run.completed,
                warnings=validation.warnings if validation else [],
                validation=validation,
            )

        except EsxiCloneError as e:
            duration = (datetime.now() - start_time).total_seconds()
            run.log.error(
                f"Clone operation {operation_id} failed at step "
                f"{run.current.value if run.current else 'unknown'}: {e}",
                step=run.current.value if run.current else None,
                error_code=e.error_code,
            )

            return CloneResult(
                operation_id=operation_id,
                success=False,
                vm_name=plan.source.name if plan else "",
                new_vm_name=plan.destination.name if plan else "",
                source_host=plan.source.server if plan else "",
                dest_host=plan.destination.server if plan else target,
                duration=duration,
                bytes_transferred=bytes_transferred,
                vm_id=vm_id,
                completed_steps=run.completed,
                failed_step=run.current,
                error=str(e),
                error_code=e.error_code,
                validation=validation,
            )

    async def resolve_plan(
        self,
        overrides: CloneOverrides,
        flags: OperationFlags,
        dst_entry: HostEntry,
        facts: HostFacts,
    ) -> ClonePlan:
        """Resolve every parameter of the clone once, up front."""
        source = self.resolver.resolve_source(overrides, dst_entry)
        destination = self.resolver.resolve_destination(overrides, dst_entry, facts, source)
        network = await self.network_resolver.resolve(overrides, dst_entry, facts, destination)

        logger.info(
            f"Resolved clone {source.server}:{source.vm_dir} -> "
            f"{destination.server}:{destination.vm_dir}",
            source=source.vm_dir,
            destination=destination.vm_dir,
            ip=network.ip,
            gateway=network.gateway,
            network=destination.network,
        )
        return ClonePlan(source=source, destination=destination, network=network, flags=flags)

    async def _finish_on_destination(
        self,
        run: CloneRun,
        plan: ClonePlan,
        dest_host: EsxiHost,
        patcher: ConfigPatcher,
    ) -> Optional[str]:
        """Convert, set OVF properties, register and power on. Returns the VM id."""
        flags = plan.flags
        destination = plan.destination
        vm_id: Optional[str] = None

        if flags.convert_to_thin:
            run.start(CloneStep.CONVERT_DISK)
            await dest_host.convert_to_thin(destination.file_path(".vmdk"))
            run.done()
        else:
            run.skip(CloneStep.CONVERT_DISK, "disabled")

        if flags.do_ovf_params:
            run.start(CloneStep.OVF_PARAMS)
            await patcher.set_ovf_environment(plan.network)
            run.done()
        else:
            run.skip(CloneStep.OVF_PARAMS, "disabled")

        if flags.do_register:
            run.start(CloneStep.REGISTER)
            vm_id = await dest_host.register(destination.file_path(".vmx"), destination.name)
            run.done()
        else:
            run.skip(CloneStep.REGISTER, "disabled")

        if flags.do_power_on and vm_id is not None:
            run.start(CloneStep.POWER_ON)
            await dest_host.power_on(vm_id)
            run.done()
        elif flags.do_power_on:
            run.skip(CloneStep.POWER_ON, "VM was not registered")
        else:
            run.skip(CloneStep.POWER_ON, "disabled")

        return vm_id
