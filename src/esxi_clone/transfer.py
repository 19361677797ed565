"""
Moving VM files from the source host to the destination host.

Files go either through a local staging directory (fetch, then upload) or,
for the large flat disk only, directly between the hosts with scp.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from .exceptions import EsxiCloneError, TransferError, ValidationError
from .inventory import HostEntry
from .logging import logger
from .models import CONFIG_EXTENSIONS, ClonePlan, CopyDirection
from .security import CommandBuilder, SecurityValidator
from .transport import SSHConnection

FLAT_DISK_SUFFIX = "-flat.vmdk"


@dataclass
class PeerCopy:
    """
    A direct host-to-host copy.

    ``actor`` runs scp and authenticates to ``peer_login`` with the operator's
    SSH agent, forwarded over the actor's session.
    """

    actor: SSHConnection
    actor_name: str
    peer_login: str
    direction: CopyDirection
    forward_agent: bool = True

    def command(self, source_path: str, dest_path: str) -> str:
        if self.direction == CopyDirection.PULL:
            return CommandBuilder.build_scp_command(
                source_path, dest_path, source_login=self.peer_login
            )
        return CommandBuilder.build_scp_command(
            source_path, dest_path, dest_login=self.peer_login
        )


class FileTransferor:
    """Copies the config file set and the flat disk for one clone."""

    def __init__(self, staging_root: str) -> None:
        self.staging_root = Path(staging_root).expanduser()

    def staging_dir(self, plan: ClonePlan) -> Path:
        """Local directory keyed by source server and source VM name."""
        relative = f"{plan.source.server}/{plan.source.name}"
        return Path(SecurityValidator.sanitize_path(relative, str(self.staging_root)))

    def config_files(self, plan: ClonePlan) -> List[Tuple[str, Path, str]]:
        """(source path, staging path, destination path) for each config file."""
        staging = self.staging_dir(plan)
        return [
            (
                plan.source.file_path(f".{ext}"),
                staging / f"{plan.source.name}.{ext}",
                plan.destination.file_path(f".{ext}"),
            )
            for ext in CONFIG_EXTENSIONS
        ]

    async def copy_configs(
        self, plan: ClonePlan, src_conn: SSHConnection, dst_conn: SSHConnection
    ) -> int:
        """
        Fetch every config file, create the destination directory, upload.

        Returns:
            int: Bytes uploaded
        """
        files = self.config_files(plan)

        if plan.flags.dry_run:
            for src_path, staged, dst_path in files:
                logger.info(
                    f"[dry run] would copy {src_path} -> {dst_path}",
                    source=plan.source.server,
                    destination=plan.destination.server,
                )
            return 0

        try:
            for src_path, staged, _ in files:
                await src_conn.fetch_file(src_path, str(staged))

            await dst_conn.mkdir(plan.destination.vm_dir)

            total = 0
            for _, staged, dst_path in files:
                stats = await dst_conn.transfer_file(str(staged), dst_path)
                total += stats.bytes_transferred
        except EsxiCloneError as e:
            raise TransferError(str(e), plan.source.server, plan.destination.server) from e

        logger.info(
            f"Copied {len(files)} config files to {plan.destination.vm_dir}",
            files=len(files),
            bytes=total,
        )
        return total

    async def copy_disk(
        self,
        plan: ClonePlan,
        src_conn: SSHConnection,
        dst_conn: SSHConnection,
        src_entry: HostEntry,
        dst_entry: HostEntry,
    ) -> int:
        """Copy the flat disk, staged or directly. Returns bytes moved."""
        src_path = plan.source.file_path(FLAT_DISK_SUFFIX)
        dst_path = plan.destination.file_path(FLAT_DISK_SUFFIX)

        if plan.flags.direct_scp:
            if plan.flags.dry_run:
                raise ValidationError("direct scp does not support dry run", "dry_run")
            peer = self.peer_copy(plan, src_conn, dst_conn, src_entry, dst_entry)
            return await self.direct_copy(plan, peer, src_path, dst_path, dst_conn)

        if plan.flags.dry_run:
            logger.info(f"[dry run] would copy {src_path} -> {dst_path}")
            return 0

        staged = self.staging_dir(plan) / f"{plan.source.name}{FLAT_DISK_SUFFIX}"
        try:
            await src_conn.fetch_file(src_path, str(staged))
            stats = await dst_conn.transfer_file(str(staged), dst_path)
        except EsxiCloneError as e:
            raise TransferError(str(e), plan.source.server, plan.destination.server) from e

        logger.info(
            f"Copied disk to {dst_path} via staging",
            path=dst_path,
            bytes=stats.bytes_transferred,
        )
        return stats.bytes_transferred

    @staticmethod
    def peer_copy(
        plan: ClonePlan,
        src_conn: SSHConnection,
        dst_conn: SSHConnection,
        src_entry: HostEntry,
        dst_entry: HostEntry,
    ) -> PeerCopy:
        """Pick the actor and peer for a direct copy from the copy direction."""
        direction = plan.flags.copy_direction
        if direction == CopyDirection.PULL:
            return PeerCopy(
                actor=dst_conn,
                actor_name=dst_entry.name,
                peer_login=f"{src_entry.user}@{plan.source.host}",
                direction=direction,
            )
        return PeerCopy(
            actor=src_conn,
            actor_name=src_entry.name,
            peer_login=f"{dst_entry.user}@{plan.destination.host}",
            direction=direction,
        )

    async def direct_copy(
        self,
        plan: ClonePlan,
        peer: PeerCopy,
        src_path: str,
        dst_path: str,
        dst_conn: SSHConnection,
    ) -> int:
        command = peer.command(src_path, dst_path)
        logger.info(
            f"Copying disk directly ({peer.direction.value}) on {peer.actor_name}",
            actor=peer.actor_name,
            direction=peer.direction.value,
            command=command,
        )

        try:
            _, stderr, exit_code = await peer.actor.execute_command(
                command, forward_agent=peer.forward_agent
            )
            if exit_code != 0:
                raise TransferError(
                    f"scp exited with {exit_code}: {stderr.strip()}",
                    plan.source.server,
                    plan.destination.server,
                )
            copied = await dst_conn.stat(dst_path)
        except TransferError:
            raise
        except EsxiCloneError as e:
            raise TransferError(str(e), plan.source.server, plan.destination.server) from e

        return copied.size
