#!/usr/bin/env python3
"""
Command-line interface for ESXi cloning operations.
"""

import asyncio
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Any

import click
import yaml
from click.core import ParameterSource

from esxi_clone import EsxiCloneClient, CloneOverrides, OperationFlags
from esxi_clone.config import AppConfig, DEFAULT_CONFIG_PATHS, config_loader
from esxi_clone.exceptions import EsxiCloneError, ConfigurationError, exit_status
from esxi_clone.inventory import Inventory
from esxi_clone.logging import logger
from esxi_clone.models import CloneResult
from esxi_clone.resolver import FlagOverrides, load_vars_file


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_level: str = "INFO"
) -> None:
    """Setup logging configuration."""
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logging.getLogger().setLevel(level)
    logger.set_level(level)


def load_config(config_path: Optional[str]) -> AppConfig:
    """Load configuration, falling back to defaults on error."""
    try:
        return config_loader.load_config(config_path)
    except ConfigurationError as e:
        click.echo(f"Warning: {e}", err=True)
        return AppConfig()


def result_to_dict(result: CloneResult) -> dict[str, Any]:
    data = dataclasses.asdict(result)
    data["completed_steps"] = [step.value for step in result.completed_steps]
    data["failed_step"] = result.failed_step.value if result.failed_step else None
    return data


@click.group()
@click.option("--config", "-c", default=None, help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-error output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default=None,
    help="Log level (default: from configuration)",
)
@click.version_option(package_name="esxi-clone")
@click.pass_context
def cli(
    ctx: Any, config: Optional[str], verbose: bool, quiet: bool, output: str, log_level: Optional[str]
) -> None:
    """Clone VMware VMs between ESXi hosts over SSH."""
    app_config = load_config(config)
    setup_logging(verbose, quiet, log_level or app_config.log_level)

    ctx.ensure_object(dict)
    ctx.obj["config"] = app_config
    ctx.obj["output_format"] = output
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


def _client_config(ctx: Any, inventory: Optional[str], ssh_key: Optional[str]) -> AppConfig:
    update: dict[str, Any] = {}
    if inventory:
        update["inventory_path"] = inventory
    if ssh_key:
        update["ssh_key_path"] = ssh_key
    return ctx.obj["config"].model_copy(update=update)


# clone option name -> OperationFlags field
_FLAG_OPTIONS = {
    "direct_scp": "direct_scp",
    "push_scp": "push_scp",
    "thin": "convert_to_thin",
    "ovf": "do_ovf_params",
    "register": "do_register",
    "power_on": "do_power_on",
    "dry_run": "dry_run",
    "allow_running_source": "allow_running_source",
}


def _operation_flags(ctx: Any, file_flags: FlagOverrides) -> OperationFlags:
    """Vars-file switches over the defaults, switches given on the command line over both."""
    given = {
        field: ctx.params[option]
        for option, field in _FLAG_OPTIONS.items()
        if ctx.get_parameter_source(option) == ParameterSource.COMMANDLINE
    }
    return dataclasses.replace(file_flags.applied_to(OperationFlags()), **given)


@cli.command()
@click.argument("target")
@click.option("--inventory", "-i", type=click.Path(exists=True), help="Inventory file")
@click.option(
    "--vars-file",
    "-e",
    type=click.Path(exists=True),
    help="YAML file of overrides and switches (src_vm_name, dst_vm_ip, direct_scp, ...)",
)
@click.option("--src-server", help="Inventory name of the source host")
@click.option("--src-name", help="Name of the VM to clone")
@click.option("--src-vol", help="Source datastore")
@click.option("--name", "-n", "dst_name", help="Name for the cloned VM")
@click.option("--desc", "dst_desc", help="Annotation for the cloned VM")
@click.option("--vol", "dst_vol", help="Destination datastore")
@click.option("--net", "dst_net", help="Destination port group for ethernet0")
@click.option("--ip", "dst_ip", help="Clone IP address (default: DNS lookup)")
@click.option("--gateway", "dst_gw", help="Clone gateway (default: .254 of the /24)")
@click.option("--direct-scp", is_flag=True, help="scp the disk directly between hosts")
@click.option("--push-scp", is_flag=True, help="With --direct-scp, run scp on the source host")
@click.option("--thin/--no-thin", default=True, help="Convert the disk to thin")
@click.option("--ovf/--no-ovf", default=True, help="Write OVF network properties")
@click.option("--register/--no-register", default=True, help="Register the clone")
@click.option("--power-on", is_flag=True, help="Power on the clone after registering")
@click.option("--dry-run", is_flag=True, help="Show what would be done")
@click.option(
    "--allow-running-source",
    is_flag=True,
    help="Clone even if the source VM is powered on",
)
@click.option("--ssh-key", "-k", help="SSH private key path")
@click.pass_context
def clone(
    ctx: Any,
    target: str,
    inventory: Optional[str],
    vars_file: Optional[str],
    src_server: Optional[str],
    src_name: Optional[str],
    src_vol: Optional[str],
    dst_name: Optional[str],
    dst_desc: Optional[str],
    dst_vol: Optional[str],
    dst_net: Optional[str],
    dst_ip: Optional[str],
    dst_gw: Optional[str],
    direct_scp: bool,
    push_scp: bool,
    thin: bool,
    ovf: bool,
    register: bool,
    power_on: bool,
    dry_run: bool,
    allow_running_source: bool,
    ssh_key: Optional[str],
) -> None:
    """Clone a VM onto the inventory host TARGET."""

    async def run_clone() -> None:
        try:
            if vars_file:
                overrides, file_flags = load_vars_file(vars_file)
            else:
                overrides, file_flags = CloneOverrides(), FlagOverrides()
            overrides = overrides.merged_with(
                CloneOverrides(
                    src_vm_server=src_server,
                    src_vm_name=src_name,
                    src_vm_vol=src_vol,
                    dst_vm_name=dst_name,
                    dst_vm_desc=dst_desc,
                    dst_vm_vol=dst_vol,
                    dst_vm_net=dst_net,
                    dst_vm_ip=dst_ip,
                    dst_vm_gw=dst_gw,
                )
            )
            flags = _operation_flags(ctx, file_flags)
            if flags.push_scp and not flags.direct_scp:
                click.echo("Warning: --push-scp has no effect without --direct-scp", err=True)

            async with EsxiCloneClient(config=_client_config(ctx, inventory, ssh_key)) as client:
                if not ctx.obj["quiet"]:
                    click.echo(f"Cloning VM onto {target}...")

                result = await client.clone_vm(target, overrides=overrides, flags=flags)

            if ctx.obj["output_format"] == "json":
                click.echo(json.dumps(result_to_dict(result), indent=2, default=str))
            elif result.success:
                click.echo(
                    f"✓ Successfully cloned VM '{result.vm_name}' to "
                    f"'{result.new_vm_name}' on {result.dest_host}"
                )
                click.echo(f"  Duration: {result.duration:.1f}s")
                click.echo(f"  Bytes transferred: {result.bytes_transferred}")
                if result.vm_id:
                    click.echo(f"  VM id: {result.vm_id}")
                for warning in result.warnings:
                    click.echo(f"  Warning: {warning}", err=True)
            else:
                step = result.failed_step.value if result.failed_step else "unknown"
                click.echo(f"✗ Clone failed at step {step}: {result.error}", err=True)

            if not result.success:
                sys.exit(exit_status(result.error_code))

        except EsxiCloneError as e:
            click.echo(f"✗ Error: {e}", err=True)
            sys.exit(e.exit_status)

    asyncio.run(run_clone())


@cli.command("list-vms")
@click.argument("pattern", default="all")
@click.option("--inventory", "-i", type=click.Path(exists=True), help="Inventory file")
@click.option("--ssh-key", "-k", help="SSH private key path")
@click.pass_context
def list_vms(ctx: Any, pattern: str, inventory: Optional[str], ssh_key: Optional[str]) -> None:
    """List registered VMs on inventory hosts matching PATTERN."""

    async def run_list() -> None:
        try:
            async with EsxiCloneClient(config=_client_config(ctx, inventory, ssh_key)) as client:
                results = await client.list_vms(pattern)
        except EsxiCloneError as e:
            click.echo(f"✗ Error: {e}", err=True)
            sys.exit(e.exit_status)

        if ctx.obj["output_format"] == "json":
            click.echo(
                json.dumps(
                    {host: [dataclasses.asdict(vm) for vm in vms] for host, vms in results.items()},
                    indent=2,
                )
            )
            return

        for host, vms in results.items():
            click.echo(f"\n{host}:")
            if vms:
                click.echo(f"{'Id':<6} {'Name':<24} {'File'}")
                click.echo("-" * 60)
                for vm in vms:
                    click.echo(f"{vm.vm_id:<6} {vm.name:<24} {vm.datastore_path}")
            else:
                click.echo("  No VMs found")

    asyncio.run(run_list())


@cli.command()
@click.argument("pattern", default="all")
@click.option("--inventory", "-i", type=click.Path(exists=True), help="Inventory file")
@click.pass_context
def hosts(ctx: Any, pattern: str, inventory: Optional[str]) -> None:
    """Show inventory hosts matching PATTERN."""
    inventory_path = inventory or ctx.obj["config"].inventory_path
    if not inventory_path:
        click.echo("No inventory configured; pass --inventory", err=True)
        sys.exit(1)

    try:
        selected = Inventory.load(inventory_path, default_port=ctx.obj["config"].ssh_port).select(pattern)
    except ConfigurationError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(e.exit_status)

    for entry in selected:
        click.echo(f"{entry.name:<20} {entry.user}@{entry.host}:{entry.port}")


@cli.group()
def config() -> None:
    """Manage configuration settings."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: Any) -> None:
    """Display current configuration."""
    click.echo(yaml.dump(ctx.obj["config"].model_dump(), default_flow_style=False))


@config.command("init")
@click.option("--config-dir", default="~/.config/esxi-clone", help="Configuration directory")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(config_dir: str, force: bool) -> None:
    """Initialize default configuration."""
    config_path = Path(config_dir).expanduser()
    config_path.mkdir(parents=True, exist_ok=True)

    config_file = config_path / "config.yaml"
    if config_file.exists() and not force:
        click.echo(f"Configuration already exists at {config_file} (use --force)", err=True)
        sys.exit(1)

    with open(config_file, "w") as f:
        yaml.dump(AppConfig().model_dump(), f, default_flow_style=False)

    click.echo(f"Configuration initialized at {config_file}")


@config.command("path")
def config_path() -> None:
    """Show the configuration file path being used."""
    paths = [os.path.expanduser(p) for p in DEFAULT_CONFIG_PATHS]

    click.echo("Configuration search paths (in order):")
    for i, path in enumerate(paths, 1):
        exists = "✓" if os.path.exists(path) else "✗"
        click.echo(f"  {i}. {exists} {path}")

    for path in paths:
        if os.path.exists(path):
            click.echo(f"\nCurrently using: {path}")
            return

    click.echo("\nNo configuration file found. Run 'esxi-clone config init' to create one.")


if __name__ == "__main__":
    cli()
