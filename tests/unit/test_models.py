"""Unit tests for data models."""

import dataclasses

import pytest

from esxi_clone.models import (
    CONFIG_EXTENSIONS,
    VOLATILE_KEYS,
    CloneResult,
    CloneStep,
    CopyDirection,
    DestinationDescriptor,
    NetworkConfig,
    OperationFlags,
    SourceDescriptor,
    ValidationResult,
)


class TestDescriptors:
    """Test source and destination path derivation."""

    def test_source_paths(self):
        source = SourceDescriptor("cage7", "10.1.1.7", "phoenix11", "infra.data")
        assert source.path == "/vmfs/volumes/infra.data"
        assert source.vm_dir == "/vmfs/volumes/infra.data/phoenix11"
        assert source.file_path(".vmx") == "/vmfs/volumes/infra.data/phoenix11/phoenix11.vmx"
        assert source.file_path("-flat.vmdk").endswith("/phoenix11-flat.vmdk")

    def test_destination_paths(self):
        dest = DestinationDescriptor(
            "nest-test", "10.1.10.20", "phoenix11-test", "clone", "nest-test-sys", "adm-srv"
        )
        assert dest.path == "/vmfs/volumes/nest-test-sys"
        assert dest.vm_dir == "/vmfs/volumes/nest-test-sys/phoenix11-test"
        assert dest.file_path(".vmxf") == (
            "/vmfs/volumes/nest-test-sys/phoenix11-test/phoenix11-test.vmxf"
        )

    def test_descriptors_are_frozen(self):
        source = SourceDescriptor("cage7", "10.1.1.7", "phoenix11", "infra.data")
        with pytest.raises(dataclasses.FrozenInstanceError):
            source.name = "other"


class TestNetworkConfig:
    """Test derived service names."""

    def test_derived_hosts(self):
        network = NetworkConfig(
            hostname="phoenix11-test",
            domain="example.org",
            ip="10.1.10.123",
            gateway="10.1.10.254",
            dns_servers=("10.1.0.53", "10.1.0.54"),
        )
        assert network.ntp == "ntp.example.org"
        assert network.relay == "smtp.example.org"
        assert network.syslog == "log.example.org"
        assert network.dns == "10.1.0.53,10.1.0.54"

    def test_no_dns_servers(self):
        network = NetworkConfig("a", "example.org", "10.0.0.1", "10.0.0.254")
        assert network.dns == ""


class TestOperationFlags:
    """Test flag defaults and derived copy direction."""

    def test_defaults(self):
        flags = OperationFlags()
        assert flags.direct_scp is False
        assert flags.push_scp is False
        assert flags.convert_to_thin is True
        assert flags.do_ovf_params is True
        assert flags.do_register is True
        assert flags.do_power_on is False
        assert flags.dry_run is False
        assert flags.allow_running_source is False

    def test_copy_direction(self):
        assert OperationFlags().copy_direction == CopyDirection.PULL
        assert OperationFlags(direct_scp=True, push_scp=True).copy_direction == CopyDirection.PUSH


class TestConstants:
    def test_config_extensions(self):
        assert CONFIG_EXTENSIONS == ("vmx", "nvram", "vmsd", "vmxf", "vmdk")

    def test_volatile_keys(self):
        assert set(VOLATILE_KEYS) == {
            "ethernet0.generatedAddress",
            "uuid.location",
            "uuid.bios",
            "vc.uuid",
            "sched.swap.derivedName",
        }

    def test_step_order(self):
        assert [step.value for step in CloneStep] == [
            "resolve",
            "preconditions",
            "copy_configs",
            "patch_configs",
            "copy_disk",
            "convert_disk",
            "ovf_params",
            "register",
            "power_on",
        ]


class TestResults:
    def test_clone_result_defaults(self):
        result = CloneResult(
            operation_id="op",
            success=True,
            vm_name="phoenix11",
            new_vm_name="phoenix11-test",
            source_host="cage7",
            dest_host="nest-test",
            duration=1.5,
            bytes_transferred=0,
        )
        assert result.completed_steps == []
        assert result.failed_step is None
        assert result.error_code == 0
        assert result.warnings == []

    def test_validation_result_lists_are_independent(self):
        first = ValidationResult(valid=True)
        second = ValidationResult(valid=True)
        first.errors.append("x")
        assert second.errors == []
