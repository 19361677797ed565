"""Test configuration and fixtures for esxi-clone."""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from esxi_clone.config import AppConfig  # noqa: E402
from esxi_clone.inventory import Inventory  # noqa: E402
from esxi_clone.models import (  # noqa: E402
    ClonePlan,
    DestinationDescriptor,
    NetworkConfig,
    OperationFlags,
    SourceDescriptor,
)
from esxi_clone.network import NetworkIdentityResolver  # noqa: E402
from fakes import FakeEsxiHost, FakeTransport  # noqa: E402


SOURCE_VMX = """\
.encoding = "UTF-8"
config.version = "8"
virtualHW.version = "13"
displayName = "phoenix11"
annotation = "phoenix11 template"
nvram = "phoenix11.nvram"
extendedConfigFile = "phoenix11.vmxf"
scsi0:0.present = "TRUE"
scsi0:0.fileName = "phoenix11.vmdk"
ethernet0.present = "TRUE"
ethernet0.networkName = "VM Network"
ethernet0.addressType = "vpx"
ethernet0.generatedAddress = "00:50:56:aa:bb:cc"
uuid.bios = "56 4d 12 34 56 78 9a bc-de f0 12 34 56 78 9a bc"
uuid.location = "56 4d 12 34 56 78 9a bc-de f0 12 34 56 78 9a bc"
vc.uuid = "52 1c 0f 9d 3e 5a 77 81-a2 44 90 1d 7b 6c 55 12"
sched.swap.derivedName = "/vmfs/volumes/5a1b2c3d-0e1f/phoenix11/phoenix11-1a2b3c4d.vswp"
"""

SOURCE_VMDK = """\
# Disk DescriptorFile
version=1
encoding="UTF-8"
CID=fffffffe
parentCID=ffffffff
createType="vmfs"

# Extent description
RW 41943040 VMFS "phoenix11-flat.vmdk"

# The Disk Data Base
#DDB

ddb.adapterType = "lsilogic"
ddb.virtualHWVersion = "13"
"""

SOURCE_VMXF = """\
<?xml version="1.0"?>
<Foundry>
<VM>
<VMId type="string">52 d1 0a 4b 19 28 3f 01-8e 7c 21 9a 5d 33 40 6e</VMId>
<ClientMetaData>
<clientMetaDataAttributes/>
<HistoryEventList/></ClientMetaData>
<vmxPathName type="string">phoenix11.vmx</vmxPathName></VM></Foundry>
"""

SOURCE_DIR = "/vmfs/volumes/infra.data/phoenix11"
DEST_DIR = "/vmfs/volumes/nest-test-sys/phoenix11-test"

DNS_RECORDS = {
    "phoenix11-test.example.org": "10.1.10.123",
    "web01.example.org": "10.1.20.7",
}


def fake_lookup(fqdn: str) -> str:
    return DNS_RECORDS.get(fqdn, "NXDOMAIN")


@pytest.fixture
def source_host():
    """cage7 holding a powered-off phoenix11 on infra.data."""
    host = FakeEsxiHost("10.1.1.7", "cage7")
    host.add_datastore("infra.data")
    host.add_file(f"{SOURCE_DIR}/phoenix11.vmx", SOURCE_VMX)
    host.add_file(f"{SOURCE_DIR}/phoenix11.vmdk", SOURCE_VMDK)
    host.add_file(f"{SOURCE_DIR}/phoenix11.vmxf", SOURCE_VMXF)
    host.add_file(f"{SOURCE_DIR}/phoenix11.nvram", "NVRAM-BLOB")
    host.add_file(f"{SOURCE_DIR}/phoenix11.vmsd", ".encoding = \"UTF-8\"\n")
    host.add_file(f"{SOURCE_DIR}/phoenix11-flat.vmdk", "FLAT-DISK-CONTENTS" * 64)
    host.add_vm("phoenix11", f"{SOURCE_DIR}/phoenix11.vmx")
    return host


@pytest.fixture
def dest_host():
    """nest-test with an empty nest-test-sys datastore."""
    host = FakeEsxiHost("10.1.10.20", "nest-test")
    host.add_datastore("nest-test-sys")
    return host


@pytest.fixture
def fake_transport(source_host, dest_host):
    return FakeTransport(source_host, dest_host)


@pytest.fixture
def inventory_data():
    """Inventory in its parsed YAML form."""
    return {
        "hosts": {
            "cage7": {
                "address": "10.1.1.7",
                "vars": {"local_datastores": {"sys": "cage7-sys", "data": "infra.data"}},
            },
            "nest-test": {"address": "10.1.10.20"},
            "nest-prod": {"address": "10.1.20.20", "vars": {"dst_vm_vol": "nest-prod-sys"}},
        },
        "groups": {"nests": ["nest-test", "nest-prod"]},
    }


@pytest.fixture
def inventory(inventory_data):
    return Inventory.from_dict(inventory_data)


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(staging_dir=str(tmp_path / "staging"))


@pytest.fixture
def network_resolver():
    return NetworkIdentityResolver(lookup=fake_lookup)


@pytest.fixture
def clone_plan():
    """The phoenix11 -> phoenix11-test plan, fully resolved."""
    return ClonePlan(
        source=SourceDescriptor(
            server="cage7", host="10.1.1.7", name="phoenix11", datastore="infra.data"
        ),
        destination=DestinationDescriptor(
            server="nest-test",
            host="10.1.10.20",
            name="phoenix11-test",
            description="clone of phoenix11",
            datastore="nest-test-sys",
            network="adm-srv",
        ),
        network=NetworkConfig(
            hostname="phoenix11-test",
            domain="example.org",
            ip="10.1.10.123",
            gateway="10.1.10.254",
            dns_servers=("10.1.0.53", "10.1.0.54"),
        ),
        flags=OperationFlags(),
    )
