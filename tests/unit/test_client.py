"""Unit tests for the EsxiCloneClient facade."""

from pathlib import Path

import pytest

from esxi_clone import EsxiCloneClient
from esxi_clone.config import AppConfig
from esxi_clone.exceptions import ConfigurationError
from esxi_clone.resolver import CloneOverrides

from fakes import FakeTransport


@pytest.fixture
def client(app_config, inventory, fake_transport, network_resolver):
    return EsxiCloneClient(
        config=app_config,
        inventory=inventory,
        transport=fake_transport,
        network_resolver=network_resolver,
    )


class TestClientSetup:
    def test_requires_inventory(self):
        with pytest.raises(ConfigurationError, match="No inventory configured"):
            EsxiCloneClient(config=AppConfig())

    def test_loads_inventory_from_config(self, tmp_path):
        path = tmp_path / "hosts.yaml"
        path.write_text("hosts:\n  cage7:\n    address: 10.1.1.7\n")
        client = EsxiCloneClient(config=AppConfig(inventory_path=str(path)))

        assert list(client.inventory.hosts) == ["cage7"]
        assert client.transport.host_key_policy == "strict"

    @pytest.mark.asyncio
    async def test_ssh_port_is_the_inventory_default(self, tmp_path, source_host, dest_host):
        path = tmp_path / "hosts.yaml"
        path.write_text(
            "hosts:\n"
            "  cage7:\n    address: 10.1.1.7\n"
            "  nest-test:\n    address: 10.1.10.20\n    port: 22\n"
        )
        transport = FakeTransport(source_host, dest_host)
        client = EsxiCloneClient(
            config=AppConfig(inventory_path=str(path), ssh_port=2222), transport=transport
        )

        assert client.inventory.get("cage7").port == 2222
        assert client.inventory.get("nest-test").port == 22
        async with client:
            await client.list_vms("all")
        assert transport.connects == [("10.1.1.7", 2222, "root"), ("10.1.10.20", 22, "root")]

    def test_staging_next_to_inventory(self, tmp_path, inventory):
        config = AppConfig(inventory_path=str(tmp_path / "hosts.yaml"))
        client = EsxiCloneClient(config=config, inventory=inventory)
        assert client.cloner.transferor.staging_root == tmp_path / "tmp"

    def test_configured_staging_wins(self, tmp_path, inventory):
        config = AppConfig(inventory_path="/etc/hosts.yaml", staging_dir=str(tmp_path / "s"))
        client = EsxiCloneClient(config=config, inventory=inventory)
        assert client.cloner.transferor.staging_root == Path(tmp_path / "s")


class TestClientOperations:
    @pytest.mark.asyncio
    async def test_clone_vm(self, client, fake_transport):
        async with client:
            result = await client.clone_vm(
                "nest-test",
                overrides=CloneOverrides(dst_vm_name="phoenix11-test", dst_vm_ip="10.1.10.123"),
            )

        assert result.success, result.error
        assert result.vm_id == "10"
        assert fake_transport.closed

    @pytest.mark.asyncio
    async def test_list_vms(self, client):
        async with client:
            results = await client.list_vms("cage7,nest-test")

        assert [vm.name for vm in results["cage7"]] == ["phoenix11"]
        assert results["nest-test"] == []

    @pytest.mark.asyncio
    async def test_list_vms_unreachable_host(self, client):
        # nest-prod is in the inventory but not reachable
        results = await client.list_vms("nests")
        assert results == {"nest-test": [], "nest-prod": []}
