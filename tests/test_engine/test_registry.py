"""Tests for template registry operations."""

import json
from datetime import datetime, timezone

import pytest

from cloudstamp.engine.registry import TemplateRegistry, TemplateSummary
from cloudstamp.exceptions import InputError


TEMPLATE_CONFIG = {
    "name": "ubuntu-2204",
    "memory": 2048,
    "cores": 2,
    "ostype": "l26",
    "scsi0": "local-lvm:base-9000-disk-0,size=16G",
    "net0": "virtio=BC:24:11:00:00:01,bridge=vmbr1",
    "ide2": "local-lvm:vm-9000-cloudinit,media=cdrom",
    "ciuser": "admin",
    "boot": "order=scsi0",
    "tags": "db;web",
    "description": "Ubuntu Server 22.04 template",
    "template": 1,
}


@pytest.fixture
def registry(hypervisor, tmp_path):
    hypervisor.get_config.return_value = dict(TEMPLATE_CONFIG)
    return TemplateRegistry(
        hypervisor,
        tmp_path / "exports",
        now=lambda: datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc),
    )


class TestListing:
    """Test listing and describing templates."""

    @pytest.mark.asyncio
    async def test_list_only_templates(self, registry, hypervisor):
        """Test only template VMs are listed, ordered by id."""
        hypervisor.list_vms.return_value = [
            {"vmid": 9001, "name": "debian-12", "template": 1, "maxmem": 1073741824, "maxdisk": 8589934592},
            {"vmid": 101, "name": "web", "status": "running", "maxmem": 1073741824},
            {"vmid": 9000, "name": "ubuntu-2204", "template": 1, "maxmem": 2147483648,
             "maxdisk": 17179869184, "tags": "db;web"},
        ]

        templates = await registry.list()

        assert [t.vmid for t in templates] == [9000, 9001]
        assert templates[0] == TemplateSummary(9000, "ubuntu-2204", 2048, 16.0, ["db", "web"])
        assert templates[1].tags == []

    @pytest.mark.asyncio
    async def test_list_empty(self, registry, hypervisor):
        """Test an empty node."""
        hypervisor.list_vms.return_value = []

        assert await registry.list() == []

    @pytest.mark.asyncio
    async def test_describe(self, registry):
        """Test the configuration projection."""
        details = await registry.describe(9000)

        assert details.name == "ubuntu-2204"
        assert details.memory == 2048
        assert details.cores == 2
        assert details.boot == "order=scsi0"
        assert details.tags == ["db", "web"]
        assert details.is_template is True


class TestMutations:
    """Test clone and delete."""

    @pytest.mark.asyncio
    async def test_clone(self, registry, hypervisor):
        """Test a clone is converted into a template."""
        new_vmid = await registry.clone(9000, "ubuntu-copy")

        assert new_vmid == 9000
        hypervisor.clone.assert_awaited_once_with(9000, 9000, "ubuntu-copy")
        hypervisor.convert_to_template.assert_awaited_once_with(9000)

    @pytest.mark.asyncio
    async def test_clone_rejects_bad_name(self, registry, hypervisor):
        """Test clone names follow template naming rules."""
        with pytest.raises(InputError):
            await registry.clone(9000, "bad name")

        hypervisor.clone.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete(self, registry, hypervisor):
        """Test deleting a template."""
        await registry.delete(9000)

        hypervisor.destroy.assert_awaited_once_with(9000)

    @pytest.mark.asyncio
    async def test_delete_refuses_plain_vm(self, registry, hypervisor):
        """Test ordinary VMs are never deleted through the registry."""
        hypervisor.get_config.return_value = {"name": "web", "memory": 1024}

        with pytest.raises(InputError):
            await registry.delete(101)

        hypervisor.destroy.assert_not_awaited()


class TestExports:
    """Test configuration export and import."""

    @pytest.mark.asyncio
    async def test_export(self, registry, tmp_path):
        """Test the export document layout."""
        path = await registry.export(9000, "ubuntu-base")

        assert path == tmp_path / "exports" / "ubuntu-base.json"
        document = json.loads(path.read_text())
        assert document["metadata"] == {
            "exported_date": document["metadata"]["exported_date"],
            "source_vmid": 9000,
            "config_name": "ubuntu-base",
            "version": "1.0",
        }
        exported = datetime.fromisoformat(document["metadata"]["exported_date"])
        assert exported == datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
        assert document["proxmox_config"] == TEMPLATE_CONFIG

    @pytest.mark.asyncio
    async def test_export_rejects_bad_name(self, registry):
        """Test export names cannot escape the export directory."""
        with pytest.raises(InputError):
            await registry.export(9000, "../etc/passwd")

    @pytest.mark.asyncio
    async def test_import(self, registry, hypervisor):
        """Test a shell template is rebuilt from an export."""
        await registry.export(9000, "ubuntu-base")
        hypervisor.next_free_id.return_value = 9100

        vmid = await registry.import_config("ubuntu-base", name="ubuntu-restored")

        assert vmid == 9100
        hypervisor.create_vm.assert_awaited_once_with(
            9100, "ubuntu-restored", 2048, 2, net0="virtio=BC:24:11:00:00:01,bridge=vmbr1"
        )
        hypervisor.set_options.assert_awaited_once_with(9100, {
            "ostype": "l26",
            "description": "Ubuntu Server 22.04 template",
        })
        hypervisor.convert_to_template.assert_awaited_once_with(9100)

    @pytest.mark.asyncio
    async def test_import_defaults(self, registry, hypervisor, tmp_path):
        """Test missing export fields fall back to defaults."""
        exports = tmp_path / "exports"
        exports.mkdir()
        (exports / "bare.json").write_text(json.dumps({"metadata": {}, "proxmox_config": {}}))

        await registry.import_config("bare")

        hypervisor.create_vm.assert_awaited_once_with(9000, "bare", 2048, 2, net0="virtio,bridge=vmbr0")
        hypervisor.set_options.assert_awaited_once_with(9000, {
            "ostype": "l26",
            "description": "Imported from bare",
        })

    @pytest.mark.asyncio
    async def test_import_missing(self, registry, hypervisor):
        """Test importing an unknown export."""
        with pytest.raises(InputError):
            await registry.import_config("nothing")

        hypervisor.create_vm.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_import_invalid_json(self, registry, tmp_path):
        """Test a corrupt export is an input error."""
        exports = tmp_path / "exports"
        exports.mkdir()
        (exports / "broken.json").write_text("{not json")

        with pytest.raises(InputError):
            await registry.import_config("broken")

    @pytest.mark.asyncio
    async def test_list_and_delete_exports(self, registry, tmp_path):
        """Test listing saved exports, including unreadable ones."""
        await registry.export(9000, "ubuntu-base")
        (tmp_path / "exports" / "broken.json").write_text("{not json")

        exports = registry.list_exports()

        assert [e.name for e in exports] == ["broken", "ubuntu-base"]
        assert exports[0].source_vmid is None
        assert exports[1].source_vmid == 9000

        registry.delete_export("ubuntu-base")

        assert [e.name for e in registry.list_exports()] == ["broken"]
        with pytest.raises(InputError):
            registry.delete_export("ubuntu-base")

    def test_list_exports_without_directory(self, registry):
        """Test a missing export directory lists nothing."""
        assert registry.list_exports() == []


class TestCheck:
    """Test static template validation."""

    @pytest.mark.asyncio
    async def test_healthy_template(self, registry):
        """Test a complete template passes."""
        report = await registry.check(9000)

        assert report.ok
        assert report.warnings == []
        assert "Storage: found scsi0" in report.passed_checks
        assert "Network: found net0" in report.passed_checks
        assert "Cloud-init user: admin" in report.passed_checks

    @pytest.mark.asyncio
    async def test_broken_vm(self, registry, hypervisor):
        """Test every rule reports on a bare VM."""
        hypervisor.get_config.return_value = {"memory": 256, "cores": 0}

        report = await registry.check(101)

        assert not report.ok
        assert report.errors == [
            "VM 101 is not marked as a template",
            "Memory too low (256 MB, minimum 512 MB)",
            "No CPU cores assigned",
            "No storage devices found",
        ]
        assert report.warnings == ["No network interfaces configured"]
        assert report.info == ["Cloud-init not configured"]

    @pytest.mark.asyncio
    async def test_warnings(self, registry, hypervisor):
        """Test low memory and a user-less cloud-init drive only warn."""
        config = dict(TEMPLATE_CONFIG, memory=768)
        del config["ciuser"]
        hypervisor.get_config.return_value = config

        report = await registry.check(9000)

        assert report.ok
        assert report.warnings == [
            "Low memory allocation (768 MB)",
            "Cloud-init enabled but no user configured",
        ]
