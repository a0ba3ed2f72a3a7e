"""Tests for CLI command implementations."""

import io

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from rich.console import Console

from cloudstamp.cli import commands
from cloudstamp.cli.session import Session
from cloudstamp.engine.plan import ProvisioningResult, ProvisionState
from cloudstamp.engine.selftest import TestReport as SelfTestReport
from cloudstamp.exceptions import InputError, StampError


SPEC_YAML = (
    "name: web01\n"
    "distribution: ubuntu\n"
    "version: '22.04'\n"
    "cpu_cores: 2\n"
    "memory_mb: 2048\n"
    "disk_gb: 16\n"
    "cloud_init:\n"
    "  mode: guided\n"
    "  username: admin\n"
)


@pytest.fixture
def output():
    console = Console(file=io.StringIO(), width=400)
    with patch("cloudstamp.cli.commands.console", console):
        yield console.file


@pytest.fixture
def session(tmp_path, hypervisor):
    config_dir = tmp_path / "configs"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text(
        "general:\n"
        f"  export_dir: {tmp_path / 'exports'}\n"
        "storage:\n"
        f"  image_cache_dir: {tmp_path / 'cache'}\n"
    )
    session = Session(config_dir=config_dir, hypervisor=hypervisor)
    with patch("cloudstamp.cli.session.setup_logging"):
        session.run(session.open())
    return session


@pytest.fixture
def spec_file(tmp_path):
    path = tmp_path / "web01.yaml"
    path.write_text(SPEC_YAML)
    return path


def failed_result(vmid=9000):
    return ProvisioningResult(
        run_id="web01-1700000000",
        state=ProvisionState.DISK_IMPORTED,
        vmid=vmid,
        failed_step="attach_disk",
        error="qm set failed",
    )


class TestSpecCommands:
    """Test commands that only read specifications."""

    def test_validate(self, session, spec_file, output):
        """Test a valid specification."""
        commands.validate_spec(session, spec_file)

        assert "Specification for web01 is valid" in output.getvalue()

    def test_validate_invalid(self, session, tmp_path, output):
        """Test invalid specifications raise every error."""
        bad = tmp_path / "bad.yaml"
        bad.write_text("name: bad name\ndistribution: plan9\n")

        with pytest.raises(InputError) as exc_info:
            commands.validate_spec(session, bad)

        fields = [error.field for error in exc_info.value.errors]
        assert "name" in fields
        assert "distribution" in fields

    def test_plan(self, session, spec_file, output, hypervisor, tmp_path):
        """Test the plan lists steps without touching the hypervisor."""
        commands.plan_template(session, spec_file)

        text = output.getvalue()
        assert "download_image" in text
        assert "attach_cloud_init" in text
        assert "best effort" in text
        hypervisor.create_vm.assert_not_awaited()
        assert not (tmp_path / "local").exists()

    def test_list_distributions(self, session, output):
        """Test the distribution table."""
        commands.list_distributions(session)

        assert "Rocky Linux" in output.getvalue()

    def test_list_versions_unknown(self, session, output):
        """Test unknown distributions are reported."""
        with pytest.raises(StampError):
            commands.list_versions(session, "plan9")


class TestCreateTemplate:
    """Test create_template."""

    def test_success(self, session, spec_file, output):
        """Test a successful build is reported."""
        orchestrator = MagicMock()
        orchestrator.provision = AsyncMock(return_value=ProvisioningResult(
            run_id="web01-1700000000", state=ProvisionState.DONE, vmid=9000,
        ))

        with patch.object(session, "orchestrator", return_value=orchestrator):
            commands.create_template(session, spec_file, assume_yes=True)

        assert "created as VM 9000" in output.getvalue()

    def test_failure_leaves_vm(self, session, spec_file, output):
        """Test a failed build explains where the VM was left."""
        orchestrator = MagicMock()
        orchestrator.provision = AsyncMock(return_value=failed_result())
        orchestrator.cleanup = AsyncMock()

        with patch.object(session, "orchestrator", return_value=orchestrator):
            with pytest.raises(StampError):
                commands.create_template(session, spec_file, assume_yes=True)

        assert "left in place" in output.getvalue()
        assert "qm destroy 9000" in output.getvalue()
        orchestrator.cleanup.assert_not_awaited()

    def test_failure_destroys_on_request(self, session, spec_file, output):
        """Test --destroy-on-failure cleans up."""
        orchestrator = MagicMock()
        orchestrator.provision = AsyncMock(return_value=failed_result())
        orchestrator.cleanup = AsyncMock(return_value=["create_vm_shell"])

        with patch.object(session, "orchestrator", return_value=orchestrator):
            with pytest.raises(StampError):
                commands.create_template(session, spec_file, destroy_on_failure=True, assume_yes=True)

        orchestrator.cleanup.assert_awaited_once()
        assert "Cleaned up: create_vm_shell" in output.getvalue()

    @patch("cloudstamp.cli.commands.Confirm")
    def test_declined(self, mock_confirm, session, spec_file, output):
        """Test declining the confirmation builds nothing."""
        mock_confirm.ask.return_value = False
        orchestrator = MagicMock()

        with patch.object(session, "orchestrator", return_value=orchestrator):
            commands.create_template(session, spec_file)

        orchestrator.provision.assert_not_called()
        assert "Aborted" in output.getvalue()


class TestTemplateCommands:
    """Test registry commands."""

    def test_list_templates(self, session, hypervisor, output):
        """Test the template table."""
        hypervisor.list_vms.return_value = [
            {"vmid": 9000, "name": "ubuntu-2204", "template": 1, "maxmem": 2147483648, "maxdisk": 17179869184},
        ]

        commands.list_templates(session)

        assert "ubuntu-2204" in output.getvalue()

    def test_list_templates_empty(self, session, hypervisor, output):
        """Test an empty listing."""
        hypervisor.list_vms.return_value = []

        commands.list_templates(session)

        assert "No templates found" in output.getvalue()

    def test_export_and_list(self, session, hypervisor, output, tmp_path):
        """Test exporting writes to the configured directory."""
        hypervisor.get_config.return_value = {"name": "ubuntu-2204", "template": 1}

        commands.export_template(session, 9000, "ubuntu-base")
        commands.list_exports(session)

        assert (tmp_path / "exports" / "ubuntu-base.json").exists()
        assert "ubuntu-base" in output.getvalue()

    def test_check_failure(self, session, hypervisor, output):
        """Test a failing check raises after printing the report."""
        hypervisor.get_config.return_value = {"memory": 256}

        with pytest.raises(StampError):
            commands.check_template(session, 101)

        assert "No storage devices found" in output.getvalue()

    def test_self_test(self, session, output):
        """Test the self-test table and failure."""
        report = SelfTestReport(
            template_id=9000,
            clone_id=9001,
            checks={"clone": True, "start": True, "guest_agent": False, "cleanup": True},
            errors={"guest_agent": "Guest agent did not respond after 6 attempts"},
        )
        self_test = MagicMock()
        self_test.test = AsyncMock(return_value=report)

        with patch.object(session, "self_test", return_value=self_test):
            with pytest.raises(StampError):
                commands.self_test_template(session, 9000)

        assert "did not respond" in output.getvalue()
