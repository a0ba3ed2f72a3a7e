"""Tests for the cloud-init payload compiler."""

import pytest
from pydantic import SecretStr
from ruamel.yaml import YAML

from cloudstamp.engine.compiler import PayloadCompiler
from cloudstamp.exceptions import HypervisorOperationError, InputError, PayloadUploadFailed
from cloudstamp.models.payload import SnippetRef
from cloudstamp.models.template import (
    DisabledCloudInit,
    ExternalFileCloudInit,
    GuidedCloudInit,
    InlineCloudInit,
    StaticNetwork,
)


MINIMAL_DOCUMENT = (
    "#cloud-config\n"
    "package_update: true\n"
    "packages:\n"
    "  - qemu-guest-agent\n"
    "runcmd:\n"
    "  - systemctl enable qemu-guest-agent\n"
    "  - systemctl start qemu-guest-agent\n"
)


class RecordingSink:
    """Upload sink that keeps payloads in memory."""

    def __init__(self, storage_id="local", error=None):
        self.storage_id = storage_id
        self.error = error
        self.uploads = {}
        self.deleted = []

    async def upload(self, filename, content):
        if self.error is not None:
            raise self.error
        self.uploads[filename] = content
        return SnippetRef(storage_id=self.storage_id, path=f"snippets/{filename}")

    async def delete(self, ref):
        self.deleted.append(ref)


def parse(document):
    assert document.startswith("#cloud-config\n")
    return YAML(typ="safe").load(document)


@pytest.fixture
def compiler():
    return PayloadCompiler()


@pytest.fixture
def sink():
    return RecordingSink()


class TestCompile:
    """Test strategy dispatch."""

    @pytest.mark.asyncio
    async def test_disabled(self, compiler, sink):
        """Test disabled cloud-init compiles to nothing."""
        payload = await compiler.compile(DisabledCloudInit(), sink, "web01")

        assert payload is None
        assert sink.uploads == {}

    @pytest.mark.asyncio
    async def test_guided_minimal(self, compiler, sink):
        """Test the smallest guided document."""
        payload = await compiler.compile(GuidedCloudInit(username="admin"), sink, "web01")

        assert sink.uploads == {"ci-std-payload-web01.yaml": MINIMAL_DOCUMENT}
        assert str(payload.reference) == "local:snippets/ci-std-payload-web01.yaml"
        assert payload.slot == "vendor"
        assert payload.cicustom == "vendor=local:snippets/ci-std-payload-web01.yaml"
        assert payload.ephemeral is False
        assert payload.properties == {"ciuser": "admin", "ipconfig0": "ip=dhcp"}

    @pytest.mark.asyncio
    async def test_external_file(self, compiler, sink):
        """Test existing snippets are referenced, not uploaded."""
        payload = await compiler.compile(
            ExternalFileCloudInit(storage_id="local", path="snippets/user.yaml"), sink, "web01"
        )

        assert sink.uploads == {}
        assert payload.cicustom == "user=local:snippets/user.yaml"
        assert payload.properties == {}

    @pytest.mark.asyncio
    async def test_external_file_malformed(self, compiler, sink):
        """Test a malformed reference is an input error."""
        with pytest.raises(InputError):
            await compiler.compile(ExternalFileCloudInit(storage_id="local", path="user.yaml"), sink, "web01")

    @pytest.mark.asyncio
    async def test_inline(self, compiler, sink):
        """Test pasted content is uploaded verbatim and marked ephemeral."""
        content = "#cloud-config\nhostname: pasted\n"

        payload = await compiler.compile(InlineCloudInit(content=content), sink, "web01")

        assert sink.uploads == {"custom-ci-paste-web01.yaml": content}
        assert payload.cicustom == "user=local:snippets/custom-ci-paste-web01.yaml"
        assert payload.ephemeral is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        OSError("disk full"),
        HypervisorOperationError("storage 'local' not found"),
        PayloadUploadFailed("permission denied"),
    ])
    async def test_upload_failure(self, compiler, error):
        """Test sink failures surface as PayloadUploadFailed."""
        with pytest.raises(PayloadUploadFailed):
            await compiler.compile(GuidedCloudInit(username="admin"), RecordingSink(error=error), "web01")


class TestRenderGuided:
    """Test guided document rendering."""

    def test_categories_and_extras(self, compiler):
        """Test categories expand, duplicates collapse and the agent stays last."""
        guided = GuidedCloudInit(
            username="admin",
            package_categories=["essential", "docker"],
            extra_packages=["curl", "jq", "qemu-guest-agent"],
        )

        document = parse(compiler.render_guided(guided))

        assert document["package_update"] is True
        assert document["package_upgrade"] is True
        assert document["packages"] == [
            "curl", "wget", "vim", "htop", "tree", "unzip",
            "docker.io", "docker-compose", "jq", "qemu-guest-agent",
        ]

    def test_no_upgrade_without_additions(self, compiler):
        """Test package_upgrade only appears when something is added."""
        document = parse(compiler.render_guided(GuidedCloudInit(username="admin")))

        assert "package_upgrade" not in document

    def test_deterministic(self, compiler):
        """Test identical answers render identical documents."""
        guided = GuidedCloudInit(username="admin", package_categories=["security"], first_boot_script="echo hi")

        assert compiler.render_guided(guided) == compiler.render_guided(guided)
        assert compiler.render_guided(guided) == PayloadCompiler().render_guided(guided)

    def test_freeform_script(self, compiler):
        """Test comments and blank lines are dropped from scripts."""
        guided = GuidedCloudInit(
            username="admin",
            first_boot_script="# prepare\n\n  apt-get update  \ntouch /root/ready\n",
        )

        document = parse(compiler.render_guided(guided))

        assert document["runcmd"] == [
            "systemctl enable qemu-guest-agent",
            "systemctl start qemu-guest-agent",
            "apt-get update",
            "touch /root/ready",
        ]
        assert document["package_upgrade"] is True

    def test_script_template_rendered_with_username(self, compiler):
        """Test named scripts are rendered for the guided user."""
        guided = GuidedCloudInit(username="deployer", script_template="docker-setup")

        commands = parse(compiler.render_guided(guided))["runcmd"]

        assert commands[:2] == ["systemctl enable qemu-guest-agent", "systemctl start qemu-guest-agent"]
        assert "usermod -aG docker deployer" in commands
        assert not any(line.startswith("#") for line in commands)

    def test_unknown_script_template(self):
        """Test unknown script names are input errors."""
        compiler = PayloadCompiler(scripts={})

        with pytest.raises(InputError):
            compiler.render_guided(GuidedCloudInit(username="admin", script_template="docker-setup"))

    @pytest.mark.asyncio
    async def test_malformed_script_template(self, sink):
        """Test shell text Jinja cannot parse is an input error, not a crash."""
        compiler = PayloadCompiler(scripts={"count": "echo ${#PATH}\n"})

        with pytest.raises(InputError) as exc_info:
            await compiler.compile(GuidedCloudInit(username="admin", script_template="count"), sink, owner="web01")

        assert exc_info.value.errors[0].startswith("cloud_init.script_template:")
        assert sink.uploads == {}

    def test_script_template_unknown_variable(self):
        """Test scripts referencing variables other than username are input errors."""
        compiler = PayloadCompiler(scripts={"join": "kubeadm join {{ endpoint }}\n"})

        with pytest.raises(InputError) as exc_info:
            compiler.render_guided(GuidedCloudInit(username="admin", script_template="join"))

        assert "join" in str(exc_info.value)

    def test_custom_agent_package(self):
        """Test the guest agent package is configurable."""
        compiler = PayloadCompiler(agent_package="open-vm-tools")

        document = parse(compiler.render_guided(GuidedCloudInit(username="admin")))

        assert document["packages"] == ["open-vm-tools"]
        assert document["runcmd"] == ["systemctl enable open-vm-tools", "systemctl start open-vm-tools"]


class TestGuidedProperties:
    """Test hypervisor cloud-init properties."""

    def test_static_network_with_credentials(self, compiler):
        """Test user, key, password and static addressing."""
        guided = GuidedCloudInit(
            username="admin",
            ssh_public_key="ssh-ed25519 AAAAC3Nza admin@host",
            password="correct-horse-battery",
            network=StaticNetwork(ip="10.0.0.5/24", gateway="10.0.0.1", nameservers=["1.1.1.1", "9.9.9.9"]),
        )

        properties = compiler.guided_properties(guided)

        assert properties["ciuser"] == "admin"
        assert properties["sshkeys"] == "ssh-ed25519%20AAAAC3Nza%20admin%40host"
        assert isinstance(properties["cipassword"], SecretStr)
        assert properties["cipassword"].get_secret_value() == "correct-horse-battery"
        assert properties["ipconfig0"] == "ip=10.0.0.5/24,gw=10.0.0.1"
        assert properties["nameserver"] == "1.1.1.1 9.9.9.9"

    def test_password_never_in_document(self, compiler):
        """Test the password stays out of the uploaded document."""
        guided = GuidedCloudInit(username="admin", password="correct-horse-battery")

        assert "correct-horse-battery" not in compiler.render_guided(guided)

    def test_default_nameservers(self):
        """Test static networks fall back to configured nameservers."""
        compiler = PayloadCompiler(default_nameservers=["8.8.8.8"])
        guided = GuidedCloudInit(username="admin", network=StaticNetwork(ip="10.0.0.5/24"))

        properties = compiler.guided_properties(guided)

        assert properties["ipconfig0"] == "ip=10.0.0.5/24"
        assert properties["nameserver"] == "8.8.8.8"

    def test_dhcp_has_no_nameserver(self):
        """Test DHCP leaves name resolution to the network."""
        compiler = PayloadCompiler(default_nameservers=["8.8.8.8"])

        properties = compiler.guided_properties(GuidedCloudInit(username="admin"))

        assert properties == {"ciuser": "admin", "ipconfig0": "ip=dhcp"}
