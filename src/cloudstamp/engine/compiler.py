"""Cloud-init payload compiler.

Turns the cloud-init strategy of a validated template specification into the
single :class:`CompiledCloudInitPayload` the orchestrator attaches to the VM.
Guided answers become a ``#cloud-config`` document (attached as vendor data)
plus hypervisor cloud-init properties for the user, credentials and network.
"""

import io
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol
from urllib.parse import quote

from jinja2 import TemplateError
from ruamel.yaml import YAML

from cloudstamp.engine.scripts import BUILTIN_SCRIPTS, PACKAGE_CATEGORIES
from cloudstamp.exceptions import HypervisorOperationError, InputError, PayloadUploadFailed
from cloudstamp.models.payload import CompiledCloudInitPayload, SnippetRef
from cloudstamp.models.template import (
    DisabledCloudInit,
    ExternalFileCloudInit,
    GuidedCloudInit,
    InlineCloudInit,
    StaticNetwork,
)
from cloudstamp.utils.templates import render_template


logger = logging.getLogger(__name__)

CLOUD_CONFIG_HEADER = "#cloud-config\n"
GUIDED_FILENAME = "ci-std-payload-{owner}.yaml"
INLINE_FILENAME = "custom-ci-paste-{owner}.yaml"


class UploadSink(Protocol):
    """Somewhere the hypervisor can read cloud-init payloads from."""

    async def upload(self, filename: str, content: str) -> SnippetRef:
        ...

    async def delete(self, ref: SnippetRef) -> None:
        ...


class PayloadCompiler:
    """Compiles cloud-init strategies into hypervisor payloads."""

    def __init__(
        self,
        scripts: Optional[Mapping[str, str]] = None,
        agent_package: str = "qemu-guest-agent",
        default_nameservers: Optional[List[str]] = None,
    ):
        """Initialize payload compiler."""
        self.scripts = dict(BUILTIN_SCRIPTS if scripts is None else scripts)
        self.agent_package = agent_package
        self.default_nameservers = list(default_nameservers or [])
        self.yaml = YAML()
        self.yaml.indent(mapping=2, sequence=4, offset=2)
        self.yaml.width = 4096

    async def compile(self, cloud_init, sink: UploadSink, owner: str) -> Optional[CompiledCloudInitPayload]:
        """Compile a cloud-init strategy, uploading through sink when needed."""
        if isinstance(cloud_init, DisabledCloudInit):
            return None

        if isinstance(cloud_init, GuidedCloudInit):
            document = self.render_guided(cloud_init)
            ref = await self._upload(sink, GUIDED_FILENAME.format(owner=owner), document)
            logger.info(f"Compiled guided cloud-init payload {ref}")
            return CompiledCloudInitPayload(
                reference=ref,
                slot="vendor",
                properties=self.guided_properties(cloud_init),
            )

        if isinstance(cloud_init, ExternalFileCloudInit):
            try:
                ref = SnippetRef.parse(cloud_init.reference)
            except ValueError as e:
                raise InputError([f"cloud_init.reference: {e}"]) from e
            logger.info(f"Using existing cloud-init user data {ref}")
            return CompiledCloudInitPayload(reference=ref, slot="user")

        if isinstance(cloud_init, InlineCloudInit):
            ref = await self._upload(sink, INLINE_FILENAME.format(owner=owner), cloud_init.content)
            logger.info(f"Uploaded pasted cloud-init user data {ref}")
            return CompiledCloudInitPayload(reference=ref, slot="user", ephemeral=True)

        raise TypeError(f"Unsupported cloud-init strategy: {type(cloud_init).__name__}")

    def render_guided(self, guided: GuidedCloudInit) -> str:
        """Render the #cloud-config document for guided answers."""
        packages = self.expand_packages(guided)
        commands = self.script_lines(guided)

        document: Dict[str, Any] = {"package_update": True}
        if guided.package_categories or guided.extra_packages or commands:
            document["package_upgrade"] = True
        document["packages"] = packages
        document["runcmd"] = [
            f"systemctl enable {self.agent_package}",
            f"systemctl start {self.agent_package}",
            *commands,
        ]

        stream = io.StringIO()
        self.yaml.dump(document, stream)
        return CLOUD_CONFIG_HEADER + stream.getvalue()

    def expand_packages(self, guided: GuidedCloudInit) -> List[str]:
        """Expand categories and extras; the guest agent is always last."""
        packages: List[str] = []
        for category in guided.package_categories:
            packages.extend(PACKAGE_CATEGORIES.get(category, []))
        packages.extend(guided.extra_packages)

        unique = [pkg for pkg in dict.fromkeys(packages) if pkg != self.agent_package]
        unique.append(self.agent_package)
        return unique

    def script_lines(self, guided: GuidedCloudInit) -> List[str]:
        """First-boot command lines, skipping blanks and comments."""
        if guided.script_template:
            source = self.scripts.get(guided.script_template)
            if source is None:
                raise InputError([f"cloud_init.script_template: unknown script template '{guided.script_template}'"])
            try:
                text = render_template(source, username=guided.username)
            except TemplateError as e:
                raise InputError([
                    f"cloud_init.script_template: script template '{guided.script_template}' cannot be rendered: {e}"
                ]) from e
        else:
            text = guided.first_boot_script or ""

        lines = []
        for line in text.splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                lines.append(line)
        return lines

    def guided_properties(self, guided: GuidedCloudInit) -> Dict[str, Any]:
        """Hypervisor cloud-init properties for user, credentials and network."""
        properties: Dict[str, Any] = {"ciuser": guided.username}
        if guided.ssh_public_key:
            properties["sshkeys"] = quote(guided.ssh_public_key.strip(), safe="")
        if guided.password is not None:
            properties["cipassword"] = guided.password

        network = guided.network
        if isinstance(network, StaticNetwork):
            ipconfig = f"ip={network.ip}"
            if network.gateway:
                ipconfig += f",gw={network.gateway}"
            properties["ipconfig0"] = ipconfig
            nameservers = network.nameservers or self.default_nameservers
            if nameservers:
                properties["nameserver"] = " ".join(nameservers)
        else:
            properties["ipconfig0"] = "ip=dhcp"
        return properties

    async def _upload(self, sink: UploadSink, filename: str, content: str) -> SnippetRef:
        """Persist a payload through the sink."""
        try:
            return await sink.upload(filename, content)
        except PayloadUploadFailed:
            raise
        except (OSError, HypervisorOperationError) as e:
            raise PayloadUploadFailed(f"{filename}: {e}") from e
