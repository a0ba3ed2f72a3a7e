"""Spec collectors: where raw template answers come from.

The engine never prompts. A collector gathers raw answers once, at the
boundary, and hands them to the validator as a plain mapping.
"""

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from cloudstamp.engine.catalog import DistributionCatalog, default_catalog
from cloudstamp.engine.scripts import CATEGORY_DESCRIPTIONS, SCRIPT_DESCRIPTIONS
from cloudstamp.exceptions import InputError


class SpecCollector(Protocol):
    """Produces a raw template specification."""

    def collect(self) -> Dict[str, Any]:
        ...


class FileSpecCollector:
    """Reads a template specification from a YAML file."""

    def __init__(self, path: Path):
        """Initialize file collector."""
        self.path = Path(path)
        self.yaml = YAML(typ="safe")

    def collect(self) -> Dict[str, Any]:
        """Load the raw specification mapping."""
        try:
            data = self.yaml.load(self.path.read_text())
        except OSError as e:
            raise InputError([f"spec: cannot read {self.path}: {e.strerror or e}"]) from e
        except YAMLError as e:
            raise InputError([f"spec: {self.path} is not valid YAML: {e}"]) from e

        if not isinstance(data, Mapping):
            raise InputError([f"spec: {self.path} must contain a mapping"])
        return dict(data)


class PromptSpecCollector:
    """Asks the operator for every answer on the terminal."""

    def __init__(
        self,
        catalog: Optional[DistributionCatalog] = None,
        script_descriptions: Optional[Mapping[str, str]] = None,
        console: Optional[Console] = None,
    ):
        """Initialize prompt collector."""
        self.catalog = catalog or default_catalog()
        self.script_descriptions = dict(script_descriptions or SCRIPT_DESCRIPTIONS)
        self.console = console or Console()

    def collect(self) -> Dict[str, Any]:
        """Walk the operator through the template questions."""
        ask = self.console
        raw: Dict[str, Any] = {}

        raw["name"] = Prompt.ask("Template name", console=ask)

        ids = [descriptor.id for descriptor in self.catalog.list()]
        for descriptor in self.catalog.list():
            ask.print(f"  [cyan]{descriptor.id}[/cyan]  {descriptor.display_name}")
        raw["distribution"] = Prompt.ask("Distribution", choices=ids, default="ubuntu", console=ask)

        descriptor = self.catalog.resolve(raw["distribution"])
        versions = list(descriptor.versions)
        for version, label in descriptor.versions.items():
            ask.print(f"  [cyan]{version}[/cyan]  {label}")
        raw["version"] = Prompt.ask("Version", choices=versions, default=versions[0], console=ask)

        raw["cpu_cores"] = IntPrompt.ask("CPU cores", default=2, console=ask)
        raw["memory_mb"] = IntPrompt.ask("RAM (MB)", default=2048, console=ask)
        raw["disk_gb"] = IntPrompt.ask("Disk size (GB)", default=16, console=ask)
        raw["tags"] = Prompt.ask("Tags (comma separated)", default="", console=ask)

        if descriptor.supports_cloud_init:
            raw["cloud_init"] = self._collect_cloud_init()
        else:
            ask.print(f"[yellow]Cloud-init is not available for {descriptor.display_name}[/yellow]")
        return raw

    def _collect_cloud_init(self) -> Dict[str, Any]:
        ask = self.console
        mode = Prompt.ask(
            "Cloud-init",
            choices=["guided", "external_file", "inline", "disabled"],
            default="guided",
            console=ask,
        )
        if mode == "disabled":
            return {"mode": "disabled"}
        if mode == "external_file":
            return {
                "mode": mode,
                "reference": Prompt.ask("User-data snippet (storage:snippets/file.yaml)", console=ask),
            }
        if mode == "inline":
            ask.print("Paste user-data; finish with a line containing only EOF")
            return {"mode": mode, "content": self._read_until_eof()}

        guided: Dict[str, Any] = {"mode": "guided"}
        guided["username"] = Prompt.ask("Default user", default="ubuntu", console=ask)
        guided["ssh_public_key"] = Prompt.ask("SSH public key (blank to skip)", default="", console=ask)
        if Confirm.ask("Enable password login?", default=False, console=ask):
            guided["password"] = Prompt.ask("Password", password=True, console=ask)

        if Confirm.ask("Use DHCP?", default=True, console=ask):
            guided["network"] = "dhcp"
        else:
            guided["network"] = {
                "mode": "static",
                "ip": Prompt.ask("IP address (CIDR, e.g. 192.168.1.100/24)", console=ask),
                "gateway": Prompt.ask("Gateway", default="", console=ask),
                "nameservers": Prompt.ask("Nameservers (comma separated)", default="", console=ask),
            }

        for key, description in CATEGORY_DESCRIPTIONS.items():
            ask.print(f"  [cyan]{key}[/cyan]  {description}")
        guided["package_categories"] = Prompt.ask("Package categories (comma separated)", default="", console=ask)
        guided["extra_packages"] = Prompt.ask("Extra packages (space separated)", default="", console=ask)

        for key, description in self.script_descriptions.items():
            ask.print(f"  [cyan]{key}[/cyan]  {description}")
        template = Prompt.ask("First-boot script template (blank for none)", default="", console=ask)
        if template:
            guided["script_template"] = template
        elif Confirm.ask("Write a first-boot script?", default=False, console=ask):
            ask.print("Enter shell commands; finish with a line containing only EOF")
            guided["first_boot_script"] = self._read_until_eof()
        return guided

    def _read_until_eof(self) -> str:
        lines = []
        while True:
            line = self.console.input()
            if line.strip() == "EOF":
                break
            lines.append(line)
        return "\n".join(lines) + "\n"
