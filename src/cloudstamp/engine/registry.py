"""Template registry operations on already finalized templates."""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from cloudstamp.engine.validator import NAME_RE
from cloudstamp.exceptions import InputError
from cloudstamp.models.config import ProxmoxConfig


logger = logging.getLogger(__name__)

EXPORT_SCHEMA_VERSION = "1.0"
STORAGE_KEY_RE = re.compile(r"^(scsi|ide|sata|virtio)\d+$")
NETWORK_KEY_RE = re.compile(r"^net\d+$")

MIB = 1024 * 1024
GIB = 1024 * MIB


def _is_template(value: Any) -> bool:
    return str(value).lower() in ("1", "true")


def _split_tags(value: Any) -> List[str]:
    if not value:
        return []
    return [tag for tag in re.split(r"[;,\s]+", str(value)) if tag]


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class TemplateSummary:
    """One row of the template listing."""
    vmid: int
    name: str
    memory_mb: int = 0
    disk_gb: float = 0.0
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_listing(cls, entry: Dict[str, Any]) -> "TemplateSummary":
        return cls(
            vmid=_to_int(entry.get("vmid")),
            name=entry.get("name", ""),
            memory_mb=_to_int(entry.get("maxmem")) // MIB,
            disk_gb=round(_to_int(entry.get("maxdisk")) / GIB, 1),
            tags=_split_tags(entry.get("tags")),
        )


@dataclass
class TemplateDetails:
    """Field-by-field projection of a template's configuration."""
    vmid: int
    name: str
    memory: int
    cores: int
    ostype: str
    description: str
    tags: List[str]
    boot: str
    is_template: bool
    config: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class ExportInfo:
    """A saved configuration export."""
    name: str
    path: Path
    exported_date: Optional[str] = None
    source_vmid: Optional[int] = None


@dataclass
class CheckReport:
    """Static validation of a template's configuration."""
    vmid: int
    passed_checks: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class TemplateRegistry:
    """List, inspect, copy, remove, export and import templates."""

    def __init__(
        self,
        hypervisor,
        export_dir: Path,
        proxmox: Optional[ProxmoxConfig] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        """Initialize template registry."""
        self.hypervisor = hypervisor
        self.export_dir = Path(export_dir)
        self.proxmox = proxmox or ProxmoxConfig()
        self.now = now

    async def list(self) -> List[TemplateSummary]:
        """All VMs flagged as templates, by id."""
        vms = await self.hypervisor.list_vms()
        templates = [TemplateSummary.from_listing(vm) for vm in vms if _is_template(vm.get("template"))]
        return sorted(templates, key=lambda t: t.vmid)

    async def describe(self, vmid: int) -> TemplateDetails:
        """Project a template's configuration."""
        config = await self.hypervisor.get_config(vmid)
        return TemplateDetails(
            vmid=vmid,
            name=config.get("name", ""),
            memory=_to_int(config.get("memory")),
            cores=_to_int(config.get("cores"), 1),
            ostype=config.get("ostype", ""),
            description=config.get("description", ""),
            tags=_split_tags(config.get("tags")),
            boot=config.get("boot", ""),
            is_template=_is_template(config.get("template")),
            config=config,
        )

    async def clone(self, vmid: int, name: str) -> int:
        """Duplicate a template and flag the copy as a template."""
        self._check_name("name", name)
        new_vmid = await self.hypervisor.next_free_id()
        logger.info(f"Cloning template {vmid} to {new_vmid} ({name})")
        await self.hypervisor.clone(vmid, new_vmid, name)
        await self.hypervisor.convert_to_template(new_vmid)
        return new_vmid

    async def delete(self, vmid: int) -> None:
        """Destroy a template."""
        details = await self.describe(vmid)
        if not details.is_template:
            raise InputError([f"vmid: VM {vmid} is not a template"])
        logger.info(f"Deleting template {vmid} ({details.name})")
        await self.hypervisor.destroy(vmid)

    async def export(self, vmid: int, config_name: str) -> Path:
        """Save a template's configuration and metadata as JSON."""
        self._check_name("config_name", config_name)
        config = await self.hypervisor.get_config(vmid)
        document = {
            "metadata": {
                "exported_date": self.now().astimezone().isoformat(timespec="seconds"),
                "source_vmid": vmid,
                "config_name": config_name,
                "version": EXPORT_SCHEMA_VERSION,
            },
            "proxmox_config": config,
        }

        path = self._export_path(config_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document, indent=2) + "\n")
        logger.info(f"Exported template {vmid} to {path}")
        return path

    async def import_config(self, config_name: str, name: Optional[str] = None) -> int:
        """Rebuild a template shell from a saved export; disks are not restored."""
        document = self._read_export(config_name)
        config = document.get("proxmox_config") or {}
        name = name or config.get("name") or config_name
        self._check_name("name", name)

        vmid = await self.hypervisor.next_free_id()
        logger.info(f"Importing {config_name} as template {vmid} ({name})")
        await self.hypervisor.create_vm(
            vmid,
            name,
            _to_int(config.get("memory"), 2048),
            _to_int(config.get("cores"), 2),
            net0=config.get("net0") or f"virtio,bridge={self.proxmox.bridge}",
        )
        await self.hypervisor.set_options(vmid, {
            "ostype": config.get("ostype") or self.proxmox.os_type,
            "description": config.get("description") or f"Imported from {config_name}",
        })
        await self.hypervisor.convert_to_template(vmid)
        logger.warning(f"Template {vmid} was imported without disks; attach storage before use")
        return vmid

    def list_exports(self) -> List[ExportInfo]:
        """Saved exports, by name."""
        if not self.export_dir.is_dir():
            return []

        exports = []
        for path in sorted(self.export_dir.glob("*.json")):
            info = ExportInfo(name=path.stem, path=path)
            try:
                metadata = json.loads(path.read_text()).get("metadata", {})
            except (OSError, ValueError, AttributeError) as e:
                logger.warning(f"Unreadable export {path}: {e}")
            else:
                info.exported_date = metadata.get("exported_date")
                info.source_vmid = metadata.get("source_vmid")
            exports.append(info)
        return exports

    def delete_export(self, config_name: str) -> None:
        """Remove a saved export."""
        path = self._export_path(config_name)
        if not path.exists():
            raise InputError([f"config_name: no saved export named '{config_name}'"])
        path.unlink()
        logger.info(f"Deleted export {path}")

    async def check(self, vmid: int) -> CheckReport:
        """Statically validate a template's configuration."""
        config = await self.hypervisor.get_config(vmid)
        report = CheckReport(vmid=vmid)

        if _is_template(config.get("template")):
            report.passed_checks.append("Template status: valid")
        else:
            report.errors.append(f"VM {vmid} is not marked as a template")

        memory = _to_int(config.get("memory"))
        if memory < 512:
            report.errors.append(f"Memory too low ({memory} MB, minimum 512 MB)")
        elif memory < 1024:
            report.warnings.append(f"Low memory allocation ({memory} MB)")
        else:
            report.passed_checks.append(f"Memory: {memory} MB")

        cores = _to_int(config.get("cores"))
        if cores < 1:
            report.errors.append("No CPU cores assigned")
        else:
            report.passed_checks.append(f"CPU cores: {cores}")

        storage = next((key for key in config if STORAGE_KEY_RE.match(key)), None)
        if storage:
            report.passed_checks.append(f"Storage: found {storage}")
        else:
            report.errors.append("No storage devices found")

        network = next((key for key in config if NETWORK_KEY_RE.match(key)), None)
        if network:
            report.passed_checks.append(f"Network: found {network}")
        else:
            report.warnings.append("No network interfaces configured")

        if "ide2" in config:
            report.passed_checks.append("Cloud-init: configured")
            if config.get("ciuser"):
                report.passed_checks.append(f"Cloud-init user: {config['ciuser']}")
            else:
                report.warnings.append("Cloud-init enabled but no user configured")
        else:
            report.info.append("Cloud-init not configured")

        return report

    def _export_path(self, config_name: str) -> Path:
        self._check_name("config_name", config_name)
        return self.export_dir / f"{config_name}.json"

    def _read_export(self, config_name: str) -> Dict[str, Any]:
        path = self._export_path(config_name)
        if not path.exists():
            raise InputError([f"config_name: no saved export named '{config_name}'"])
        try:
            return json.loads(path.read_text())
        except ValueError as e:
            raise InputError([f"config_name: export {path} is not valid JSON ({e})"]) from e

    @staticmethod
    def _check_name(field_name: str, value: str):
        if not value or not NAME_RE.match(value):
            raise InputError([
                f"{field_name}: '{value}' contains invalid characters "
                "(only alphanumeric, underscore, and dash allowed)"
            ])
