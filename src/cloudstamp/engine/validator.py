"""Template specification validation.

``validate`` turns the raw answers gathered by a spec collector into an
immutable :class:`TemplateSpec`. It never stops at the first problem: every
violated rule is reported so the operator can fix them all at once. The
function is pure; it performs no I/O and does not log.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from cloudstamp.engine.catalog import DistributionCatalog, default_catalog
from cloudstamp.engine.scripts import BUILTIN_SCRIPTS, PACKAGE_CATEGORIES
from cloudstamp.models.payload import SnippetRef
from cloudstamp.models.template import (
    DhcpNetwork,
    DisabledCloudInit,
    ExternalFileCloudInit,
    GuidedCloudInit,
    InlineCloudInit,
    StaticNetwork,
    TemplateSpec,
)


NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
USERNAME_RE = re.compile(r"^[a-z][a-z0-9_-]*$")
CIDR_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}/\d{1,2}$")
IPV4_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
INTEGER_RE = re.compile(r"^[+-]?\d+$")
SSH_KEY_RE = re.compile(
    r"^(ssh-rsa|ssh-ed25519|ssh-ecdsa|ecdsa-sha2-nistp256|ecdsa-sha2-nistp384|ecdsa-sha2-nistp521) [A-Za-z0-9+/]"
)

CPU_RANGE = (1, 128)
MEMORY_RANGE = (512, 131072)
DISK_RANGE = (8, 2048)

CLOUD_INIT_MODES = ("disabled", "guided", "external_file", "inline")


@dataclass(frozen=True)
class FieldError:
    """A single violated rule."""
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass(frozen=True)
class Valid:
    """Successful validation outcome."""
    spec: TemplateSpec
    ok: bool = True


@dataclass(frozen=True)
class Invalid:
    """Failed validation outcome with every violated rule."""
    errors: List[FieldError] = field(default_factory=list)
    ok: bool = False


ValidationResult = Union[Valid, Invalid]


def _parse_int(value: Any) -> Optional[int]:
    """Parse an integer answer; booleans and fractions are not integers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and INTEGER_RE.match(value.strip()):
        return int(value.strip())
    return None


def _as_list(value: Any, separator: Optional[str] = ",") -> List[str]:
    """Normalize a list answer given either as a sequence or a delimited string."""
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(separator) if separator else value.split()
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = [str(item) for item in value]
    else:
        parts = [str(value)]
    return [part.strip() for part in parts if part and part.strip()]


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _check_range(errors: List[FieldError], raw: Mapping[str, Any], key: str,
                 bounds: tuple, label: str, unit: str = "") -> Optional[int]:
    low, high = bounds
    value = _parse_int(raw.get(key))
    if value is None or not low <= value <= high:
        suffix = f" {unit}" if unit else ""
        errors.append(FieldError(key, f"{label} must be a number between {low} and {high}{suffix}"))
        return None
    return value


def _validate_network(errors: List[FieldError], raw: Any):
    if raw is None or raw == "dhcp":
        return DhcpNetwork()
    if not isinstance(raw, Mapping):
        errors.append(FieldError("cloud_init.network", "Network must be 'dhcp' or a static configuration"))
        return None

    mode = _text(raw.get("mode", "dhcp")).lower()
    if mode == "dhcp":
        return DhcpNetwork()
    if mode != "static":
        errors.append(FieldError("cloud_init.network.mode", f"Unknown network mode '{mode}'"))
        return None

    ip = _text(raw.get("ip"))
    ok = True
    if not ip:
        errors.append(FieldError("cloud_init.network.ip", "IP address is required for a static network"))
        ok = False
    elif not CIDR_RE.match(ip):
        errors.append(FieldError(
            "cloud_init.network.ip",
            "Invalid IP address format (expected CIDR notation like 192.168.1.100/24)",
        ))
        ok = False

    gateway = _text(raw.get("gateway")) or None
    if gateway and not IPV4_RE.match(gateway):
        errors.append(FieldError("cloud_init.network.gateway", f"Invalid gateway address '{gateway}'"))
        ok = False

    nameservers = _as_list(raw.get("nameservers"))
    for server in nameservers:
        if not IPV4_RE.match(server):
            errors.append(FieldError("cloud_init.network.nameservers", f"Invalid nameserver '{server}'"))
            ok = False

    if not ok:
        return None
    return StaticNetwork(ip=ip, gateway=gateway, nameservers=nameservers)


def _validate_guided(errors: List[FieldError], raw: Mapping[str, Any],
                     script_templates: Collection[str], min_password_length: int):
    start = len(errors)

    username = _text(raw.get("username"))
    if not username:
        errors.append(FieldError("cloud_init.username", "Cloud-init user is required when cloud-init is enabled"))
    elif not USERNAME_RE.match(username):
        errors.append(FieldError(
            "cloud_init.username",
            "Cloud-init username must start with a letter and contain only lowercase letters, "
            "numbers, underscore, and dash",
        ))

    ssh_key = _text(raw.get("ssh_public_key")) or None
    if ssh_key and not SSH_KEY_RE.match(ssh_key):
        errors.append(FieldError("cloud_init.ssh_public_key", "SSH public key format is not recognised"))

    password = raw.get("password")
    if hasattr(password, "get_secret_value"):
        password = password.get_secret_value()
    password = None if password in (None, "") else str(password)
    if password is not None and len(password) < min_password_length:
        errors.append(FieldError(
            "cloud_init.password", f"Password must be at least {min_password_length} characters long"
        ))

    network = _validate_network(errors, raw.get("network"))

    categories = _as_list(raw.get("package_categories"))
    for category in categories:
        if category not in PACKAGE_CATEGORIES:
            errors.append(FieldError("cloud_init.package_categories", f"Unknown package category '{category}'"))
    extra_packages = _as_list(raw.get("extra_packages"), separator=None)

    script = raw.get("first_boot_script")
    script = str(script) if script not in (None, "") else None
    template = _text(raw.get("script_template")) or None
    if script and template:
        errors.append(FieldError(
            "cloud_init.first_boot_script", "Provide either a first-boot script or a script template, not both"
        ))
    if template and template not in script_templates:
        errors.append(FieldError("cloud_init.script_template", f"Unknown script template '{template}'"))

    if len(errors) > start:
        return None
    return GuidedCloudInit(
        username=username,
        ssh_public_key=ssh_key,
        password=password,
        network=network,
        package_categories=list(dict.fromkeys(categories)),
        extra_packages=extra_packages,
        first_boot_script=script,
        script_template=template,
    )


def _validate_cloud_init(errors: List[FieldError], raw: Any,
                         script_templates: Collection[str], min_password_length: int):
    if raw in (None, False, "disabled"):
        return DisabledCloudInit()
    if not isinstance(raw, Mapping):
        errors.append(FieldError("cloud_init", "Cloud-init configuration must be a mapping"))
        return None

    mode = _text(raw.get("mode", "disabled")).lower()
    if mode not in CLOUD_INIT_MODES:
        errors.append(FieldError(
            "cloud_init.mode", f"Unknown cloud-init mode '{mode}' (expected one of {', '.join(CLOUD_INIT_MODES)})"
        ))
        return None

    if mode == "disabled":
        return DisabledCloudInit()

    if mode == "guided":
        return _validate_guided(errors, raw, script_templates, min_password_length)

    if mode == "external_file":
        reference = _text(raw.get("reference"))
        if not reference and raw.get("storage_id"):
            reference = f"{_text(raw.get('storage_id'))}:{_text(raw.get('path'))}"
        try:
            ref = SnippetRef.parse(reference)
        except ValueError:
            errors.append(FieldError(
                "cloud_init.reference",
                f"Invalid custom user-data path '{reference}'. Expected 'storage:snippets/filename.yaml'",
            ))
            return None
        return ExternalFileCloudInit(storage_id=ref.storage_id, path=ref.path)

    content = raw.get("content")
    if not isinstance(content, str) or not content.strip():
        errors.append(FieldError("cloud_init.content", "Pasted custom user-data is empty"))
        return None
    return InlineCloudInit(content=content)


def validate(
    raw: Any,
    catalog: Optional[DistributionCatalog] = None,
    script_templates: Optional[Collection[str]] = None,
    min_password_length: int = 12,
) -> ValidationResult:
    """Validate raw template answers, collecting every violated rule."""
    if not isinstance(raw, Mapping):
        return Invalid([FieldError("spec", "Template specification must be a mapping")])

    catalog = catalog or default_catalog()
    if script_templates is None:
        script_templates = BUILTIN_SCRIPTS.keys()
    errors: List[FieldError] = []

    name = _text(raw.get("name"))
    if not name:
        errors.append(FieldError("name", "Template name is required"))
    elif not NAME_RE.match(name):
        errors.append(FieldError(
            "name", "Template name contains invalid characters (only alphanumeric, underscore, and dash allowed)"
        ))

    distribution_id = _text(raw.get("distribution"))
    descriptor = None
    version = _text(raw.get("version"))
    if not distribution_id:
        errors.append(FieldError("distribution", "Distribution selection is required"))
    elif distribution_id not in catalog:
        errors.append(FieldError("distribution", f"Unknown distribution '{distribution_id}'"))
    else:
        descriptor = catalog.resolve(distribution_id)
        if not version and len(descriptor.versions) == 1:
            version = next(iter(descriptor.versions))
        if version not in descriptor.versions:
            legal = ", ".join(descriptor.versions)
            errors.append(FieldError(
                "version", f"Unsupported {descriptor.display_name} version '{version}' (available: {legal})"
            ))

    cpu_cores = _check_range(errors, raw, "cpu_cores", CPU_RANGE, "CPU cores")
    memory_mb = _check_range(errors, raw, "memory_mb", MEMORY_RANGE, "RAM", "MB")
    disk_gb = _check_range(errors, raw, "disk_gb", DISK_RANGE, "Storage", "GB")

    tags = sorted(set(_as_list(raw.get("tags"))))

    cloud_init = _validate_cloud_init(errors, raw.get("cloud_init"), script_templates, min_password_length)
    mode = _cloud_init_mode(raw.get("cloud_init"))
    if descriptor is not None and mode != "disabled" and not descriptor.supports_cloud_init:
        errors.append(FieldError(
            "cloud_init", f"Cloud-init is not supported for {descriptor.display_name}"
        ))

    if errors:
        return Invalid(errors)

    try:
        spec = TemplateSpec(
            name=name,
            distribution=distribution_id,
            version=version,
            cpu_cores=cpu_cores,
            memory_mb=memory_mb,
            disk_gb=disk_gb,
            tags=tags,
            cloud_init=cloud_init,
        )
    except ValidationError as e:
        return Invalid([
            FieldError(".".join(str(part) for part in err["loc"]) or "spec", err["msg"])
            for err in e.errors()
        ])
    return Valid(spec)


def _cloud_init_mode(raw: Any) -> str:
    if isinstance(raw, Mapping):
        return _text(raw.get("mode", "disabled")).lower() or "disabled"
    return "disabled" if raw in (None, False, "disabled") else "invalid"
