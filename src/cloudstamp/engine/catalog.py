"""Distribution catalog."""

from functools import lru_cache
from typing import Dict, Iterable, List

from cloudstamp.exceptions import ResolutionError
from cloudstamp.models.distribution import DistributionDescriptor, VERSION_PLACEHOLDER


BUILTIN_DISTRIBUTIONS = (
    DistributionDescriptor(
        id="ubuntu",
        display_name="Ubuntu Server",
        url_template=(
            "https://cloud-images.ubuntu.com/releases/%version%/release/"
            "ubuntu-%version%-server-cloudimg-amd64.img"
        ),
        versions={
            "22.04": "Jammy Jellyfish (LTS)",
            "20.04": "Focal Fossa (LTS)",
            "18.04": "Bionic Beaver (LTS)",
        },
    ),
    DistributionDescriptor(
        id="debian",
        display_name="Debian",
        url_template="https://cloud.debian.org/images/cloud/%version%/latest/debian-%version%-genericcloud-amd64.qcow2",
        versions={"12": "Bookworm", "11": "Bullseye", "10": "Buster"},
        # Debian publishes per-codename directories.
        url_overrides={
            "12": "https://cloud.debian.org/images/cloud/bookworm/latest/debian-12-genericcloud-amd64.qcow2",
            "11": "https://cloud.debian.org/images/cloud/bullseye/latest/debian-11-genericcloud-amd64.qcow2",
            "10": "https://cloud.debian.org/images/cloud/buster/latest/debian-10-genericcloud-amd64.qcow2",
        },
    ),
    DistributionDescriptor(
        id="centos",
        display_name="CentOS",
        url_template=(
            "https://cloud.centos.org/centos/%version%-stream/x86_64/images/"
            "CentOS-Stream-GenericCloud-%version%-latest.x86_64.qcow2"
        ),
        versions={"9": "Stream 9", "8": "Stream 8"},
    ),
    DistributionDescriptor(
        id="rocky",
        display_name="Rocky Linux",
        url_template=(
            "https://dl.rockylinux.org/pub/rocky/%version%/images/x86_64/"
            "Rocky-%version%-GenericCloud.latest.x86_64.qcow2"
        ),
        versions={"9": "Rocky 9", "8": "Rocky 8"},
    ),
    DistributionDescriptor(
        id="alpine",
        display_name="Alpine Linux",
        supports_cloud_init=False,
        url_template=(
            "https://dl-cdn.alpinelinux.org/alpine/v%version%/releases/x86_64/"
            "alpine-virt-%version%.0-x86_64.iso"
        ),
        versions={"3.19": "Alpine 3.19", "3.18": "Alpine 3.18", "3.17": "Alpine 3.17"},
    ),
    DistributionDescriptor(
        id="fedora",
        display_name="Fedora",
        url_template=(
            "https://download.fedoraproject.org/pub/fedora/linux/releases/%version%/Cloud/x86_64/images/"
            "Fedora-Cloud-Base-%version%-1.2.x86_64.qcow2"
        ),
        versions={"39": "Fedora 39", "38": "Fedora 38", "37": "Fedora 37"},
    ),
    DistributionDescriptor(
        id="opensuse",
        display_name="openSUSE",
        url_template=(
            "https://download.opensuse.org/repositories/Cloud:/Images:/Leap_15.%version%/images/"
            "openSUSE-Leap-15.%version%-OpenStack.x86_64.qcow2"
        ),
        versions={"4": "Leap 15.4", "3": "Leap 15.3"},
    ),
    DistributionDescriptor(
        id="arch",
        display_name="Arch Linux",
        supports_cloud_init=False,
        url_template="https://geo.mirror.pkgbuild.com/images/latest/Arch-Linux-x86_64-cloudimg.qcow2",
        versions={"latest": "Rolling release"},
    ),
)


class DistributionCatalog:
    """Read-only lookup table of supported distributions."""

    def __init__(self, descriptors: Iterable[DistributionDescriptor] = BUILTIN_DISTRIBUTIONS):
        """Initialize catalog."""
        self._descriptors: Dict[str, DistributionDescriptor] = {}
        for descriptor in descriptors:
            self._descriptors[descriptor.id] = descriptor

    def resolve(self, distribution_id: str) -> DistributionDescriptor:
        """Look up a distribution, raising ResolutionError when unknown."""
        descriptor = self._descriptors.get(distribution_id)
        if descriptor is None:
            available = ", ".join(self._descriptors)
            raise ResolutionError(
                f"Unknown distribution '{distribution_id}'. Available: {available}"
            )
        return descriptor

    def supports_cloud_init(self, distribution_id: str) -> bool:
        """Check cloud-init support; unknown distributions report False."""
        descriptor = self._descriptors.get(distribution_id)
        return bool(descriptor and descriptor.supports_cloud_init)

    def versions(self, distribution_id: str) -> List[str]:
        """Legal versions for a distribution."""
        return list(self.resolve(distribution_id).versions)

    def list(self) -> List[DistributionDescriptor]:
        """All descriptors in table order."""
        return list(self._descriptors.values())

    def __contains__(self, distribution_id: str) -> bool:
        return distribution_id in self._descriptors


def build_download_url(descriptor: DistributionDescriptor, version: str) -> str:
    """Substitute a version into the descriptor's image URL."""
    if version in descriptor.url_overrides:
        return descriptor.url_overrides[version]
    return descriptor.url_template.replace(VERSION_PLACEHOLDER, version)


@lru_cache(maxsize=None)
def default_catalog() -> DistributionCatalog:
    """Process-wide catalog of built-in distributions."""
    return DistributionCatalog()
