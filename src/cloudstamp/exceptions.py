"""Exception types raised by cloudstamp."""

from typing import Any, List, Optional


class StampError(Exception):
    """Base class for all cloudstamp errors."""


class InputError(StampError):
    """Template specification failed validation."""

    def __init__(self, errors: List[Any]):
        self.errors = list(errors)
        lines = [str(error) for error in self.errors]
        super().__init__("Configuration errors found:\n" + "\n".join(f"  - {line}" for line in lines))


class ResolutionError(StampError):
    """Unknown distribution or version."""


class TransportError(StampError):
    """Image download failed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to download {url}: {reason}")


class HypervisorOperationError(StampError):
    """A hypervisor operation failed."""

    def __init__(self, message: str, step: Optional[str] = None, vmid: Optional[int] = None):
        self.step = step
        self.vmid = vmid
        super().__init__(message)


class PayloadUploadFailed(StampError):
    """Cloud-init payload could not be persisted for the hypervisor."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Cloud-init payload upload failed: {reason}")
