"""Proxmox VE command-line integration."""

import asyncio
import json
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import SecretStr

from cloudstamp.exceptions import HypervisorOperationError
from cloudstamp.models.config import ProxmoxConfig


logger = logging.getLogger(__name__)

# Flags whose following argument must never reach the logs.
SENSITIVE_FLAGS = frozenset({"--cipassword", "--password"})
REDACTED = "********"


@dataclass
class CommandResult:
    """Result from running a command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


def redact_command(cmd: Iterable[str], sensitive: Iterable[str] = SENSITIVE_FLAGS) -> List[str]:
    """Return a copy of cmd with the values of sensitive flags masked."""
    sensitive = set(sensitive)
    masked: List[str] = []
    hide_next = False
    for arg in cmd:
        if hide_next:
            masked.append(REDACTED)
            hide_next = False
            continue
        masked.append(arg)
        if arg in sensitive:
            hide_next = True
    return masked


async def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    timeout: Optional[int] = None,
    **kwargs
) -> CommandResult:
    """Run a command asynchronously."""
    logger.debug(f"Running command: {shlex.join(redact_command(cmd))}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE if capture_output else None,
        stderr=asyncio.subprocess.PIPE if capture_output else None,
        **kwargs
    )

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise subprocess.TimeoutExpired(redact_command(cmd), timeout)

    result = CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode() if stdout else "",
        stderr=stderr.decode() if stderr else "",
    )

    if check and process.returncode != 0:
        error = subprocess.CalledProcessError(
            process.returncode, redact_command(cmd)
        )
        error.stdout = result.stdout
        error.stderr = result.stderr
        raise error

    return result


class ProxmoxCLI:
    """Hypervisor capability set backed by qm and pvesh."""

    def __init__(self, config: Optional[ProxmoxConfig] = None):
        """Initialize Proxmox client."""
        self.config = config or ProxmoxConfig()
        self.node = self.config.node

    async def _run(self, cmd: List[str], vmid: Optional[int] = None, timeout: Optional[int] = None) -> CommandResult:
        """Run a hypervisor command, translating failures."""
        try:
            return await run_command(cmd, timeout=timeout if timeout is not None else self.config.command_timeout)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip() or f"exit code {e.returncode}"
            command = " ".join(redact_command(cmd)[:2])
            raise HypervisorOperationError(f"{command} failed: {detail}", vmid=vmid) from e
        except subprocess.TimeoutExpired as e:
            command = " ".join(redact_command(cmd)[:2])
            raise HypervisorOperationError(f"{command} timed out after {e.timeout}s", vmid=vmid) from e
        except FileNotFoundError as e:
            raise self._missing_binary(cmd[0], vmid) from e

    @staticmethod
    def _missing_binary(binary: str, vmid: Optional[int] = None) -> HypervisorOperationError:
        return HypervisorOperationError(
            f"{binary} not found; this must run on a Proxmox VE host", vmid=vmid
        )

    async def _get(self, path: str, vmid: Optional[int] = None) -> Any:
        """Read an API path through pvesh."""
        result = await self._run(["pvesh", "get", path, "--output-format=json"], vmid=vmid)
        try:
            return json.loads(result.stdout) if result.stdout.strip() else None
        except json.JSONDecodeError as e:
            raise HypervisorOperationError(f"Unparseable pvesh output for {path}: {e}", vmid=vmid) from e

    # -- Identifiers and storage --

    async def next_free_id(self) -> int:
        """Allocate the next free VM identifier."""
        value = await self._get("/cluster/nextid")
        return int(value)

    async def list_storage(self) -> List[Dict[str, Any]]:
        """List storage pools with their content types."""
        return await self._get("/storage") or []

    async def storage_path(self, storage_id: str) -> Path:
        """Return the filesystem path of a directory storage."""
        info = await self._get(f"/storage/{storage_id}") or {}
        path = info.get("path")
        if not path:
            raise HypervisorOperationError(f"Storage {storage_id} has no filesystem path")
        return Path(path)

    # -- VM lifecycle --

    async def create_vm(self, vmid: int, name: str, memory_mb: int, cores: int, net0: str) -> None:
        """Create an empty VM shell."""
        await self._run(
            ["qm", "create", str(vmid), "--name", name, "--memory", str(memory_mb),
             "--cores", str(cores), "--net0", net0],
            vmid=vmid,
        )

    async def set_options(self, vmid: int, options: Dict[str, Any]) -> None:
        """Set arbitrary VM properties."""
        if not options:
            return
        cmd = ["pvesh", "set", f"/nodes/{self.node}/qemu/{vmid}/config"]
        for key, value in options.items():
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            cmd.extend([f"--{key}", str(value)])
        await self._run(cmd, vmid=vmid)

    async def import_disk(self, vmid: int, image_path: Path, pool: str) -> None:
        """Import an external disk image into a storage pool."""
        await self._run(["qm", "importdisk", str(vmid), str(image_path), pool], vmid=vmid)

    async def resize_disk(self, vmid: int, disk: str, size: str) -> None:
        """Resize an attached disk."""
        await self._run(["qm", "resize", str(vmid), disk, size], vmid=vmid)

    async def convert_to_template(self, vmid: int) -> None:
        """Convert a VM into a read-only template."""
        await self._run(["qm", "template", str(vmid)], vmid=vmid)

    async def clone(self, vmid: int, new_vmid: int, name: str) -> None:
        """Clone a VM or template."""
        await self._run(["qm", "clone", str(vmid), str(new_vmid), "--name", name], vmid=new_vmid)

    async def destroy(self, vmid: int) -> None:
        """Destroy a VM and its disks."""
        await self._run(["qm", "destroy", str(vmid)], vmid=vmid)

    async def start(self, vmid: int) -> None:
        """Start a VM."""
        await self._run(["qm", "start", str(vmid)], vmid=vmid)

    async def stop(self, vmid: int) -> None:
        """Stop a VM."""
        await self._run(["qm", "stop", str(vmid)], vmid=vmid)

    # -- Queries --

    async def exists(self, vmid: int) -> bool:
        """Check whether a VM identifier is in use."""
        try:
            result = await run_command(["qm", "status", str(vmid)], check=False)
        except FileNotFoundError as e:
            raise self._missing_binary("qm", vmid) from e
        return result.returncode == 0

    async def status(self, vmid: int) -> Dict[str, Any]:
        """Query current VM status."""
        return await self._get(f"/nodes/{self.node}/qemu/{vmid}/status/current", vmid=vmid) or {}

    async def agent_ping(self, vmid: int) -> bool:
        """Check whether the in-guest agent responds."""
        try:
            result = await run_command(["qm", "guest", "cmd", str(vmid), "ping"], check=False, timeout=30)
        except subprocess.TimeoutExpired:
            logger.debug(f"Guest agent ping on {vmid} timed out")
            return False
        except FileNotFoundError as e:
            raise self._missing_binary("qm", vmid) from e
        return result.returncode == 0

    async def list_vms(self) -> List[Dict[str, Any]]:
        """List VMs on the node."""
        return await self._get(f"/nodes/{self.node}/qemu") or []

    async def get_config(self, vmid: int) -> Dict[str, Any]:
        """Retrieve the VM property bag."""
        return await self._get(f"/nodes/{self.node}/qemu/{vmid}/config", vmid=vmid) or {}
