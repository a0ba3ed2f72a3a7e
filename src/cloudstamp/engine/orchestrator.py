"""Provisioning orchestrator.

Builds the ordered :class:`ProvisioningPlan` that turns a validated template
specification and its compiled cloud-init payload into a Proxmox template,
and executes it. Failed runs leave the partially built VM in place; only an
explicit :meth:`Orchestrator.cleanup` call removes it.
"""

import logging
import time
from datetime import date, datetime
from typing import Callable, List, Optional

from cloudstamp.engine.catalog import DistributionCatalog, default_catalog
from cloudstamp.engine.compiler import PayloadCompiler
from cloudstamp.engine.plan import (
    PlanExecutor,
    ProvisioningPlan,
    ProvisioningResult,
    ProvisionState,
    ProvisionStep,
    RunContext,
)
from cloudstamp.exceptions import PayloadUploadFailed, ResolutionError, StampError
from cloudstamp.models.config import StampConfig
from cloudstamp.models.image import ImageArtifact
from cloudstamp.models.payload import CompiledCloudInitPayload
from cloudstamp.models.template import TemplateSpec
from cloudstamp.providers.base import ProviderStatus
from cloudstamp.providers.registry import ProviderRegistry
from cloudstamp.providers.snippet import DryRunSink
from cloudstamp.utils.templates import render_template


logger = logging.getLogger(__name__)

BOOT_DISK = "scsi0"
CLOUD_INIT_DRIVE = "ide2"

DESCRIPTION_TEMPLATE = """\
{{ display_name }} {{ version }} template
Created by cloudstamp on {{ created }}
Cloud-init: {{ cloud_init }}
{% if tags %}Tags: {{ tags | join(', ') }}
{% endif %}"""


class Orchestrator:
    """Drives the hypervisor through the template build steps."""

    def __init__(
        self,
        config: StampConfig,
        providers: ProviderRegistry,
        catalog: Optional[DistributionCatalog] = None,
        compiler: Optional[PayloadCompiler] = None,
        executor: Optional[PlanExecutor] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize orchestrator."""
        self.config = config
        self.providers = providers
        self.catalog = catalog or default_catalog()
        self.compiler = compiler or PayloadCompiler(
            agent_package=config.cloud_init.agent_package,
            default_nameservers=config.cloud_init.default_nameservers,
        )
        self.executor = executor or PlanExecutor()
        self.clock = clock

    @property
    def hypervisor(self):
        return self.providers.hypervisor

    def new_run_id(self, spec: TemplateSpec) -> str:
        """Owner id for run-scoped resources."""
        return f"{spec.name}-{int(self.clock())}"

    def build_plan(self, spec: TemplateSpec, payload: Optional[CompiledCloudInitPayload]) -> ProvisioningPlan:
        """Lay out the build steps for a specification."""
        descriptor = self.catalog.resolve(spec.distribution)
        if spec.version not in descriptor.versions:
            raise ResolutionError(f"Unsupported {descriptor.display_name} version '{spec.version}'")

        day = date.fromtimestamp(self.clock())
        artifact = self.providers.image.artifact(descriptor, spec.version, day)

        steps = [
            ProvisionStep(
                name="download_image",
                target_state=ProvisionState.DOWNLOADING,
                action=lambda ctx: self._download_image(ctx, artifact),
                satisfied=lambda ctx: self._image_cached(ctx, artifact),
                description=f"Download {artifact.url} to {artifact.path}",
            ),
            ProvisionStep(
                name="create_vm_shell",
                target_state=ProvisionState.VM_SHELL_CREATED,
                action=lambda ctx: self._create_vm_shell(ctx, spec),
                cleanup=self._destroy_vm,
                description=f"Create VM '{spec.name}' ({spec.cpu_cores} cores, {spec.memory_mb} MB)",
            ),
            ProvisionStep(
                name="import_disk",
                target_state=ProvisionState.DISK_IMPORTED,
                action=self._import_disk,
                description="Import cloud image into the selected pool",
            ),
            ProvisionStep(
                name="attach_disk",
                target_state=ProvisionState.DISK_ATTACHED,
                action=self._attach_disk,
                description=f"Attach imported disk as {BOOT_DISK} and boot from it",
            ),
            ProvisionStep(
                name="resize_disk",
                target_state=ProvisionState.DISK_RESIZED,
                action=lambda ctx: self._resize_disk(ctx, spec),
                description=f"Resize {BOOT_DISK} to {spec.disk_gb}G",
            ),
        ]

        if payload is not None:
            steps.append(ProvisionStep(
                name="attach_cloud_init",
                target_state=ProvisionState.CLOUD_INIT_ATTACHED,
                action=lambda ctx: self._attach_cloud_init(ctx, payload),
                description=f"Attach cloud-init drive with {payload.cicustom}",
            ))

        steps.extend([
            ProvisionStep(
                name="tag",
                target_state=ProvisionState.TAGGED,
                action=lambda ctx: self._tag(ctx, spec, descriptor.display_name),
                fatal=False,
                description="Set tags and description",
            ),
            ProvisionStep(
                name="convert_to_template",
                target_state=ProvisionState.CONVERTED_TO_TEMPLATE,
                action=self._convert_to_template,
                description="Convert VM to template",
            ),
        ])

        return ProvisioningPlan(steps=steps, final_state=ProvisionState.DONE)

    async def run(
        self,
        spec: TemplateSpec,
        payload: Optional[CompiledCloudInitPayload],
        plan_only: bool = False,
        run_id: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> ProvisioningResult:
        """Execute the build plan for an already compiled payload."""
        run_id = run_id or self.new_run_id(spec)
        plan = self.build_plan(spec, payload)
        context = RunContext(run_id=run_id, warnings=list(warnings or []))

        if plan_only:
            logger.info(f"[{run_id}] Plan only: {', '.join(plan.step_names())}")
            return ProvisioningResult(
                run_id=run_id, warnings=context.warnings, plan=plan, context=context
            )

        logger.info(f"[{run_id}] Provisioning template '{spec.name}'")
        result = await self.executor.execute(plan, context)

        if result.state == ProvisionState.DONE:
            logger.info(f"[{run_id}] Template '{spec.name}' ready as VM {result.vmid}")
            if payload is not None and payload.ephemeral:
                await self._release_ephemeral(context, payload)
        elif result.vmid is not None:
            logger.error(
                f"[{run_id}] Provisioning stopped at {result.failed_step}; "
                f"VM {result.vmid} left in place for inspection (last state: {result.state.value})"
            )

        return result

    async def provision(self, spec: TemplateSpec, plan_only: bool = False) -> ProvisioningResult:
        """Compile the cloud-init payload and run the build plan."""
        run_id = self.new_run_id(spec)
        sink = DryRunSink(self.config.storage.snippet_storage) if plan_only else self.providers.snippet
        warnings: List[str] = []

        try:
            payload = await self.compiler.compile(spec.cloud_init, sink, owner=run_id)
        except PayloadUploadFailed as e:
            message = f"{e}; the template will boot without cloud-init configuration"
            logger.warning(message)
            warnings.append(message)
            payload = None

        return await self.run(spec, payload, plan_only=plan_only, run_id=run_id, warnings=warnings)

    async def cleanup(self, result: ProvisioningResult) -> List[str]:
        """Remove what a failed run left behind, on operator request."""
        if result.state == ProvisionState.DONE:
            logger.warning(f"[{result.run_id}] Run completed; nothing to clean up")
            return []
        return await self.executor.cleanup(result)

    async def select_pool(self, ctx: RunContext) -> str:
        """Pick a storage pool able to hold disk images."""
        preferred = self.config.storage.preferred_pool
        candidates = []
        for pool in await self.hypervisor.list_storage():
            if pool.get("disable"):
                continue
            content = [item.strip() for item in str(pool.get("content", "")).split(",")]
            if "images" in content:
                candidates.append(pool["storage"])

        if preferred in candidates:
            return preferred
        if candidates:
            logger.info(f"Pool {preferred} cannot hold disk images; using {candidates[0]}")
            return candidates[0]

        fallback = self.config.storage.default_pool
        ctx.warn(f"No storage pool advertises disk image content; falling back to {fallback}")
        return fallback

    # -- Step actions --

    async def _image_cached(self, ctx: RunContext, artifact: ImageArtifact) -> bool:
        if await self.providers.image.status(artifact) != ProviderStatus.PRESENT:
            return False
        ctx.values["image_path"] = artifact.path
        return True

    async def _download_image(self, ctx: RunContext, artifact: ImageArtifact):
        ctx.values["image_path"] = await self.providers.image.present(artifact)

    async def _create_vm_shell(self, ctx: RunContext, spec: TemplateSpec):
        ctx.vmid = await self.hypervisor.next_free_id()
        ctx.values["pool"] = await self.select_pool(ctx)
        proxmox = self.config.proxmox

        logger.info(f"Creating VM {ctx.vmid} ({spec.name}) on pool {ctx.values['pool']}")
        await self.hypervisor.create_vm(
            ctx.vmid, spec.name, spec.memory_mb, spec.cpu_cores,
            net0=f"virtio,bridge={proxmox.bridge}",
        )
        await self.hypervisor.set_options(ctx.vmid, {
            "scsihw": proxmox.scsi_controller,
            "ostype": proxmox.os_type,
            "agent": "enabled=1",
        })

    async def _import_disk(self, ctx: RunContext):
        await self.hypervisor.import_disk(ctx.vmid, ctx.values["image_path"], ctx.values["pool"])

    async def _attach_disk(self, ctx: RunContext):
        pool = ctx.values["pool"]
        await self.hypervisor.set_options(ctx.vmid, {
            BOOT_DISK: f"{pool}:vm-{ctx.vmid}-disk-0",
            "boot": f"order={BOOT_DISK}",
        })

    async def _resize_disk(self, ctx: RunContext, spec: TemplateSpec):
        await self.hypervisor.resize_disk(ctx.vmid, BOOT_DISK, f"{spec.disk_gb}G")

    async def _attach_cloud_init(self, ctx: RunContext, payload: CompiledCloudInitPayload):
        await self.hypervisor.set_options(ctx.vmid, {CLOUD_INIT_DRIVE: f"{ctx.values['pool']}:cloudinit"})
        options = dict(payload.properties)
        options["cicustom"] = payload.cicustom
        await self.hypervisor.set_options(ctx.vmid, options)

    async def _tag(self, ctx: RunContext, spec: TemplateSpec, display_name: str):
        description = render_template(
            DESCRIPTION_TEMPLATE,
            display_name=display_name,
            version=spec.version,
            created=datetime.fromtimestamp(self.clock()).strftime("%Y-%m-%d %H:%M:%S"),
            cloud_init=spec.cloud_init.mode,
            tags=spec.tags,
        )
        await self.hypervisor.set_options(ctx.vmid, {"description": description})
        if spec.tags:
            await self.hypervisor.set_options(ctx.vmid, {"tags": ";".join(spec.tags)})

    async def _convert_to_template(self, ctx: RunContext):
        await self.hypervisor.convert_to_template(ctx.vmid)

    async def _destroy_vm(self, ctx: RunContext):
        if ctx.vmid is None or not await self.hypervisor.exists(ctx.vmid):
            return
        logger.info(f"Destroying VM {ctx.vmid}")
        await self.hypervisor.destroy(ctx.vmid)

    async def _release_ephemeral(self, ctx: RunContext, payload: CompiledCloudInitPayload):
        try:
            await self.providers.snippet.delete(payload.reference)
        except (StampError, OSError) as e:
            ctx.warn(f"Could not remove ephemeral snippet {payload.reference}: {e}")
