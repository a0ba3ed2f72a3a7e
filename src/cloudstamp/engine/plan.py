"""Provisioning plans: ordered steps described as data.

A :class:`ProvisioningPlan` is a list of :class:`ProvisionStep` objects plus
optional teardown steps. The same executor runs a template build, a
plan-only preview and the disposable self-test clone, so the three never
drift apart.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from cloudstamp.exceptions import HypervisorOperationError, StampError


logger = logging.getLogger(__name__)


class ProvisionState(str, Enum):
    """States of a template build."""
    PLANNED = "planned"
    DOWNLOADING = "downloading"
    VM_SHELL_CREATED = "vm_shell_created"
    DISK_IMPORTED = "disk_imported"
    DISK_ATTACHED = "disk_attached"
    DISK_RESIZED = "disk_resized"
    CLOUD_INIT_ATTACHED = "cloud_init_attached"
    TAGGED = "tagged"
    CONVERTED_TO_TEMPLATE = "converted_to_template"
    DONE = "done"


@dataclass
class RunContext:
    """Mutable state shared by the steps of one run."""
    run_id: str
    vmid: Optional[int] = None
    values: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str):
        """Record a non-fatal problem."""
        logger.warning(message)
        self.warnings.append(message)


StepAction = Callable[[RunContext], Awaitable[Any]]
StepCheck = Callable[[RunContext], Awaitable[bool]]


@dataclass
class ProvisionStep:
    """One named operation of a plan."""
    name: str
    target_state: Enum
    action: StepAction
    fatal: bool = True
    cleanup: Optional[StepAction] = None
    satisfied: Optional[StepCheck] = None
    description: str = ""


@dataclass
class ProvisioningPlan:
    """Ordered steps plus teardown steps that run on every exit path."""
    steps: List[ProvisionStep]
    final_state: Enum = ProvisionState.DONE
    initial_state: Enum = ProvisionState.PLANNED
    teardown: List[ProvisionStep] = field(default_factory=list)

    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def __contains__(self, name: str) -> bool:
        return name in self.step_names()


@dataclass
class StepOutcome:
    """What happened to a single step."""
    name: str
    ok: bool
    skipped: bool = False
    error: Optional[str] = None


@dataclass
class ProvisioningResult:
    """Outcome of executing (or only planning) a provisioning run."""
    run_id: str
    state: Enum = ProvisionState.PLANNED
    vmid: Optional[int] = None
    completed_steps: List[str] = field(default_factory=list)
    skipped_steps: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    outcomes: List[StepOutcome] = field(default_factory=list)
    plan: Optional[ProvisioningPlan] = field(default=None, repr=False)
    context: Optional[RunContext] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.failed_step is None

    def outcome(self, name: str) -> Optional[StepOutcome]:
        """Look up the outcome of a named step."""
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None


class PlanExecutor:
    """Runs plan steps strictly in order."""

    async def execute(self, plan: ProvisioningPlan, context: RunContext) -> ProvisioningResult:
        """Execute a plan, halting at the first fatal failure.

        Teardown steps always run afterwards, even when a step raises
        something other than a :class:`StampError`.
        """
        result = ProvisioningResult(
            run_id=context.run_id,
            state=plan.initial_state,
            warnings=context.warnings,
            plan=plan,
            context=context,
        )
        try:
            for step in plan.steps:
                if not await self._run_step(step, context, result):
                    break
            else:
                result.state = plan.final_state
        finally:
            for step in plan.teardown:
                await self._run_teardown(step, context, result)
            result.vmid = context.vmid

        return result

    async def _run_step(self, step: ProvisionStep, context: RunContext, result: ProvisioningResult) -> bool:
        """Run one step; returns False when the run must halt."""
        if step.satisfied is not None and await step.satisfied(context):
            logger.info(f"[{context.run_id}] {step.name}: already satisfied, skipping")
            result.skipped_steps.append(step.name)
            result.outcomes.append(StepOutcome(step.name, ok=True, skipped=True))
            result.state = step.target_state
            return True

        logger.info(f"[{context.run_id}] {step.name}")
        try:
            await step.action(context)
        except StampError as e:
            result.vmid = context.vmid
            result.outcomes.append(StepOutcome(step.name, ok=False, error=str(e)))
            if not step.fatal:
                context.warn(f"{step.name} failed: {e}")
                result.state = step.target_state
                return True

            if isinstance(e, HypervisorOperationError) and e.step is None:
                e.step = step.name
            logger.error(
                f"[{context.run_id}] Step {step.name} failed"
                f"{f' (vmid {context.vmid})' if context.vmid else ''}: {e}"
            )
            result.failed_step = step.name
            result.error = str(e)
            return False

        result.vmid = context.vmid
        result.completed_steps.append(step.name)
        result.outcomes.append(StepOutcome(step.name, ok=True))
        result.state = step.target_state
        return True

    async def _run_teardown(self, step: ProvisionStep, context: RunContext, result: ProvisioningResult):
        """Run a teardown step; failures are recorded, never raised."""
        logger.info(f"[{context.run_id}] teardown: {step.name}")
        try:
            await step.action(context)
        except StampError as e:
            context.warn(f"Teardown step {step.name} failed: {e}")
            result.outcomes.append(StepOutcome(step.name, ok=False, error=str(e)))
            return
        result.outcomes.append(StepOutcome(step.name, ok=True))

    async def cleanup(self, result: ProvisioningResult) -> List[str]:
        """Run declared cleanup actions of completed steps in reverse order."""
        if result.plan is None or result.context is None:
            return []

        finished = set(result.completed_steps) | set(result.skipped_steps)
        if result.failed_step:
            finished.add(result.failed_step)

        ran: List[str] = []
        for step in reversed(result.plan.steps):
            if step.name not in finished or step.cleanup is None:
                continue
            logger.info(f"[{result.run_id}] cleanup: {step.name}")
            try:
                await step.cleanup(result.context)
            except StampError as e:
                result.context.warn(f"Cleanup of {step.name} failed: {e}")
                continue
            ran.append(step.name)
        return ran
