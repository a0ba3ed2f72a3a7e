"""Template self-test: clone, boot and probe a disposable instance."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from cloudstamp.engine.plan import PlanExecutor, ProvisioningPlan, ProvisionStep, RunContext
from cloudstamp.exceptions import HypervisorOperationError
from cloudstamp.models.config import SelfTestConfig


logger = logging.getLogger(__name__)

CHECKS = ("clone", "start", "guest_agent", "cleanup")


class SelfTestState(str, Enum):
    """States of a self-test run."""
    PLANNED = "planned"
    CLONED = "cloned"
    STARTED = "started"
    AGENT_RESPONDED = "agent_responded"
    PASSED = "passed"


@dataclass
class TestReport:
    """Per-check outcome of a template self-test."""
    __test__ = False

    template_id: int
    clone_id: Optional[int] = None
    clone_name: Optional[str] = None
    checks: Dict[str, bool] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(self.checks.get(name, False) for name in CHECKS)


class TemplateSelfTest:
    """Exercises a template through a disposable clone.

    The clone is always stopped and destroyed before :meth:`test` returns,
    whatever happened while it was being exercised.
    """

    def __init__(
        self,
        hypervisor,
        config: Optional[SelfTestConfig] = None,
        executor: Optional[PlanExecutor] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize template self-test."""
        self.hypervisor = hypervisor
        self.config = config or SelfTestConfig()
        self.executor = executor or PlanExecutor()
        self.sleep = sleep
        self.clock = clock

    def build_plan(self, template_id: int) -> ProvisioningPlan:
        """Lay out the create, exercise and destroy cycle."""
        return ProvisioningPlan(
            steps=[
                ProvisionStep("clone", SelfTestState.CLONED, lambda ctx: self._clone(ctx, template_id)),
                ProvisionStep("start", SelfTestState.STARTED, self._start),
                ProvisionStep("guest_agent", SelfTestState.AGENT_RESPONDED, self._wait_for_agent),
            ],
            initial_state=SelfTestState.PLANNED,
            final_state=SelfTestState.PASSED,
            teardown=[
                ProvisionStep("stop", SelfTestState.PLANNED, self._stop),
                ProvisionStep("destroy", SelfTestState.PLANNED, self._destroy),
            ],
        )

    async def test(self, template_id: int) -> TestReport:
        """Run the self-test and report each check."""
        run_id = f"test-{template_id}-{int(self.clock())}"
        context = RunContext(run_id=run_id)
        logger.info(f"Testing template {template_id}")

        result = await self.executor.execute(self.build_plan(template_id), context)

        report = TestReport(
            template_id=template_id,
            clone_id=context.vmid,
            clone_name=context.values.get("clone_name"),
            warnings=list(result.warnings),
        )
        for name in ("clone", "start", "guest_agent"):
            outcome = result.outcome(name)
            report.checks[name] = bool(outcome and outcome.ok)
            if outcome and outcome.error:
                report.errors[name] = outcome.error

        # A failed stop is only a warning as long as the clone is gone.
        destroyed = result.outcome("destroy")
        report.checks["cleanup"] = bool(destroyed and destroyed.ok)
        if destroyed and destroyed.error:
            report.errors["cleanup"] = destroyed.error

        status = "passed" if report.passed else "failed"
        logger.info(f"Template {template_id} self-test {status}")
        return report

    async def _clone(self, ctx: RunContext, template_id: int):
        ctx.vmid = await self.hypervisor.next_free_id()
        ctx.values["clone_name"] = f"test-{template_id}-{int(self.clock())}"
        await self.hypervisor.clone(template_id, ctx.vmid, ctx.values["clone_name"])

    async def _start(self, ctx: RunContext):
        ctx.values["started"] = True
        await self.hypervisor.start(ctx.vmid)

    async def _wait_for_agent(self, ctx: RunContext):
        await self.sleep(self.config.boot_wait)
        for attempt in range(1, self.config.attempts + 1):
            if await self.hypervisor.agent_ping(ctx.vmid):
                logger.info(f"Guest agent on {ctx.vmid} responded (attempt {attempt})")
                return
            logger.debug(f"Guest agent on {ctx.vmid} not responding (attempt {attempt}/{self.config.attempts})")
            if attempt < self.config.attempts:
                await self.sleep(self.config.interval)

        raise HypervisorOperationError(
            f"Guest agent did not respond after {self.config.attempts} attempts", vmid=ctx.vmid
        )

    async def _stop(self, ctx: RunContext):
        if not ctx.values.get("started"):
            return
        await self.hypervisor.stop(ctx.vmid)

    async def _destroy(self, ctx: RunContext):
        if ctx.vmid is None or not await self.hypervisor.exists(ctx.vmid):
            return
        await self.hypervisor.destroy(ctx.vmid)
