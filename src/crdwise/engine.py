"""
Execution Engine for crdwise.

The Engine executes an InstallationPlan against a cluster. It coordinates:
- Policy & Ownership: Who may touch each CRD
- Change Analyzer + Update Strategy: Whether a CRD update may be applied
- Readiness Waiter: CRDs must be Established before dependents apply
- Deletion Protection: CRDs with live instances need a confirmation token
- Storage: Ownership records and the operation log

Execution Flow:
    1. Snapshot ownership and check every CRD step (before any mutation)
    2. For each tier, run its ApplyCrd, WaitCrd, ApplyResource and
       DeleteCrd steps as batches; steps in a batch run concurrently under
       a semaphore, and every batch is a barrier
    3. Stop at the first batch with a failed step; later steps stay pending
    4. Record every step's outcome and return an OperationResult

Design Principles:
    - Nothing is rolled back: the result says exactly which steps completed
    - All cluster writes are server-side apply, so re-running is safe
    - The engine logs but never prints
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from crdwise.cluster.base import ClusterClient
from crdwise.crd.analyzer import CrdChange, analyze
from crdwise.crd.parser import parse
from crdwise.crd.strategy import Decision, UpdateStrategy
from crdwise.errors import BreakingChangeError, ClusterError, CrdwiseError
from crdwise.planner.plan import InstallationPlan, PlanAction, PlanStep
from crdwise.policy.ownership import (
    InMemoryOwnershipStore,
    OwnershipRecord,
    OwnershipStore,
    check_ownership,
)
from crdwise.protection import ConfirmationToken, DeletionImpact, DeletionProtection
from crdwise.schema import CRD_KIND, CrdPolicy, EngineConfig, OperationStatus, StepStatus
from crdwise.store.db import StateDB, compute_hash, now_iso
from crdwise.waiter import CrdWait, ReadinessWaiter

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """
    Result of executing a single plan step.

    Attributes:
        step: The plan step
        status: Outcome status (PENDING if the step never started)
        error: The error that failed the step
        reason: Short explanation for skipped or unchanged steps
        changes: Schema changes found for an ApplyCrd step
        decision: Strategy decision for an ApplyCrd step
        wait: Wait record for a WaitCrd step
        impact: Deletion impact for a DeleteCrd step
        started_at: ISO timestamp the step started
        duration_ms: Execution time in milliseconds
    """

    step: PlanStep
    status: StepStatus = StepStatus.PENDING
    error: CrdwiseError | None = None
    reason: str | None = None
    changes: list[CrdChange] = field(default_factory=list)
    decision: Decision | None = None
    wait: CrdWait | None = None
    impact: DeletionImpact | None = None
    started_at: str | None = None
    ended_at: str | None = None
    duration_ms: float = 0.0

    @property
    def index(self) -> int:
        return self.step.index

    @property
    def action(self) -> PlanAction:
        return self.step.action

    @property
    def target(self) -> str:
        return self.step.target

    def detail(self) -> dict[str, Any]:
        """Structured detail for the operation log and JSON reports."""
        detail: dict[str, Any] = {}
        if self.reason:
            detail["reason"] = self.reason
        if self.changes:
            detail["changes"] = [change.to_dict() for change in self.changes]
        if self.decision is not None:
            detail["decision"] = {"action": self.decision.action.value, "reason": self.decision.reason}
        if self.wait is not None:
            detail["wait"] = {
                "state": self.wait.state.value,
                "history": [state.value for state in self.wait.history],
                "polls": self.wait.polls,
            }
        if self.impact is not None:
            detail["impact"] = self.impact.to_dict()
        return detail


@dataclass
class OperationResult:
    """
    Result of executing a complete plan.

    Attributes:
        plan: The executed plan
        status: Final status
        steps: One result per plan step, in plan order
        operation_id: Operation log ID (None without a StateDB)
        error: The error that stopped the operation
        duration_ms: Total execution time in milliseconds
    """

    plan: InstallationPlan
    status: OperationStatus
    steps: list[StepResult]
    operation_id: str | None = None
    error: CrdwiseError | None = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        """Whether every step completed."""
        return self.status == OperationStatus.COMPLETED and self.failed_steps == 0

    @property
    def completed_steps(self) -> int:
        return sum(1 for r in self.steps if r.status.completed)

    @property
    def failed_steps(self) -> int:
        return sum(1 for r in self.steps if r.status == StepStatus.FAILED)

    @property
    def pending_steps(self) -> int:
        return sum(1 for r in self.steps if r.status == StepStatus.PENDING)

    def changes_by_crd(self) -> dict[str, list[CrdChange]]:
        return {r.target: r.changes for r in self.steps if r.changes}


def _unexpected_error(operation: str, target: str, error: Exception) -> ClusterError:
    """Wrap an error that is not a CrdwiseError so the step can be reported."""
    return ClusterError(method=operation, path=target, detail=f"{type(error).__name__}: {error}")


class Engine:
    """
    Main execution engine for crdwise.

    Usage:
        engine = Engine(client, store=StateDB("crdwise.db"))
        result = asyncio.run(engine.run(plan))
        print(f"{result.status.value}: {result.completed_steps}/{len(result.steps)}")

    Attributes:
        client: Cluster client
        store: Ownership store; a StateDB also receives the operation log
        config: Engine configuration
    """

    def __init__(
        self,
        client: ClusterClient,
        store: OwnershipStore | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.client = client
        self.store = store if store is not None else InMemoryOwnershipStore()
        self.config = config or EngineConfig()
        self.protection = DeletionProtection(client)

    @property
    def _log(self) -> StateDB | None:
        return self.store if isinstance(self.store, StateDB) else None

    def check_ownership(self, plan: InstallationPlan) -> dict[str, OwnershipRecord | None]:
        """
        Snapshot ownership for every CRD in the plan and check it.

        Returns:
            Ownership records by CRD identity key

        Raises:
            OwnershipConflictError: If another release manages a CRD this
                plan applies or deletes
        """
        snapshot: dict[str, OwnershipRecord | None] = {}
        for step in plan.steps:
            if step.identity is None or not step.action.is_crd:
                continue
            key = step.identity.key
            if key not in snapshot:
                snapshot[key] = self.store.get_owner(step.identity)
            if step.action == PlanAction.WAIT_CRD:
                continue
            policy = step.policy or CrdPolicy.MANAGED
            if step.action == PlanAction.DELETE_CRD:
                policy = CrdPolicy.MANAGED
            check_ownership(
                step.identity,
                plan.release,
                snapshot[key],
                policy,
                crd_name=step.crd_name,
                namespace=plan.namespace,
            )
        return snapshot

    async def run(
        self,
        plan: InstallationPlan,
        tokens: list[ConfirmationToken] | None = None,
    ) -> OperationResult:
        """
        Execute a plan.

        Args:
            plan: The plan to execute
            tokens: Confirmation tokens for CRD deletions

        Returns:
            OperationResult with every step's status

        Raises:
            OwnershipConflictError: Before any mutation, on an ownership conflict
            asyncio.CancelledError: If the caller cancels; in-flight steps are
                marked CANCELLED and the log is updated first
        """
        started = time.monotonic()
        snapshot = self.check_ownership(plan)
        results = [StepResult(step=step) for step in plan.steps]
        token_map = {token.crd_name: token for token in tokens or []}

        operation_id = None
        if self._log is not None:
            operation_id = self._log.create_operation(
                release=plan.release,
                operation=plan.operation,
                root_pack=plan.root_pack,
                plan_text=plan.describe(),
                total_steps=len(plan.steps),
            )
        logger.info("%s %s (release %s): %d steps", plan.operation.value, plan.root_pack, plan.release, len(plan.steps))

        result = OperationResult(plan=plan, status=OperationStatus.RUNNING, steps=results, operation_id=operation_id)
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        try:
            if self.config.operation_timeout_seconds is not None:
                async with asyncio.timeout(self.config.operation_timeout_seconds):
                    await self._execute(plan, results, snapshot, token_map, semaphore, operation_id)
            else:
                await self._execute(plan, results, snapshot, token_map, semaphore, operation_id)
        except TimeoutError:
            self._mark_cancelled(results)
            result.status = OperationStatus.FAILED
            result.error = CrdwiseError(
                message=f"Operation timed out after {self.config.operation_timeout_seconds:g}s",
                suggestion="Re-run the operation; completed steps are idempotent",
            )
        except asyncio.CancelledError:
            self._mark_cancelled(results)
            result.status = OperationStatus.CANCELLED
            self._finish(result, started)
            raise
        else:
            failed = next((r for r in results if r.status == StepStatus.FAILED), None)
            if failed is not None:
                result.status = OperationStatus.FAILED
                result.error = failed.error
            else:
                result.status = OperationStatus.COMPLETED

        self._finish(result, started)
        return result

    def _finish(self, result: OperationResult, started: float) -> None:
        result.duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            "%s %s: %s (%d completed, %d failed, %d pending)",
            result.plan.operation.value,
            result.plan.root_pack,
            result.status.value,
            result.completed_steps,
            result.failed_steps,
            result.pending_steps,
        )
        if self._log is None or result.operation_id is None:
            return
        for step_result in result.steps:
            self._record(result.operation_id, step_result)
        self._log.complete_operation(
            result.operation_id,
            status=result.status,
            completed_steps=result.completed_steps,
            failed_steps=result.failed_steps,
            error=result.error.message if result.error else None,
        )

    def _record(self, operation_id: str, result: StepResult) -> None:
        self._log.record_step(
            operation_id,
            result.index,
            result.action.value,
            result.target,
            result.status,
            error=str(result.error) if result.error else None,
            detail=result.detail() or None,
            started_at=result.started_at,
            ended_at=result.ended_at,
        )

    @staticmethod
    def _mark_cancelled(results: list[StepResult]) -> None:
        for result in results:
            if result.started_at is not None and result.status == StepStatus.PENDING:
                result.status = StepStatus.CANCELLED
                result.ended_at = now_iso()

    # =========================================================================
    # Tier Execution
    # =========================================================================

    async def _execute(
        self,
        plan: InstallationPlan,
        results: list[StepResult],
        snapshot: dict[str, OwnershipRecord | None],
        tokens: dict[str, ConfirmationToken],
        semaphore: asyncio.Semaphore,
        operation_id: str | None = None,
    ) -> None:
        by_index = {r.index: r for r in results}
        for tier in plan.tiers:
            steps = plan.steps_in_tier(tier)
            for action in PlanAction:
                batch = [by_index[s.index] for s in steps if s.action == action]
                if not batch:
                    continue
                logger.debug("tier %d: %d %s step(s)", tier, len(batch), action.value)
                if action == PlanAction.WAIT_CRD:
                    await self._run_waits(batch, semaphore)
                else:
                    async with asyncio.TaskGroup() as group:
                        for result in batch:
                            group.create_task(self._run_step(plan, result, snapshot, tokens, semaphore))
                if operation_id is not None:
                    for result in batch:
                        self._record(operation_id, result)
                if any(r.status == StepStatus.FAILED for r in batch):
                    logger.warning("tier %d failed; stopping", tier)
                    return

    async def _run_step(
        self,
        plan: InstallationPlan,
        result: StepResult,
        snapshot: dict[str, OwnershipRecord | None],
        tokens: dict[str, ConfirmationToken],
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Run one step, turning any error it raises into a FAILED result."""
        result.started_at = now_iso()
        started = time.monotonic()
        try:
            match result.action:
                case PlanAction.APPLY_CRD:
                    await self._apply_crd(plan, result, semaphore)
                case PlanAction.APPLY_RESOURCE:
                    await self._apply_resource(result, semaphore)
                case PlanAction.DELETE_CRD:
                    await self._delete_crd(plan, result, snapshot, tokens, semaphore)
        except CrdwiseError as e:
            result.status = StepStatus.FAILED
            result.error = e
            logger.error("step %d %s %s failed: %s", result.index, result.action.value, result.target, e.message)
        except Exception as e:
            result.status = StepStatus.FAILED
            result.error = _unexpected_error(result.action.value, result.target, e)
            logger.exception("step %d %s %s failed unexpectedly", result.index, result.action.value, result.target)
        finally:
            result.ended_at = now_iso()
            result.duration_ms = (time.monotonic() - started) * 1000

    async def _run_waits(self, batch: list[StepResult], semaphore: asyncio.Semaphore) -> None:
        waiter = ReadinessWaiter(
            self.client,
            poll_interval_seconds=self.config.poll_interval_seconds,
            semaphore=semaphore,
        )
        for result in batch:
            result.started_at = now_iso()
            result.wait = CrdWait(
                crd_name=result.step.crd_name,
                timeout_seconds=result.step.wait_timeout_seconds or self.config.wait_timeout_seconds,
                skip=result.step.skip_wait,
            )
        interrupted: CrdwiseError | None = None
        try:
            await waiter.wait_all([r.wait for r in batch])
        except* Exception as group:
            first = group.exceptions[0]
            if isinstance(first, CrdwiseError):
                interrupted = first
            else:
                interrupted = _unexpected_error(PlanAction.WAIT_CRD.value, ", ".join(r.target for r in batch), first)
            logger.error("status polling failed: %s", interrupted.message)
        for result in batch:
            result.ended_at = now_iso()
            result.duration_ms = result.wait.elapsed_seconds * 1000
            error = result.wait.error()
            if interrupted is not None and not result.wait.state.terminal:
                result.status = StepStatus.FAILED
                result.error = interrupted
            elif error is not None:
                result.status = StepStatus.FAILED
                result.error = error
                logger.error("wait %s: %s", result.target, error.message)
            elif result.wait.skip:
                result.status = StepStatus.SKIPPED
                result.reason = "wait skipped"
            else:
                result.status = StepStatus.SUCCEEDED
                logger.info("CRD %s established after %d poll(s)", result.target, result.wait.polls)

    # =========================================================================
    # Step Handlers
    # =========================================================================

    async def _apply_crd(
        self,
        plan: InstallationPlan,
        result: StepResult,
        semaphore: asyncio.Semaphore,
    ) -> None:
        step = result.step
        incoming = parse(step.manifest.body)
        async with semaphore:
            existing = await self.client.get(CRD_KIND, step.crd_name)

        if existing is not None:
            result.changes = analyze(parse(existing), incoming)
            if not result.changes:
                result.status = StepStatus.UNCHANGED
                result.reason = "CRD already up to date"
                self._take_ownership(plan, step)
                return

            strategy = step.strategy or self.config.strategy
            result.decision = strategy.decide(result.changes)
            if not result.decision.proceeds:
                if strategy == UpdateStrategy.SKIP:
                    result.status = StepStatus.SKIPPED
                    result.reason = result.decision.reason
                    logger.info("CRD %s update skipped: %s", step.crd_name, result.decision.reason)
                    return
                raise BreakingChangeError(
                    crd_name=step.crd_name,
                    reason=result.decision.reason,
                    changes=[change.to_dict() for change in result.changes],
                )
            if result.decision.warns:
                logger.warning("CRD %s: %s", step.crd_name, result.decision.reason)

        async with semaphore:
            await self.client.apply(step.manifest, self.config.field_owner)
        result.status = StepStatus.SUCCEEDED
        self._take_ownership(plan, step)
        logger.info("CRD %s %s", step.crd_name, "updated" if existing is not None else "created")

    def _take_ownership(self, plan: InstallationPlan, step: PlanStep) -> None:
        self.store.set_owner(OwnershipRecord(
            identity=step.identity,
            crd_name=step.crd_name,
            release=plan.release,
            release_namespace=plan.namespace,
            policy=step.policy or CrdPolicy.MANAGED,
            digest=compute_hash(step.manifest.body),
            updated_at=now_iso(),
        ))

    async def _apply_resource(self, result: StepResult, semaphore: asyncio.Semaphore) -> None:
        step = result.step
        if not step.crd_known:
            logger.warning("%s: no CRD for %s in this release", step.target, step.manifest.api_version)
        async with semaphore:
            await self.client.apply(step.manifest, self.config.field_owner)
        result.status = StepStatus.SUCCEEDED
        logger.debug("applied %s", step.target)

    async def _delete_crd(
        self,
        plan: InstallationPlan,
        result: StepResult,
        snapshot: dict[str, OwnershipRecord | None],
        tokens: dict[str, ConfirmationToken],
        semaphore: asyncio.Semaphore,
    ) -> None:
        step = result.step
        owner = snapshot.get(step.identity.key)
        if owner is not None and not owner.owned_by(plan.release, plan.namespace):
            result.status = StepStatus.SKIPPED
            result.reason = f"owned by release {owner.owner}"
            return

        schema = parse(step.manifest.body)
        async with semaphore:
            result.impact = await self.protection.check_deletion(step.identity, step.crd_name, schema.scope.value)
        self.protection.authorize(result.impact, tokens.get(step.crd_name))

        async with semaphore:
            deleted = await self.client.delete(CRD_KIND, step.crd_name)
        self.store.clear_owner(step.identity)
        if deleted:
            result.status = StepStatus.SUCCEEDED
            logger.info("CRD %s deleted (%d instance(s) removed)", step.crd_name, result.impact.count)
        else:
            result.status = StepStatus.UNCHANGED
            result.reason = "CRD not found"
