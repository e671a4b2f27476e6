"""Workflow instance state machine."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from .contracts import (
    ActionKind,
    ActionTrigger,
    InstanceStatus,
    Stage,
    StageHistoryEntry,
    StageOutcome,
    WorkflowDefinition,
    WorkflowInstance,
    utcnow,
)
from .directory import Directory, require
from .errors import (
    AlreadyActiveError,
    DefinitionNotFoundError,
    InvalidOrderError,
    NoActiveInstanceError,
    NoPausedInstanceError,
    NoStagesError,
    RequirementsNotMetError,
    StageNotFoundError,
    ValidationError,
)
from .events import (
    ActionTriggeredEvent,
    CandidateStatusEvent,
    EventBus,
    EventKind,
    StageChangeEvent,
    WorkflowCompletedEvent,
)
from .persistence import InstanceRepository
from .requirements import InMemoryRequirementReader, RequirementEvaluator

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class AdvanceOptions(BaseModel):
    """Options for :meth:`WorkflowInstanceManager.advance_to`.

    ``skip_validation`` bypasses the ordering and requirement checks.
    ``manual_advance`` marks a human override of the current stage's
    requirements; ordering is still enforced.
    """

    skip_validation: bool = False
    manual_advance: bool = False
    reason: Optional[str] = None
    feedback: Optional[str] = None
    score: Optional[float] = None
    triggered_by: str = SYSTEM_ACTOR
    outcome: StageOutcome = StageOutcome.PASSED


class StageAnalytics(BaseModel):
    entered: int = 0
    exited: int = 0
    average_duration_ms: Optional[float] = None


class WorkflowAnalytics(BaseModel):
    """Aggregates over every instance of one workflow definition.

    ``conversion_rates`` is keyed ``"<stage>-><next stage>"`` and holds the
    share of instances that entered a stage and later entered the next one.
    ``stalled`` lists instances whose current stage has been open longer
    than the requested threshold.
    """

    workflow_id: str
    total_executions: int = 0
    active_executions: int = 0
    paused_executions: int = 0
    completed_executions: int = 0
    rejected_executions: int = 0
    average_completion_ms: Optional[float] = None
    stage_analytics: Dict[str, StageAnalytics] = {}
    conversion_rates: Dict[str, float] = {}
    stalled: List[str] = []


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class WorkflowInstanceManager:
    """Owns the lifecycle of workflow instances.

    The manager is the only writer of instance state and the only emitter of
    lifecycle events. Transitions of one ``(candidate_id, job_id)`` pair are
    serialized by a per-pair lock; the repository's version check rejects
    writes from any other process that raced us. Every change is persisted
    before the events describing it are emitted.
    """

    def __init__(
        self,
        repository: InstanceRepository,
        directory: Directory,
        bus: EventBus,
        evaluator: Optional[RequirementEvaluator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._directory = directory
        self._bus = bus
        self._evaluator = evaluator or RequirementEvaluator(InMemoryRequirementReader())
        self._clock = clock or utcnow
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[str, str], int] = defaultdict(int)

    @asynccontextmanager
    async def _lock(self, candidate_id: str, job_id: str) -> AsyncIterator[None]:
        """Serialize transitions of one pair. The lock is dropped once unused."""
        key = (candidate_id, job_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    # ------------------------------------------------------------------
    # Lookups
    async def get_instance(self, candidate_id: str, job_id: str) -> Optional[WorkflowInstance]:
        return await self._repository.find_instance(candidate_id, job_id)

    async def list_instances(
        self, status: Optional[InstanceStatus] = None
    ) -> List[WorkflowInstance]:
        return await self._repository.list_instances(status)

    async def get_workflow_analytics(
        self, workflow_id: str, stalled_after: Optional[timedelta] = None
    ) -> WorkflowAnalytics:
        """Summarize status counts, stage durations and conversion for a workflow."""
        definition = await self._definition(workflow_id)
        instances = [
            i for i in await self._repository.list_instances() if i.workflow_id == workflow_id
        ]
        now = self._clock()
        by_status: Dict[InstanceStatus, int] = defaultdict(int)
        completion_ms: List[float] = []
        durations: Dict[str, List[float]] = defaultdict(list)
        stages = {s.stage_id: StageAnalytics() for s in definition.ordered_stages()}
        stalled: List[str] = []

        for instance in instances:
            by_status[instance.status] += 1
            if instance.status == InstanceStatus.COMPLETED and instance.completed_at:
                delta = instance.completed_at - instance.started_at
                completion_ms.append(delta.total_seconds() * 1000)
            for stage_id in {entry.stage_id for entry in instance.history}:
                stages.setdefault(stage_id, StageAnalytics()).entered += 1
            for entry in instance.history:
                if entry.duration_ms is not None:
                    stages[entry.stage_id].exited += 1
                    durations[entry.stage_id].append(entry.duration_ms)
            open_entry = instance.open_entry()
            if (
                stalled_after is not None
                and not instance.is_terminal
                and open_entry is not None
                and now - open_entry.entered_at > stalled_after
            ):
                stalled.append(instance.instance_id)

        for stage_id, values in durations.items():
            stages[stage_id].average_duration_ms = _mean(values)

        conversion: Dict[str, float] = {}
        ordered = definition.ordered_stages()
        for current, following in zip(ordered, ordered[1:]):
            reached = stages[current.stage_id].entered
            if reached:
                conversion[f"{current.stage_id}->{following.stage_id}"] = (
                    stages[following.stage_id].entered / reached
                )

        if stalled:
            logger.warning(
                f"{len(stalled)} instance(s) of workflow {workflow_id} stalled "
                f"for more than {stalled_after}"
            )
        return WorkflowAnalytics(
            workflow_id=workflow_id,
            total_executions=len(instances),
            active_executions=by_status[InstanceStatus.ACTIVE],
            paused_executions=by_status[InstanceStatus.PAUSED],
            completed_executions=by_status[InstanceStatus.COMPLETED],
            rejected_executions=by_status[InstanceStatus.REJECTED],
            average_completion_ms=_mean(completion_ms),
            stage_analytics=stages,
            conversion_rates=conversion,
            stalled=stalled,
        )

    async def _require_active(self, candidate_id: str, job_id: str) -> WorkflowInstance:
        instance = await self._repository.find_instance(candidate_id, job_id)
        if instance is None or instance.status != InstanceStatus.ACTIVE:
            raise NoActiveInstanceError(
                f"No active workflow instance for candidate={candidate_id} job={job_id}"
            )
        return instance

    async def _definition(self, workflow_id: str) -> WorkflowDefinition:
        definition = await self._directory.get_definition(workflow_id)
        if definition is None:
            raise DefinitionNotFoundError(f"Workflow {workflow_id} not found")
        return definition

    async def _context(self, instance: WorkflowInstance) -> Dict[str, Any]:
        """Display data attached to events so handlers need no lookups."""
        candidate = await self._directory.get_candidate(instance.candidate_id)
        posting = await self._directory.get_job(instance.job_id)
        company = await self._directory.get_company(instance.company_id)
        recruiter = None
        if posting and posting.hiring_manager_id:
            recruiter = await self._directory.get_employee(posting.hiring_manager_id)
        return {
            "candidate_name": candidate.full_name if candidate else "Candidate",
            "candidate_email": candidate.email if candidate else None,
            "job_title": posting.title if posting else None,
            "company_name": company.name if company else None,
            "hiring_manager_id": posting.hiring_manager_id if posting else None,
            "recruiter_name": recruiter.full_name if recruiter else "Hiring Team",
        }

    def _stage_event(
        self,
        kind: EventKind,
        instance: WorkflowInstance,
        stage: Stage,
        triggered_by: str,
        payload: Dict[str, Any],
        **extra: Any,
    ) -> StageChangeEvent:
        return StageChangeEvent(
            kind=kind,
            candidate_id=instance.candidate_id,
            job_id=instance.job_id,
            company_id=instance.company_id,
            workflow_id=instance.workflow_id,
            stage_id=stage.stage_id,
            triggered_by=triggered_by,
            timestamp=self._clock(),
            payload=payload,
            stage=stage,
            **extra,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(
        self,
        candidate_id: str,
        job_id: str,
        company_id: str,
        workflow_id: str,
        triggered_by: str,
        metadata: Optional[Dict[str, Any]] = None,
        return_existing: bool = False,
    ) -> WorkflowInstance:
        """Create an instance at the entry stage and enter it.

        A pair may have only one non-terminal instance. With
        ``return_existing`` that instance is returned unchanged instead of
        raising :class:`AlreadyActiveError`.
        """
        async with self._lock(candidate_id, job_id):
            existing = await self._repository.find_instance(candidate_id, job_id)
            if existing is not None and not existing.is_terminal:
                if return_existing:
                    logger.info(
                        f"Returning existing {existing.status.value} instance "
                        f"{existing.instance_id} for candidate={candidate_id} job={job_id}"
                    )
                    return existing
                raise AlreadyActiveError(
                    f"Workflow instance already {existing.status.value} for "
                    f"candidate={candidate_id} job={job_id}"
                )

            definition = await self._directory.get_definition(workflow_id)
            if definition is None or not definition.is_active:
                raise DefinitionNotFoundError(f"Workflow {workflow_id} not found or inactive")
            entry = definition.entry_stage()
            if entry is None:
                raise NoStagesError(f"Workflow {workflow_id} has no stages")
            await require(self._directory, "candidate", candidate_id)
            await require(self._directory, "job", job_id)

            now = self._clock()
            instance = WorkflowInstance(
                candidate_id=candidate_id,
                job_id=job_id,
                company_id=company_id,
                workflow_id=workflow_id,
                current_stage_id=entry.stage_id,
                current_stage_order=entry.order,
                started_at=now,
                history=[
                    StageHistoryEntry(
                        stage_id=entry.stage_id, stage_name=entry.name, entered_at=now
                    )
                ],
                metadata={
                    **(metadata or {}),
                    "workflow_started_by": triggered_by,
                    "initial_stage": {
                        "id": entry.stage_id,
                        "name": entry.name,
                        "type": entry.type.value,
                    },
                },
            )
            await self._repository.save_instance(instance)
            logger.info(
                f"Started workflow {workflow_id} for candidate={candidate_id} job={job_id} "
                f"at stage {entry.stage_id}"
            )

            context = await self._context(instance)
            await self._bus.emit(
                self._stage_event(EventKind.STAGE_ENTERED, instance, entry, triggered_by, context)
            )
            return await self._auto_advance(instance, definition, entry)

    async def advance_to(
        self,
        candidate_id: str,
        job_id: str,
        target_stage_id: str,
        options: Optional[AdvanceOptions] = None,
    ) -> WorkflowInstance:
        """Exit the current stage and enter ``target_stage_id``."""
        async with self._lock(candidate_id, job_id):
            instance = await self._require_active(candidate_id, job_id)
            definition = await self._definition(instance.workflow_id)
            return await self._advance(
                instance, definition, target_stage_id, options or AdvanceOptions()
            )

    async def _advance(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        target_stage_id: str,
        options: AdvanceOptions,
    ) -> WorkflowInstance:
        current = definition.get_stage(instance.current_stage_id)
        if current is None:
            raise StageNotFoundError(
                f"Current stage {instance.current_stage_id} not in workflow {definition.workflow_id}"
            )
        target = definition.get_stage(target_stage_id)
        if target is None:
            raise StageNotFoundError(
                f"Stage {target_stage_id} not in workflow {definition.workflow_id}"
            )

        if not options.skip_validation:
            if target.order <= current.order:
                raise InvalidOrderError(current.order, target.order)
            if current.is_required and current.requirements and not options.manual_advance:
                if not await self._evaluator.evaluate(instance, current):
                    raise RequirementsNotMetError(
                        f"Requirements of stage {current.stage_id} are not met for "
                        f"candidate={instance.candidate_id}"
                    )

        working = instance.model_copy(deep=True)
        now = self._clock()
        open_entry = working.open_entry(current.stage_id) or working.open_entry()
        if open_entry is not None:
            open_entry.close(options.outcome, options.feedback, options.score, at=now)
        working.current_stage_id = target.stage_id
        working.current_stage_order = target.order
        working.history.append(
            StageHistoryEntry(stage_id=target.stage_id, stage_name=target.name, entered_at=now)
        )
        await self._repository.update_instance(working)
        logger.info(
            f"Advanced candidate={working.candidate_id} job={working.job_id} from "
            f"{current.stage_id} to {target.stage_id} (by {options.triggered_by})"
        )

        context = await self._context(working)
        await self._bus.emit(
            self._stage_event(
                EventKind.STAGE_EXITED,
                working,
                current,
                options.triggered_by,
                {
                    **context,
                    "outcome": options.outcome.value,
                    "feedback": options.feedback,
                    "score": options.score,
                    "reason": options.reason,
                },
                outcome=options.outcome,
                feedback=options.feedback,
                score=options.score,
                reason=options.reason,
            )
        )
        await self._bus.emit(
            self._stage_event(
                EventKind.STAGE_ENTERED,
                working,
                target,
                options.triggered_by,
                {**context, "previous_stage_name": current.name},
                previous_stage_id=current.stage_id,
            )
        )
        await self._bus.emit(
            CandidateStatusEvent(
                kind=EventKind.CANDIDATE_ADVANCED,
                candidate_id=working.candidate_id,
                job_id=working.job_id,
                company_id=working.company_id,
                workflow_id=working.workflow_id,
                stage_id=target.stage_id,
                triggered_by=options.triggered_by,
                timestamp=self._clock(),
                reason=options.reason,
                feedback=options.feedback,
                score=options.score,
                payload={
                    **context,
                    "previous_stage_name": current.name,
                    "current_stage_name": target.name,
                    "manual_advance": options.manual_advance,
                },
            )
        )
        return await self._auto_advance(working, definition, target)

    async def _auto_advance(
        self, instance: WorkflowInstance, definition: WorkflowDefinition, stage: Stage
    ) -> WorkflowInstance:
        if not stage.auto_advance or instance.status != InstanceStatus.ACTIVE:
            return instance
        if not await self._evaluator.evaluate(instance, stage):
            return instance
        next_stage = definition.next_stage(stage.order)
        if next_stage is None:
            logger.info(
                f"Stage {stage.stage_id} is the last stage of {definition.workflow_id}; "
                f"candidate={instance.candidate_id} awaits completion"
            )
            return instance
        logger.info(
            f"Auto-advancing candidate={instance.candidate_id} job={instance.job_id} "
            f"from {stage.stage_id} to {next_stage.stage_id}"
        )
        return await self._advance(
            instance,
            definition,
            next_stage.stage_id,
            AdvanceOptions(
                skip_validation=True, triggered_by=SYSTEM_ACTOR, reason="auto_advance"
            ),
        )

    async def evaluate_auto_advance(self, candidate_id: str, job_id: str) -> WorkflowInstance:
        """Re-check the current stage's requirements and auto-advance if they hold."""
        async with self._lock(candidate_id, job_id):
            instance = await self._require_active(candidate_id, job_id)
            definition = await self._definition(instance.workflow_id)
            stage = definition.get_stage(instance.current_stage_id)
            if stage is None:
                raise StageNotFoundError(
                    f"Stage {instance.current_stage_id} not in workflow {definition.workflow_id}"
                )
            return await self._auto_advance(instance, definition, stage)

    async def reject(
        self,
        candidate_id: str,
        job_id: str,
        reason: Optional[str] = None,
        feedback: Optional[str] = None,
        triggered_by: str = SYSTEM_ACTOR,
    ) -> WorkflowInstance:
        async with self._lock(candidate_id, job_id):
            instance = await self._require_active(candidate_id, job_id)
            now = self._clock()
            entry = instance.open_entry()
            if entry is not None:
                entry.close(StageOutcome.FAILED, feedback, at=now)
            instance.status = InstanceStatus.REJECTED
            instance.rejected_at = now
            instance.metadata.update(
                rejection_reason=reason,
                rejection_feedback=feedback,
                rejected_by=triggered_by,
            )
            await self._repository.update_instance(instance)
            logger.info(
                f"Rejected candidate={candidate_id} job={job_id} at stage "
                f"{instance.current_stage_id}: {reason}"
            )
            await self._bus.emit(
                CandidateStatusEvent(
                    kind=EventKind.CANDIDATE_REJECTED,
                    candidate_id=candidate_id,
                    job_id=job_id,
                    company_id=instance.company_id,
                    workflow_id=instance.workflow_id,
                    stage_id=instance.current_stage_id,
                    triggered_by=triggered_by,
                    timestamp=now,
                    reason=reason,
                    feedback=feedback,
                    payload=await self._context(instance),
                )
            )
            return instance

    async def complete(
        self,
        candidate_id: str,
        job_id: str,
        triggered_by: str = SYSTEM_ACTOR,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        async with self._lock(candidate_id, job_id):
            instance = await self._require_active(candidate_id, job_id)
            now = self._clock()
            entry = instance.open_entry()
            if entry is not None:
                entry.close(StageOutcome.PASSED, at=now)
            instance.status = InstanceStatus.COMPLETED
            instance.completed_at = now
            instance.metadata.update(metadata or {})
            instance.metadata["completed_by"] = triggered_by
            await self._repository.update_instance(instance)
            logger.info(f"Completed workflow for candidate={candidate_id} job={job_id}")
            await self._bus.emit(
                WorkflowCompletedEvent(
                    candidate_id=candidate_id,
                    job_id=job_id,
                    company_id=instance.company_id,
                    workflow_id=instance.workflow_id,
                    stage_id=instance.current_stage_id,
                    triggered_by=triggered_by,
                    timestamp=now,
                    payload={**(await self._context(instance)), **(metadata or {})},
                )
            )
            return instance

    async def pause(
        self,
        candidate_id: str,
        job_id: str,
        reason: Optional[str] = None,
        triggered_by: str = SYSTEM_ACTOR,
    ) -> WorkflowInstance:
        """Stop further transitions. Already queued jobs still run."""
        async with self._lock(candidate_id, job_id):
            instance = await self._require_active(candidate_id, job_id)
            instance.status = InstanceStatus.PAUSED
            instance.paused_at = self._clock()
            instance.metadata.update(pause_reason=reason, paused_by=triggered_by)
            await self._repository.update_instance(instance)
            logger.info(f"Paused workflow for candidate={candidate_id} job={job_id}: {reason}")
            return instance

    async def resume(
        self, candidate_id: str, job_id: str, triggered_by: str = SYSTEM_ACTOR
    ) -> WorkflowInstance:
        async with self._lock(candidate_id, job_id):
            instance = await self._repository.find_instance(candidate_id, job_id)
            if instance is None or instance.status != InstanceStatus.PAUSED:
                raise NoPausedInstanceError(
                    f"No paused workflow instance for candidate={candidate_id} job={job_id}"
                )
            now = self._clock()
            instance.status = InstanceStatus.ACTIVE
            instance.paused_at = None
            instance.metadata.update(resumed_by=triggered_by, resumed_at=now.isoformat())
            await self._repository.update_instance(instance)
            logger.info(f"Resumed workflow for candidate={candidate_id} job={job_id}")
            return instance

    async def execute_manual_action(
        self,
        candidate_id: str,
        job_id: str,
        action_type: ActionKind | str,
        action_config: Optional[Dict[str, Any]] = None,
        triggered_by: str = SYSTEM_ACTOR,
    ) -> None:
        """Emit ``action_triggered`` without touching stage bookkeeping."""
        try:
            kind = ActionKind(action_type)
        except ValueError:
            raise ValidationError(f"Unknown action type: {action_type}") from None
        async with self._lock(candidate_id, job_id):
            instance = await self._require_active(candidate_id, job_id)
            logger.info(
                f"Manual {kind.value} for candidate={candidate_id} job={job_id} "
                f"by {triggered_by}"
            )
            await self._bus.emit(
                ActionTriggeredEvent(
                    candidate_id=candidate_id,
                    job_id=job_id,
                    company_id=instance.company_id,
                    workflow_id=instance.workflow_id,
                    stage_id=instance.current_stage_id,
                    triggered_by=triggered_by,
                    timestamp=self._clock(),
                    action_type=kind,
                    action_config=action_config or {},
                    trigger=ActionTrigger.MANUAL,
                    payload=await self._context(instance),
                )
            )
