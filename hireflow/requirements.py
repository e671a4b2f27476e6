"""Requirement predicates gating auto-advance."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Tuple

from .contracts import RequirementKind, Stage, StageRequirement, WorkflowInstance
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

Predicate = Callable[[WorkflowInstance, Stage, StageRequirement], Awaitable[bool]]


class RequirementReader(Protocol):
    """Narrow reads backing the default predicates."""

    async def is_interview_complete(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        """Return whether the candidate's interview for the job is complete."""

    async def is_assessment_passed(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        """Return whether the candidate passed the job's assessment."""

    async def has_manual_approval(
        self, candidate_id: str, stage_id: str, config: Dict[str, Any]
    ) -> bool:
        """Return whether a person approved the candidate for the stage."""

    async def is_ai_screening_passed(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        """Return the AI screening verdict for the candidate and job."""


class InMemoryRequirementReader:
    """Records requirement facts in memory."""

    def __init__(self) -> None:
        self.completed_interviews: Set[Tuple[str, str]] = set()
        self.assessment_scores: Dict[Tuple[str, str], float] = {}
        self.approvals: Set[Tuple[str, str]] = set()
        self.screening_verdicts: Dict[Tuple[str, str], bool] = {}

    def record_interview_complete(self, candidate_id: str, job_id: str) -> None:
        self.completed_interviews.add((candidate_id, job_id))

    def record_assessment_score(self, candidate_id: str, job_id: str, score: float) -> None:
        self.assessment_scores[(candidate_id, job_id)] = score

    def approve(self, candidate_id: str, stage_id: str) -> None:
        self.approvals.add((candidate_id, stage_id))

    def record_screening(self, candidate_id: str, job_id: str, passed: bool) -> None:
        self.screening_verdicts[(candidate_id, job_id)] = passed

    async def is_interview_complete(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        return (candidate_id, job_id) in self.completed_interviews

    async def is_assessment_passed(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        score = self.assessment_scores.get((candidate_id, job_id))
        return score is not None and score >= config.get("passing_score", 70)

    async def has_manual_approval(
        self, candidate_id: str, stage_id: str, config: Dict[str, Any]
    ) -> bool:
        return (candidate_id, stage_id) in self.approvals

    async def is_ai_screening_passed(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        return self.screening_verdicts.get((candidate_id, job_id), False)


class RequirementEvaluator:
    """Evaluates a stage's requirements through a predicate registry.

    All requirements must hold. A predicate that raises counts as unmet.
    Predicates only read; they never touch the instance.
    """

    def __init__(self, reader: RequirementReader) -> None:
        self._reader = reader
        self._predicates: Dict[RequirementKind, Predicate] = {
            RequirementKind.INTERVIEW_COMPLETE: self._interview_complete,
            RequirementKind.ASSESSMENT_PASSED: self._assessment_passed,
            RequirementKind.MANUAL_APPROVAL: self._manual_approval,
            RequirementKind.AI_SCREENING_PASSED: self._ai_screening_passed,
        }
        self._check_complete()

    def _check_complete(self) -> None:
        missing = set(RequirementKind) - set(self._predicates)
        if missing:
            raise ConfigurationError(
                f"No predicate for requirement kinds: {sorted(k.value for k in missing)}"
            )

    def register(self, kind: RequirementKind, predicate: Predicate) -> None:
        """Replace the predicate used for ``kind``."""
        self._predicates[RequirementKind(kind)] = predicate

    async def evaluate(self, instance: WorkflowInstance, stage: Stage) -> bool:
        for requirement in stage.requirements:
            if not await self.check(instance, stage, requirement):
                logger.info(
                    f"Requirement {requirement.type.value} not met for "
                    f"candidate={instance.candidate_id} stage={stage.stage_id}"
                )
                return False
        return True

    async def check(
        self, instance: WorkflowInstance, stage: Stage, requirement: StageRequirement
    ) -> bool:
        predicate: Optional[Predicate] = self._predicates.get(requirement.type)
        if predicate is None:
            logger.warning(f"Unknown requirement type {requirement.type}")
            return False
        try:
            return bool(await predicate(instance, stage, requirement))
        except Exception:
            logger.warning(
                f"Requirement {requirement.type.value} check failed for "
                f"candidate={instance.candidate_id} stage={stage.stage_id}",
                exc_info=True,
            )
            return False

    async def _interview_complete(
        self, instance: WorkflowInstance, stage: Stage, requirement: StageRequirement
    ) -> bool:
        return await self._reader.is_interview_complete(
            instance.candidate_id, instance.job_id, requirement.config
        )

    async def _assessment_passed(
        self, instance: WorkflowInstance, stage: Stage, requirement: StageRequirement
    ) -> bool:
        return await self._reader.is_assessment_passed(
            instance.candidate_id, instance.job_id, requirement.config
        )

    async def _manual_approval(
        self, instance: WorkflowInstance, stage: Stage, requirement: StageRequirement
    ) -> bool:
        return await self._reader.has_manual_approval(
            instance.candidate_id, stage.stage_id, requirement.config
        )

    async def _ai_screening_passed(
        self, instance: WorkflowInstance, stage: Stage, requirement: StageRequirement
    ) -> bool:
        return await self._reader.is_ai_screening_passed(
            instance.candidate_id, instance.job_id, requirement.config
        )
