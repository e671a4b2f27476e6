import pytest

from hireflow.contracts import RequirementKind, Stage, StageRequirement, WorkflowInstance
from hireflow.directory import Candidate, InMemoryDirectory, JobPosting
from hireflow.requirements import InMemoryRequirementReader, RequirementEvaluator
from hireflow.services import AIScreeningReader, MatchResult

INSTANCE = WorkflowInstance(
    candidate_id="C1",
    job_id="J1",
    company_id="CO1",
    workflow_id="W1",
    current_stage_id="review",
    current_stage_order=2,
)


def _stage(*requirements: StageRequirement) -> Stage:
    return Stage(
        stage_id="review", name="Review", order=2, auto_advance=True, requirements=list(requirements)
    )


@pytest.mark.asyncio
async def test_stage_without_requirements_passes():
    evaluator = RequirementEvaluator(InMemoryRequirementReader())
    assert await evaluator.evaluate(INSTANCE, _stage()) is True


@pytest.mark.asyncio
async def test_all_requirements_must_hold():
    reader = InMemoryRequirementReader()
    evaluator = RequirementEvaluator(reader)
    stage = _stage(
        StageRequirement(type=RequirementKind.INTERVIEW_COMPLETE),
        StageRequirement(type=RequirementKind.ASSESSMENT_PASSED, config={"passing_score": 80}),
    )

    reader.record_interview_complete("C1", "J1")
    reader.record_assessment_score("C1", "J1", 75)
    assert await evaluator.evaluate(INSTANCE, stage) is False

    reader.record_assessment_score("C1", "J1", 80)
    assert await evaluator.evaluate(INSTANCE, stage) is True


@pytest.mark.asyncio
async def test_manual_approval_is_per_stage():
    reader = InMemoryRequirementReader()
    evaluator = RequirementEvaluator(reader)
    stage = _stage(StageRequirement(type=RequirementKind.MANUAL_APPROVAL))

    reader.approve("C1", "screening")
    assert await evaluator.evaluate(INSTANCE, stage) is False
    reader.approve("C1", "review")
    assert await evaluator.evaluate(INSTANCE, stage) is True


@pytest.mark.asyncio
async def test_raising_predicate_counts_as_unmet():
    evaluator = RequirementEvaluator(InMemoryRequirementReader())

    async def unavailable(instance, stage, requirement):
        raise ConnectionError("screening service down")

    evaluator.register(RequirementKind.AI_SCREENING_PASSED, unavailable)
    stage = _stage(StageRequirement(type=RequirementKind.AI_SCREENING_PASSED))

    assert await evaluator.evaluate(INSTANCE, stage) is False


class FakeMatcher:
    def __init__(self, score):
        self.score = score
        self.calls = []

    async def match_candidate_to_job(self, candidate_profile, job):
        self.calls.append((candidate_profile, job["job_id"]))
        return MatchResult(overall_score=self.score)

    async def parse_resume(self, resume_text):
        return {}


def _directory() -> InMemoryDirectory:
    directory = InMemoryDirectory()
    directory.add(
        Candidate(
            candidate_id="C1",
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.com",
            profile={"skills": ["python"]},
        )
    )
    directory.add(JobPosting(job_id="J1", company_id="CO1", title="Backend Engineer"))
    return directory


@pytest.mark.asyncio
async def test_ai_screening_uses_minimum_score():
    matcher = FakeMatcher(score=72)
    reader = AIScreeningReader(InMemoryRequirementReader(), matcher, _directory())
    evaluator = RequirementEvaluator(reader)

    default = _stage(StageRequirement(type=RequirementKind.AI_SCREENING_PASSED))
    strict = _stage(
        StageRequirement(type=RequirementKind.AI_SCREENING_PASSED, config={"minimum_score": 85})
    )

    assert await evaluator.evaluate(INSTANCE, default) is True
    assert await evaluator.evaluate(INSTANCE, strict) is False
    assert matcher.calls[0] == ({"skills": ["python"]}, "J1")


@pytest.mark.asyncio
async def test_ai_screening_reader_delegates_other_checks():
    fallback = InMemoryRequirementReader()
    fallback.record_interview_complete("C1", "J1")
    reader = AIScreeningReader(fallback, FakeMatcher(score=0), _directory())

    assert await reader.is_interview_complete("C1", "J1", {}) is True
    assert await reader.has_manual_approval("C1", "review", {}) is False


@pytest.mark.asyncio
async def test_ai_screening_for_unknown_candidate_is_unmet():
    reader = AIScreeningReader(InMemoryRequirementReader(), FakeMatcher(score=99), _directory())
    evaluator = RequirementEvaluator(reader)
    other = INSTANCE.model_copy(update={"candidate_id": "C404"})

    stage = _stage(StageRequirement(type=RequirementKind.AI_SCREENING_PASSED))
    assert await evaluator.evaluate(other, stage) is False
