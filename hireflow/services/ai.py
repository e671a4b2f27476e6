"""AI matching/screening collaborator."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from ..directory import Directory, require
from ..requirements import RequirementReader
from .http import HttpServiceClient

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_SCORE = 70


class MatchResult(BaseModel):
    overall_score: float
    breakdown: Dict[str, float] = Field(default_factory=dict)
    reasons: List[str] = Field(default_factory=list)


class AIMatchingService(Protocol):
    async def match_candidate_to_job(
        self, candidate_profile: Dict[str, Any], job: Dict[str, Any]
    ) -> MatchResult:
        """Score a candidate profile against a job posting."""

    async def parse_resume(self, resume_text: str) -> Dict[str, Any]:
        """Extract a structured profile from resume text."""


class HttpAIMatchingService(HttpServiceClient):
    service_name = "ai"

    async def match_candidate_to_job(
        self, candidate_profile: Dict[str, Any], job: Dict[str, Any]
    ) -> MatchResult:
        body = await self._request(
            "POST", "/match", json={"candidate": candidate_profile, "job": job}
        )
        return MatchResult.model_validate(body)

    async def parse_resume(self, resume_text: str) -> Dict[str, Any]:
        return await self._request("POST", "/resumes/parse", json={"text": resume_text})


class AIScreeningReader:
    """Requirement reader answering ``ai_screening_passed`` from the AI service.

    Every other check is delegated to ``fallback``.
    """

    def __init__(
        self,
        fallback: RequirementReader,
        ai: AIMatchingService,
        directory: Directory,
    ) -> None:
        self._fallback = fallback
        self._ai = ai
        self._directory = directory

    async def is_interview_complete(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        return await self._fallback.is_interview_complete(candidate_id, job_id, config)

    async def is_assessment_passed(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        return await self._fallback.is_assessment_passed(candidate_id, job_id, config)

    async def has_manual_approval(
        self, candidate_id: str, stage_id: str, config: Dict[str, Any]
    ) -> bool:
        return await self._fallback.has_manual_approval(candidate_id, stage_id, config)

    async def is_ai_screening_passed(
        self, candidate_id: str, job_id: str, config: Dict[str, Any]
    ) -> bool:
        candidate = await require(self._directory, "candidate", candidate_id)
        job = await require(self._directory, "job", job_id)
        result = await self._ai.match_candidate_to_job(
            candidate.profile or {}, job.model_dump(mode="json")
        )
        minimum: Optional[float] = config.get("minimum_score", DEFAULT_MINIMUM_SCORE)
        passed = result.overall_score >= minimum
        logger.info(
            f"AI screening for candidate={candidate_id} job={job_id}: "
            f"score={result.overall_score} minimum={minimum} passed={passed}"
        )
        return passed
