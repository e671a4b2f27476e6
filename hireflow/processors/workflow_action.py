"""Processor for the ``workflow`` queue: one handler per stage action kind."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel

from ..contracts import ActionKind
from ..directory import require
from ..jobs import ActionJob, JobPriority, WorkflowActionPayload
from .base import DEFAULT_RECRUITER_NAME, Processor, as_datetime, check_table

logger = logging.getLogger(__name__)

ActionHandler = Callable[[WorkflowActionPayload, ActionJob], Awaitable[Any]]

DEFAULT_RESPONSE_TIME = "5-7 business days"
DEFAULT_DEADLINE_DAYS = 7
DEFAULT_PASSING_SCORE = 70
OFFER_START_DAYS = 14
OFFER_RESPONSE_DAYS = 7


class VerificationResult(BaseModel):
    """Outcome of ``verify_assessment``. A failed check is not an error."""

    passed: bool
    completed: bool
    score: float
    passing_score: float


class WorkflowActionProcessor(Processor):
    """Turns a queued stage action into follow-up email and schedule jobs."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._handlers: Dict[ActionKind, ActionHandler] = {
            ActionKind.SEND_EMAIL: self._send_email,
            ActionKind.SCHEDULE_INTERVIEW: self._schedule_interview,
            ActionKind.ASSIGN_ASSESSMENT: self._assign_assessment,
            ActionKind.VERIFY_ASSESSMENT: self._verify_assessment,
            ActionKind.ADD_CALENDAR_EVENT: self._add_calendar_event,
            ActionKind.GENERATE_OFFER_LETTER: self._generate_offer_letter,
        }
        check_table("action", self._handlers, ActionKind)

    async def process(self, payload: WorkflowActionPayload, job: ActionJob) -> Any:
        logger.info(
            f"Processing {payload.action_type.value} for candidate={payload.candidate_id} "
            f"job={payload.job_id} stage={payload.stage_id}"
        )
        return await self._handlers[payload.action_type](payload, job)

    def _key(self, payload: WorkflowActionPayload, *extra: Any) -> tuple:
        refs = payload.target_refs()
        return (payload.action_type.value, *(refs[k] for k in sorted(refs)), *extra)

    async def _send_email(self, payload: WorkflowActionPayload, job: ActionJob) -> str:
        candidate, posting = await self.candidate_and_posting(
            payload.candidate_id, payload.job_id
        )
        company = await require(self.directory, "company", payload.company_id)
        config = payload.action_config
        template_name = config.get("template_name", "application_received")
        variables = {
            "candidate_name": candidate.full_name,
            "job_title": posting.title,
            "company_name": company.name,
            "recruiter_name": await self.recruiter_name(posting),
            "expected_response_time": config.get(
                "expected_response_time", DEFAULT_RESPONSE_TIME
            ),
            **config.get("custom_variables", {}),
        }
        email_job_id = await self.enqueue_email(
            job,
            self._key(payload),
            template_name=template_name,
            recipient_email=candidate.email,
            recipient_name=candidate.full_name,
            variables=variables,
            candidate_profile=candidate.profile,
            job_title=posting.title,
            company_name=company.name,
            use_ai_personalization=config.get("use_ai_personalization", False),
            priority=config.get("priority", JobPriority.NORMAL),
        )
        logger.info(
            f"Queued {template_name} email {email_job_id} for candidate={payload.candidate_id}"
        )
        return email_job_id

    async def _schedule_interview(self, payload: WorkflowActionPayload, job: ActionJob) -> str:
        config = payload.action_config
        schedule_job_id = await self.enqueue_schedule(
            job,
            self._key(payload),
            schedule_type="interview",
            candidate_id=payload.candidate_id,
            job_id=payload.job_id,
            company_id=payload.company_id,
            scheduled_date=as_datetime(config.get("scheduled_date"), "scheduled_date"),
            duration=config.get("duration", 60),
            participants=config.get("participants", []),
            details={
                "interview_type": config.get("interview_type", "video"),
                "location": config.get("location"),
                "meeting_link": config.get("meeting_link"),
                "round": config.get("round", 1),
                "stage": payload.stage_id,
                "notes": config.get("notes"),
            },
        )
        logger.info(
            f"Queued interview scheduling {schedule_job_id} for candidate={payload.candidate_id}"
        )
        return schedule_job_id

    async def _assign_assessment(
        self, payload: WorkflowActionPayload, job: ActionJob
    ) -> Dict[str, Any]:
        config = payload.action_config
        candidate, posting = await self.candidate_and_posting(
            payload.candidate_id, payload.job_id
        )
        deadline = self._clock() + timedelta(
            days=config.get("deadline_days", DEFAULT_DEADLINE_DAYS)
        )
        assessment_type = config.get("assessment_type", "technical")
        duration = config.get("duration", 60)
        await self.enqueue_email(
            job,
            self._key(payload),
            template_name="assessment_invitation",
            recipient_email=candidate.email,
            recipient_name=candidate.full_name,
            variables={
                "candidate_name": candidate.full_name,
                "job_title": posting.title,
                "company_name": await self.company_name(
                    payload.company_id, payload.metadata.get("company_name")
                ),
                "assessment_title": config.get("title", f"{posting.title} Assessment"),
                "assessment_type": assessment_type,
                "duration": duration,
                "deadline": deadline.date().isoformat(),
                "assessment_link": config.get("assessment_link", "#"),
                "passing_score": config.get("passing_score", DEFAULT_PASSING_SCORE),
                "recruiter_name": payload.metadata.get(
                    "recruiter_name", DEFAULT_RECRUITER_NAME
                ),
            },
        )
        logger.info(
            f"Assigned {assessment_type} assessment to candidate={payload.candidate_id} "
            f"due {deadline.isoformat()}"
        )
        return {"assessment_type": assessment_type, "deadline": deadline.isoformat()}

    async def _verify_assessment(
        self, payload: WorkflowActionPayload, job: ActionJob
    ) -> VerificationResult:
        config = payload.action_config
        result = VerificationResult(
            completed=bool(config.get("assessment_completed", False)),
            score=config.get("score") or 0,
            passing_score=config.get("passing_score") or DEFAULT_PASSING_SCORE,
            passed=False,
        )
        result.passed = result.completed and result.score >= result.passing_score
        if not result.passed:
            logger.info(
                f"Assessment verification failed for candidate={payload.candidate_id}: "
                f"completed={result.completed} score={result.score} "
                f"passing_score={result.passing_score}"
            )
            return result

        logger.info(
            f"Assessment verification passed for candidate={payload.candidate_id}: "
            f"score={result.score} passing_score={result.passing_score}"
        )
        if config.get("notify_candidate"):
            candidate = await self.directory.get_candidate(payload.candidate_id)
            posting = await self.directory.get_job(payload.job_id)
            if candidate and posting:
                await self.enqueue_email(
                    job,
                    self._key(payload),
                    template_name="assessment_passed",
                    recipient_email=candidate.email,
                    recipient_name=candidate.full_name,
                    variables={
                        "candidate_name": candidate.full_name,
                        "job_title": posting.title,
                        "score": result.score,
                        "next_steps": config.get(
                            "next_steps", "We will be in touch with next steps soon."
                        ),
                    },
                )
        return result

    async def _add_calendar_event(self, payload: WorkflowActionPayload, job: ActionJob) -> str:
        config = payload.action_config
        start = as_datetime(config.get("start_time"), "start_time")
        end = as_datetime(config.get("end_time"), "end_time")
        attendees = config.get("attendees", [])
        schedule_job_id = await self.enqueue_schedule(
            job,
            self._key(payload),
            schedule_type="interview",
            candidate_id=payload.candidate_id,
            job_id=payload.job_id,
            company_id=payload.company_id,
            scheduled_date=start,
            duration=int((end - start).total_seconds() // 60),
            participants=attendees,
            details={
                "title": config.get("title", "Interview"),
                "description": config.get("description"),
                "location": config.get("location"),
                "meeting_link": config.get("meeting_link"),
                "stage": payload.stage_id,
            },
        )
        logger.info(
            f"Queued calendar event {schedule_job_id} for candidate={payload.candidate_id} "
            f"at {start.isoformat()}"
        )
        return schedule_job_id

    async def _generate_offer_letter(
        self, payload: WorkflowActionPayload, job: ActionJob
    ) -> str:
        config = payload.action_config
        candidate, posting = await self.candidate_and_posting(
            payload.candidate_id, payload.job_id
        )
        company = await require(self.directory, "company", payload.company_id)
        now = self._clock()
        salary: Optional[str] = config.get("salary") or (
            str(posting.salary) if posting.salary else None
        )
        variables = {
            "candidate_name": candidate.full_name,
            "job_title": posting.title,
            "company_name": company.name,
            "department": posting.department,
            "start_date": config.get(
                "start_date", (now + timedelta(days=OFFER_START_DAYS)).date().isoformat()
            ),
            "salary": salary or "Competitive",
            "benefits": config.get("benefits") or posting.benefits or "Standard benefits package",
            "work_mode": config.get("work_mode", posting.work_mode),
            "response_deadline": config.get(
                "response_deadline",
                (now + timedelta(days=OFFER_RESPONSE_DAYS)).date().isoformat(),
            ),
            "recruiter_name": payload.metadata.get("recruiter_name", DEFAULT_RECRUITER_NAME),
        }
        email_job_id = await self.enqueue_email(
            job,
            self._key(payload),
            template_name="offer_letter",
            recipient_email=candidate.email,
            recipient_name=candidate.full_name,
            variables=variables,
            candidate_profile=candidate.profile,
            job_title=posting.title,
            company_name=company.name,
            use_ai_personalization=True,
            priority=JobPriority.HIGH,
        )
        logger.info(
            f"Queued offer letter {email_job_id} for candidate={payload.candidate_id} "
            f"starting {variables['start_date']}"
        )
        return email_job_id
