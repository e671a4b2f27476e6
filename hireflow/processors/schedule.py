"""Processor for the ``schedule`` queue."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List

from ..directory import Employee
from ..jobs import SCHEDULE_TYPES, ActionJob, JobPriority, SchedulePayload
from ..services import CalendarEvent, InterviewRecord
from .base import Processor, check_table

logger = logging.getLogger(__name__)

ScheduleHandler = Callable[[SchedulePayload, ActionJob], Awaitable[Any]]


class ScheduleProcessor(Processor):
    """Books interviews and sends schedule-driven reminders and follow-ups."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._handlers: Dict[str, ScheduleHandler] = {
            "interview": self._interview,
            "assessment": self._assessment,
            "reminder": self._reminder,
            "follow_up": self._follow_up,
        }
        check_table("schedule", self._handlers, SCHEDULE_TYPES)

    async def process(self, payload: SchedulePayload, job: ActionJob) -> Any:
        logger.info(
            f"Processing {payload.schedule_type} schedule for candidate={payload.candidate_id} "
            f"at {payload.scheduled_date.isoformat()}"
        )
        return await self._handlers[payload.schedule_type](payload, job)

    async def _interviewers(self, participant_ids: List[str]) -> List[Employee]:
        interviewers = []
        for employee_id in participant_ids:
            employee = await self.directory.get_employee(employee_id)
            if employee is None:
                logger.warning(f"Interviewer {employee_id} not found; skipping")
                continue
            interviewers.append(employee)
        return interviewers

    async def _interview(self, payload: SchedulePayload, job: ActionJob) -> Dict[str, Any]:
        candidate, posting = await self.candidate_and_posting(
            payload.candidate_id, payload.job_id
        )
        details = payload.details
        interview_type = details.get("interview_type") or "video"
        record = await self._services.interviews.create_interview(
            InterviewRecord(
                candidate_id=payload.candidate_id,
                job_id=payload.job_id,
                company_id=payload.company_id,
                title=details.get("title") or f"{posting.title} Interview",
                type=interview_type,
                scheduled_date=payload.scheduled_date,
                duration=payload.duration,
                location=details.get("location"),
                meeting_link=details.get("meeting_link"),
                round=details.get("round") or 1,
                stage=details.get("stage"),
                notes=details.get("notes"),
                interviewer_ids=payload.participants,
                idempotency_key=self.child_key(job, "interview"),
            )
        )
        interviewers = await self._interviewers(payload.participants)

        if payload.participants and record.calendar_event_id is None:
            event = CalendarEvent(
                title=record.title,
                description=f"Interview with {candidate.full_name} for {posting.title}",
                start_time=payload.scheduled_date,
                end_time=payload.scheduled_date + timedelta(minutes=payload.duration),
                attendees=[candidate.email] + [i.email for i in interviewers if i.email],
                location=record.location,
                meeting_link=record.meeting_link,
            )
            try:
                event_id = await self._services.calendar.create_event(event)
            except Exception as e:
                logger.warning(
                    f"Failed to create calendar event for interview {record.interview_id}: {e}"
                )
            else:
                if event_id:
                    await self._services.interviews.attach_calendar_event(
                        record.interview_id, event_id
                    )
                logger.info(
                    f"Calendar event {event_id} created for interview {record.interview_id}"
                )

        date = payload.scheduled_date.date().isoformat()
        time = payload.scheduled_date.strftime("%H:%M")
        common = {
            "job_title": posting.title,
            "interview_date": date,
            "interview_time": time,
            "duration": payload.duration,
            "interview_type": interview_type,
            "location": record.location,
            "meeting_link": record.meeting_link,
        }
        await self.enqueue_email(
            job,
            ("interview_invitation", candidate.candidate_id),
            template_name="interview_invitation",
            recipient_email=candidate.email,
            recipient_name=candidate.full_name,
            variables={
                **common,
                "candidate_name": candidate.full_name,
                "company_name": await self.company_name(
                    payload.company_id, details.get("company_name")
                ),
                "recruiter_name": await self.recruiter_name(posting),
            },
            priority=JobPriority.HIGH,
        )
        for interviewer in interviewers:
            await self.enqueue_email(
                job,
                ("interviewer_notification", interviewer.employee_id),
                template_name="interviewer_notification",
                recipient_email=interviewer.email,
                recipient_name=interviewer.full_name,
                variables={
                    **common,
                    "interviewer_name": interviewer.full_name,
                    "candidate_name": candidate.full_name,
                    "candidate_profile": (
                        f"{candidate.experience or 'Unknown'} experience in "
                        f"{', '.join(posting.skills_required)}"
                    ),
                },
            )

        logger.info(
            f"Interview {record.interview_id} scheduled for candidate={payload.candidate_id} "
            f"at {payload.scheduled_date.isoformat()}"
        )
        return {"interview_id": record.interview_id}

    async def _assessment(self, payload: SchedulePayload, job: ActionJob) -> str:
        candidate, posting = await self.candidate_and_posting(
            payload.candidate_id, payload.job_id
        )
        details = payload.details
        return await self.enqueue_email(
            job,
            ("assessment_reminder",),
            template_name="assessment_reminder",
            recipient_email=candidate.email,
            recipient_name=candidate.full_name,
            variables={
                "candidate_name": candidate.full_name,
                "job_title": posting.title,
                "assessment_type": details.get("assessment_type", "Skills Assessment"),
                "deadline": details.get("deadline", "within 24 hours"),
                "assessment_link": details.get("assessment_link", "#"),
            },
        )

    async def _reminder(self, payload: SchedulePayload, job: ActionJob) -> str:
        reminder_type = payload.details.get("reminder_type", "general")
        notification_id = await self.enqueue_notification(
            job,
            ("interview_reminder",),
            type="interview_reminder",
            recipient_id=payload.candidate_id,
            recipient_type="candidate",
            data={
                **payload.details,
                "reminder_type": reminder_type,
                "scheduled_date": payload.scheduled_date.isoformat(),
            },
            channels=["email"],
        )
        logger.info(
            f"Queued {reminder_type} reminder {notification_id} for "
            f"candidate={payload.candidate_id}"
        )
        return notification_id

    async def _follow_up(self, payload: SchedulePayload, job: ActionJob) -> str:
        candidate, posting = await self.candidate_and_posting(
            payload.candidate_id, payload.job_id
        )
        details = payload.details
        return await self.enqueue_email(
            job,
            ("follow_up",),
            template_name=details.get("template_name", "follow_up"),
            recipient_email=candidate.email,
            recipient_name=candidate.full_name,
            variables={
                "candidate_name": candidate.full_name,
                "job_title": posting.title,
                "follow_up_reason": details.get("follow_up_reason", "checking in"),
                "next_steps": details.get("next_steps", "We will be in touch soon"),
                **details.get("custom_variables", {}),
            },
            candidate_profile=candidate.profile,
            job_title=posting.title,
            use_ai_personalization=details.get("use_ai_personalization", False),
        )
