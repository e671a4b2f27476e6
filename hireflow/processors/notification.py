"""Processor for the ``notification`` queue.

Every notification type composes an email job. The ``sms`` and ``push``
channels are accepted but only logged.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

from ..directory import require
from ..jobs import NOTIFICATION_TYPES, ActionJob, JobPriority, NotificationPayload
from .base import DEFAULT_COMPANY_NAME, Processor, as_datetime, check_table, hours_until

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[NotificationPayload, ActionJob], Awaitable[None]]


class NotificationProcessor(Processor):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._handlers: Dict[str, NotificationHandler] = {
            "candidate_stage_change": self._stage_change,
            "interview_reminder": self._interview_reminder,
            "assessment_due": self._assessment_due,
            "application_received": self._application_received,
        }
        check_table("notification", self._handlers, NOTIFICATION_TYPES)

    async def process(self, payload: NotificationPayload, job: ActionJob) -> Dict[str, Any]:
        logger.info(
            f"Processing {payload.type} notification for {payload.recipient_type} "
            f"{payload.recipient_id} via {', '.join(payload.channels)}"
        )
        if "email" in payload.channels:
            await self._handlers[payload.type](payload, job)
        for channel in ("sms", "push"):
            if channel in payload.channels:
                logger.info(
                    f"{channel} delivery is not supported; skipping {payload.type} "
                    f"for {payload.recipient_id}"
                )
        return {"type": payload.type, "recipient_id": payload.recipient_id}

    async def _stage_change(self, payload: NotificationPayload, job: ActionJob) -> None:
        data = payload.data
        email, name = await self.recipient(payload.recipient_id, payload.recipient_type)
        posting = await require(self.directory, "job", data.get("job_id", ""))
        for_candidate = payload.recipient_type == "candidate"
        await self.enqueue_email(
            job,
            ("stage_change", payload.recipient_id),
            template_name="stage_update_candidate" if for_candidate else "stage_update_recruiter",
            recipient_email=email,
            recipient_name=name,
            variables={
                "recipient_name": name,
                "candidate_name": name if for_candidate else data.get("candidate_name"),
                "job_title": posting.title,
                "company_name": data.get("company_name") or DEFAULT_COMPANY_NAME,
                "old_stage": data.get("old_stage") or "Previous Stage",
                "new_stage": data.get("new_stage") or "Current Stage",
                "stage_description": data.get("message")
                or "Stage updated in the hiring process",
            },
        )

    async def _interview_reminder(self, payload: NotificationPayload, job: ActionJob) -> None:
        data = payload.data
        email, name = await self.recipient(payload.recipient_id, payload.recipient_type)
        scheduled = as_datetime(data.get("scheduled_date"), "scheduled_date")
        reminder_type = data.get("reminder_type")
        await self.enqueue_email(
            job,
            ("interview_reminder", payload.recipient_id),
            template_name=(
                "interview_reminder_24h" if reminder_type == "24h" else "interview_reminder_1h"
            ),
            recipient_email=email,
            recipient_name=name,
            variables={
                "recipient_name": name,
                "interview_date": scheduled.date().isoformat(),
                "interview_time": scheduled.strftime("%H:%M"),
                "hours_until": hours_until(scheduled, self._clock()),
                "job_title": data.get("job_title", "Position"),
                "company_name": data.get("company_name", DEFAULT_COMPANY_NAME),
                "meeting_link": data.get("meeting_link"),
                "location": data.get("location"),
                "interview_type": data.get("interview_type", "interview"),
            },
            priority=JobPriority.HIGH if reminder_type == "1h" else JobPriority.NORMAL,
        )

    async def _assessment_due(self, payload: NotificationPayload, job: ActionJob) -> None:
        data = payload.data
        candidate = await require(self.directory, "candidate", payload.recipient_id)
        due = as_datetime(data.get("due_date"), "due_date")
        hours = hours_until(due, self._clock())
        await self.enqueue_email(
            job,
            ("assessment_due", payload.recipient_id),
            template_name="assessment_due_reminder",
            recipient_email=candidate.email,
            recipient_name=candidate.full_name,
            variables={
                "candidate_name": candidate.full_name,
                "assessment_type": data.get("assessment_type", "Assessment"),
                "due_date": due.date().isoformat(),
                "due_time": due.strftime("%H:%M"),
                "hours_until": hours,
                "assessment_link": data.get("assessment_link", "#"),
                "job_title": data.get("job_title", "Position"),
                "company_name": data.get("company_name", DEFAULT_COMPANY_NAME),
            },
            priority=JobPriority.HIGH if hours <= 24 else JobPriority.NORMAL,
        )

    async def _application_received(self, payload: NotificationPayload, job: ActionJob) -> None:
        data = payload.data
        candidate, posting = await self.candidate_and_posting(
            data.get("candidate_id", ""), data.get("job_id", "")
        )
        if payload.recipient_type == "candidate":
            await self.enqueue_email(
                job,
                ("application_received", candidate.candidate_id),
                template_name="application_received",
                recipient_email=candidate.email,
                recipient_name=candidate.full_name,
                variables={
                    "candidate_name": candidate.full_name,
                    "job_title": posting.title,
                    "company_name": data.get("company_name", DEFAULT_COMPANY_NAME),
                    "expected_response_time": data.get(
                        "expected_response_time", "5-7 business days"
                    ),
                    "application_id": data.get("application_id", "N/A"),
                },
                candidate_profile=candidate.profile,
                job_title=posting.title,
                company_name=data.get("company_name"),
                use_ai_personalization=True,
            )
            return

        recruiter = await require(self.directory, "employee", payload.recipient_id)
        await self.enqueue_email(
            job,
            ("new_application_notification", recruiter.employee_id),
            template_name="new_application_notification",
            recipient_email=recruiter.email,
            recipient_name=recruiter.full_name,
            variables={
                "recruiter_name": recruiter.full_name,
                "candidate_name": candidate.full_name,
                "job_title": posting.title,
                "candidate_email": candidate.email,
                "candidate_phone": candidate.phone,
                "candidate_location": candidate.location,
                "candidate_experience": candidate.experience,
                "application_date": self._clock().date().isoformat(),
                "application_link": data.get("application_link", "#"),
            },
        )
