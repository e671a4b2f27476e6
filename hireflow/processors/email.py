"""Processor for the ``email`` queue."""

from __future__ import annotations

import logging
from typing import Dict

from ..errors import ExternalServiceError
from ..jobs import ActionJob, EmailPayload, idempotency_key
from .base import Processor

logger = logging.getLogger(__name__)


class EmailProcessor(Processor):
    """Delivers queued email. Every priority lane runs the same :meth:`send`."""

    async def send(self, payload: EmailPayload, job: ActionJob) -> Dict[str, str]:
        logger.info(
            f"Sending {payload.template_name} email to {payload.recipient_email} "
            f"(lane={job.lane}, attempt={job.attempts})"
        )
        sent = await self._services.email.send_personalized_email(
            template_name=payload.template_name,
            recipient_email=payload.recipient_email,
            recipient_name=payload.recipient_name,
            variables=payload.variables,
            candidate_profile=payload.candidate_profile,
            job_title=payload.job_title,
            company_name=payload.company_name,
            use_ai_personalization=payload.use_ai_personalization,
            idempotency_key=job.idempotency_key or idempotency_key("email", job.id),
        )
        if not sent:
            raise ExternalServiceError(
                "email",
                f"delivery of {payload.template_name} to {payload.recipient_email} was refused",
            )
        return {"template_name": payload.template_name, "recipient": payload.recipient_email}
