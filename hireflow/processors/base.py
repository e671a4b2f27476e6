"""Helpers shared by the action processors."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from pydantic import TypeAdapter

from ..contracts import utcnow
from ..directory import Candidate, Employee, JobPosting, require
from ..errors import ConfigurationError, JobValidationError
from ..jobs import ActionJob, idempotency_key
from ..services import Services

if TYPE_CHECKING:
    from ..dispatch import ActionQueueDispatcher

DEFAULT_RECRUITER_NAME = "Hiring Team"
DEFAULT_COMPANY_NAME = "Company"

_datetime = TypeAdapter(datetime)


def as_datetime(value: Any, field: str = "date") -> datetime:
    """Coerce a JSON value (ISO string or datetime) into an aware datetime."""
    if value is None:
        raise JobValidationError(f"Missing {field}")
    try:
        parsed = _datetime.validate_python(value)
    except ValueError as e:
        raise JobValidationError(f"Invalid {field}: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def hours_until(target: datetime, now: datetime) -> int:
    """Whole hours from ``now`` to ``target``, rounded up and floored at zero."""
    seconds = (target - now).total_seconds()
    hours = int(-(-seconds // 3600))
    return max(hours, 0)


class Processor:
    """Base for processors that enqueue follow-up jobs on the dispatcher."""

    def __init__(
        self,
        dispatcher: "ActionQueueDispatcher",
        services: Services,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._services = services
        self._clock = clock or utcnow

    @property
    def directory(self):
        return self._services.directory

    @staticmethod
    def child_key(job: ActionJob, *parts: Any) -> str:
        """Idempotency key for a job enqueued while processing ``job``."""
        return idempotency_key(job.id, *parts)

    async def recruiter_name(self, posting: JobPosting) -> str:
        if not posting.hiring_manager_id:
            return DEFAULT_RECRUITER_NAME
        manager = await self.directory.get_employee(posting.hiring_manager_id)
        return manager.full_name if manager else DEFAULT_RECRUITER_NAME

    async def company_name(self, company_id: str, fallback: Optional[str] = None) -> str:
        if fallback:
            return fallback
        company = await self.directory.get_company(company_id)
        return company.name if company else DEFAULT_COMPANY_NAME

    async def candidate_and_posting(
        self, candidate_id: str, job_id: str
    ) -> Tuple[Candidate, JobPosting]:
        candidate = await require(self.directory, "candidate", candidate_id)
        posting = await require(self.directory, "job", job_id)
        return candidate, posting

    async def recipient(self, recipient_id: str, recipient_type: str) -> Tuple[str, str]:
        """Resolve a notification recipient to ``(email, name)``."""
        if recipient_type == "candidate":
            person: Candidate | Employee = await require(
                self.directory, "candidate", recipient_id
            )
        else:
            person = await require(self.directory, "employee", recipient_id)
        return person.email, person.full_name

    async def enqueue_email(self, job: ActionJob, key_parts: Tuple[Any, ...], **email: Any) -> str:
        return await self._dispatcher.add_email_job(
            email, idempotency_key=self.child_key(job, *key_parts)
        )

    async def enqueue_schedule(
        self, job: ActionJob, key_parts: Tuple[Any, ...], **schedule: Any
    ) -> str:
        return await self._dispatcher.add_schedule_job(
            schedule, idempotency_key=self.child_key(job, *key_parts)
        )

    async def enqueue_notification(
        self, job: ActionJob, key_parts: Tuple[Any, ...], **notification: Any
    ) -> str:
        return await self._dispatcher.add_notification_job(
            notification, idempotency_key=self.child_key(job, *key_parts)
        )


def check_table(kind: str, table: Dict[Any, Any], expected: Any) -> None:
    """Raise ``ConfigurationError`` when ``table`` misses any of ``expected``."""
    missing = [str(getattr(k, "value", k)) for k in expected if k not in table]
    if missing:
        raise ConfigurationError(f"No {kind} handler for: {', '.join(sorted(missing))}")
