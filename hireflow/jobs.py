"""Queue job envelope and the typed payloads carried by each queue."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, Field, field_validator

from .contracts import ActionKind, ActionTrigger, utcnow


class JobPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class JobStatus(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffPolicy(BaseModel):
    """Delay between retry attempts."""

    type: Literal["fixed", "exponential"] = "exponential"
    delay_ms: int = 1000


class ActionJob(BaseModel):
    """A durable unit of queued side-effecting work."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    queue: str
    lane: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
    status: JobStatus = JobStatus.WAITING
    attempts: int = 0
    max_attempts: int = 3
    backoff: BackoffPolicy = BackoffPolicy()
    created_at: datetime = Field(default_factory=utcnow)
    available_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    result: Any = None
    idempotency_key: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ActionJob":
        return cls.model_validate_json(data)


class WorkflowActionPayload(BaseModel):
    """Payload of the ``workflow`` queue: one stage action to run."""

    action_type: ActionKind
    candidate_id: str
    job_id: str
    company_id: str
    workflow_id: str
    stage_id: str = ""
    action_config: Dict[str, Any] = Field(default_factory=dict)
    triggered_by: str
    trigger: ActionTrigger = ActionTrigger.ON_ENTER
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def target_refs(self) -> Dict[str, str]:
        return {
            "candidate_id": self.candidate_id,
            "job_id": self.job_id,
            "company_id": self.company_id,
            "workflow_id": self.workflow_id,
            "stage_id": self.stage_id,
        }


class EmailPayload(BaseModel):
    template_name: str
    recipient_email: str
    recipient_name: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    candidate_profile: Optional[Dict[str, Any]] = None
    job_title: Optional[str] = None
    company_name: Optional[str] = None
    use_ai_personalization: bool = False
    priority: JobPriority = JobPriority.NORMAL

    @field_validator("recipient_email")
    @classmethod
    def _require_address(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("recipient_email must be an email address")
        return v


ScheduleType = Literal["interview", "assessment", "reminder", "follow_up"]
NotificationType = Literal[
    "candidate_stage_change",
    "interview_reminder",
    "assessment_due",
    "application_received",
]
SCHEDULE_TYPES = get_args(ScheduleType)
NOTIFICATION_TYPES = get_args(NotificationType)


class SchedulePayload(BaseModel):
    schedule_type: ScheduleType
    candidate_id: str
    job_id: str
    company_id: str
    scheduled_date: datetime
    duration: int = 60
    participants: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)


class NotificationPayload(BaseModel):
    type: NotificationType
    recipient_id: str
    recipient_type: Literal["candidate", "recruiter", "hiring_manager"]
    data: Dict[str, Any] = Field(default_factory=dict)
    channels: List[Literal["email", "sms", "push"]] = Field(
        default_factory=lambda: ["email"]
    )


def idempotency_key(*parts: Any) -> str:
    """Stable key for a side effect derived from its identifying parts."""
    raw = "|".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
