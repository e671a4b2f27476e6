"""Core workflow contracts: definitions, stages and runtime instances."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageType(str, Enum):
    SCREENING = "screening"
    INTERVIEW = "interview"
    ASSESSMENT = "assessment"
    REVIEW = "review"
    OFFER = "offer"
    CUSTOM = "custom"


class ActionKind(str, Enum):
    SEND_EMAIL = "send_email"
    SCHEDULE_INTERVIEW = "schedule_interview"
    ASSIGN_ASSESSMENT = "assign_assessment"
    VERIFY_ASSESSMENT = "verify_assessment"
    ADD_CALENDAR_EVENT = "add_calendar_event"
    GENERATE_OFFER_LETTER = "generate_offer_letter"


class ActionTrigger(str, Enum):
    ON_ENTER = "on_enter"
    ON_EXIT = "on_exit"
    MANUAL = "manual"


class RequirementKind(str, Enum):
    INTERVIEW_COMPLETE = "interview_complete"
    ASSESSMENT_PASSED = "assessment_passed"
    MANUAL_APPROVAL = "manual_approval"
    AI_SCREENING_PASSED = "ai_screening_passed"


class InstanceStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"
    REJECTED = "rejected"


class StageOutcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageAction(BaseModel):
    """Side effect attached to a stage."""

    type: ActionKind
    config: Dict[str, Any] = Field(default_factory=dict)
    trigger: ActionTrigger = ActionTrigger.ON_ENTER


class StageRequirement(BaseModel):
    """Predicate gating auto-advance out of a stage."""

    type: RequirementKind
    config: Dict[str, Any] = Field(default_factory=dict)


class Stage(BaseModel):
    """One step of a workflow definition."""

    stage_id: str
    name: str
    type: StageType = StageType.CUSTOM
    order: int
    is_required: bool = True
    auto_advance: bool = False
    actions: List[StageAction] = Field(default_factory=list)
    requirements: List[StageRequirement] = Field(default_factory=list)

    def actions_for(self, trigger: ActionTrigger) -> List[StageAction]:
        return [a for a in self.actions if a.trigger == trigger]


class WorkflowDefinition(BaseModel):
    """Versioned, immutable template of ordered stages."""

    workflow_id: str
    company_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    version: int = 1
    is_active: bool = True
    stages: List[Stage] = Field(default_factory=list)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_stages(self) -> "WorkflowDefinition":
        orders = [s.order for s in self.stages]
        if len(orders) != len(set(orders)):
            raise ValueError("stage order values must be unique")
        ids = [s.stage_id for s in self.stages]
        if len(ids) != len(set(ids)):
            raise ValueError("stage ids must be unique")
        return self

    def ordered_stages(self) -> List[Stage]:
        return sorted(self.stages, key=lambda s: s.order)

    def entry_stage(self) -> Optional[Stage]:
        """Return the lowest-order stage, or ``None`` for an empty definition."""
        ordered = self.ordered_stages()
        return ordered[0] if ordered else None

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        return next((s for s in self.stages if s.stage_id == stage_id), None)

    def next_stage(self, order: int) -> Optional[Stage]:
        """Return the first stage ordered after ``order``."""
        return next((s for s in self.ordered_stages() if s.order > order), None)


class StageHistoryEntry(BaseModel):
    stage_id: str
    stage_name: str
    entered_at: datetime = Field(default_factory=utcnow)
    exited_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    outcome: Optional[StageOutcome] = None
    feedback: Optional[str] = None
    score: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    def close(
        self,
        outcome: Optional[StageOutcome],
        feedback: Optional[str] = None,
        score: Optional[float] = None,
        at: Optional[datetime] = None,
    ) -> None:
        self.exited_at = at or utcnow()
        self.duration_ms = int((self.exited_at - self.entered_at).total_seconds() * 1000)
        self.outcome = outcome
        self.feedback = feedback
        self.score = score


class WorkflowInstance(BaseModel):
    """Runtime progress of one candidate against one job."""

    instance_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    candidate_id: str
    job_id: str
    company_id: str
    workflow_id: str
    current_stage_id: str
    current_stage_order: int
    status: InstanceStatus = InstanceStatus.ACTIVE
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    history: List[StageHistoryEntry] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (InstanceStatus.COMPLETED, InstanceStatus.REJECTED)

    def open_entry(self, stage_id: Optional[str] = None) -> Optional[StageHistoryEntry]:
        """Return the open history entry, optionally for a specific stage."""
        for entry in reversed(self.history):
            if entry.is_open and (stage_id is None or entry.stage_id == stage_id):
                return entry
        return None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowInstance":
        return cls.model_validate_json(data)
